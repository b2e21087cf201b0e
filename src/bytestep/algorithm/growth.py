import math

from bytestep.models.samples import GrowthFactor, Sample


class DivergentSamplesError(ValueError):
    """Enlarging the image did not increase its file size."""


def estimate_growth(reference: Sample, target: Sample, step: int) -> GrowthFactor:
    """
    Estimate how many pixels per axis one `step` of file size is worth.

    `reference` is the smaller sample and `target` the larger one. The factor is
    the per-axis pixel distance between them scaled by step / size distance,
    floored to whole pixels.
    """
    size_delta = target.file_size - reference.file_size
    if size_delta <= 0:
        raise DivergentSamplesError(
            f"Cannot step from {reference.dimensions} ({reference.file_size} bytes) "
            f"to {target.dimensions} ({target.file_size} bytes): file size does not grow"
        )

    width_delta = target.dimensions.width - reference.dimensions.width
    height_delta = target.dimensions.height - reference.dimensions.height
    return GrowthFactor(
        width=math.floor(step * width_delta / size_delta),
        height=math.floor(step * height_delta / size_delta),
    )

import os
from dataclasses import dataclass
from typing import Optional, Tuple

import structlog
from PIL import Image, UnidentifiedImageError

from bytestep.config import ConfigurationError
from bytestep.models.samples import Dimensions, Sample
from bytestep.oracle import ResizeFn

log = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class SourceImage:
    path: str
    dimensions: Dimensions
    file_size: int
    format: Optional[str] = None


@dataclass(frozen=True, slots=True)
class SeedSamples:
    """Oracle samples for the lower and upper bounds of a run."""

    lower: Sample
    upper: Sample


def read_source(path: str) -> SourceImage:
    """Read the dimensions and file size of the source image."""
    try:
        with Image.open(path) as img:
            width, height = img.size
            image_format = img.format
    except FileNotFoundError as e:
        raise ConfigurationError(f"Source image not found: {path}") from e
    except (OSError, UnidentifiedImageError) as e:
        raise ConfigurationError(f"Cannot read source image {path}: {e}") from e

    return SourceImage(
        path=path,
        dimensions=Dimensions(width, height),
        file_size=os.path.getsize(path),
        format=image_format,
    )


def clamp_bounds(
    source: SourceImage,
    lower: Dimensions,
    upper: Optional[Dimensions] = None,
) -> Tuple[Dimensions, Dimensions]:
    """
    Limit the requested bounds to what the source image can provide.

    The upper bound defaults to, and may not exceed, the source size. The lower
    bound may not exceed the upper bound.
    """
    if upper is None:
        upper = source.dimensions
    elif upper.exceeds(source.dimensions):
        upper = source.dimensions
        log.warning("upper size limit restricted to the source image size", upper=str(upper))

    if lower.exceeds(upper):
        lower = upper
        log.warning("lower size limit restricted to the upper image size", lower=str(lower))

    return lower, upper


def seed_samples(resize: ResizeFn, lower: Dimensions, upper: Dimensions) -> SeedSamples:
    """Produce the first oracle samples the search is calibrated from."""
    lower_sample = resize(lower)
    log.info("seeded lower bound", dimensions=str(lower_sample.dimensions), file_size=lower_sample.file_size)
    if upper == lower:
        return SeedSamples(lower=lower_sample, upper=lower_sample)

    upper_sample = resize(upper)
    log.info("seeded upper bound", dimensions=str(upper_sample.dimensions), file_size=upper_sample.file_size)
    return SeedSamples(lower=lower_sample, upper=upper_sample)

from __future__ import annotations
import math
from dataclasses import dataclass, field, replace
from enum import Enum


@dataclass(frozen=True, slots=True)
class Dimensions:
    """A width/height pair in source image pixels."""

    width: int
    height: int

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Dimensions must be positive, got {self.width}x{self.height}")

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"

    def __add__(self, factor: GrowthFactor) -> Dimensions:
        return Dimensions(self.width + factor.width, self.height + factor.height)

    def clamp(self, lower: Dimensions, upper: Dimensions) -> Dimensions:
        """Clamp each axis into the [lower, upper] box."""
        return Dimensions(
            min(max(self.width, lower.width), upper.width),
            min(max(self.height, lower.height), upper.height),
        )

    def reaches(self, upper: Dimensions) -> bool:
        """True once either axis is at or beyond the upper bound."""
        return self.width >= upper.width or self.height >= upper.height

    def exceeds(self, upper: Dimensions) -> bool:
        return self.width > upper.width or self.height > upper.height


@dataclass(frozen=True, slots=True)
class GrowthFactor:
    """Pixels of growth per axis for one step of file size."""

    width: int
    height: int

    def __str__(self) -> str:
        return f"+{self.width}x+{self.height}"

    def rescale(self, adjustment: float) -> GrowthFactor:
        """Shrink (adjustment > 1) or grow (adjustment < 1) the factor, flooring each axis."""
        return GrowthFactor(
            math.floor(self.width / adjustment),
            math.floor(self.height / adjustment),
        )

    def at_least(self, minimum: int) -> GrowthFactor:
        return GrowthFactor(max(self.width, minimum), max(self.height, minimum))

    @property
    def collapsed(self) -> bool:
        """A factor that no longer grows one of the axes."""
        return self.width <= 0 or self.height <= 0


@dataclass(frozen=True, slots=True)
class Sample:
    """What the resize oracle produced for one requested size."""

    dimensions: Dimensions
    file_size: int
    data: bytes = field(default=b"", repr=False, compare=False)

    def __post_init__(self):
        if self.file_size <= 0:
            raise ValueError(f"Sample of {self.dimensions} must have a positive file size, got {self.file_size}")

    def without_data(self) -> Sample:
        return replace(self, data=b"")


class Resolution(str, Enum):
    SEED = "seed"
    CONVERGED = "converged"
    PUNTED = "punted"


@dataclass(frozen=True, slots=True)
class Breakpoint:
    """An accepted sample for one checkpoint of the search."""

    index: int
    target_file_size: int
    sample: Sample
    delta: int
    resolution: Resolution
    probes: int = 0

    @property
    def dimensions(self) -> Dimensions:
        return self.sample.dimensions

    @property
    def file_size(self) -> int:
        return self.sample.file_size

    @property
    def punted(self) -> bool:
        return self.resolution is Resolution.PUNTED

    def without_data(self) -> Breakpoint:
        return replace(self, sample=self.sample.without_data())

from dataclasses import dataclass, field
from typing import Optional, Tuple

from bytestep.models.samples import Breakpoint, Dimensions, GrowthFactor


@dataclass(frozen=True, slots=True)
class SearchSnapshot:
    """Minimal immutable snapshot of the breakpoint search."""

    state_version: int
    complete: bool
    checkpoint_index: int
    target_file_size: int
    guess: Dimensions
    factor: GrowthFactor
    attempts: int
    lower: Dimensions
    upper: Dimensions
    upper_file_size: int
    last_delta: Optional[int] = None

    breakpoints: Tuple[Breakpoint, ...] = field(default_factory=tuple)

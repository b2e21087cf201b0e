import re
from typing import Literal, Optional, TypeAlias

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeInt,
    PositiveFloat,
    PositiveInt,
    ValidationError,
)

from bytestep.models.samples import Dimensions

DEFAULT_TOLERANCE_FLOOR = 1024
DEFAULT_MAX_RECALIBRATIONS = 16
DEFAULT_ORACLE_TIMEOUT = 30.0

DIMENSIONS_PATTERN = re.compile(r"^\s*(\d+)\s*[xX]\s*(\d+)\s*$")

OracleKind: TypeAlias = Literal["pillow", "magick"]


class ConfigurationError(ValueError):
    pass


class SearchConfig(BaseModel):
    """Knobs of the breakpoint search."""

    model_config = ConfigDict(frozen=True)

    step: PositiveInt
    tolerance_floor: NonNegativeInt = DEFAULT_TOLERANCE_FLOOR
    max_recalibrations: PositiveInt = DEFAULT_MAX_RECALIBRATIONS


class OracleConfig(BaseModel):
    """Which resize oracle to build and how."""

    model_config = ConfigDict(frozen=True)

    kind: OracleKind = "pillow"
    timeout: PositiveFloat = DEFAULT_ORACLE_TIMEOUT
    binary: str = "convert"
    quality: Optional[int] = Field(default=None, ge=1, le=100)
    plugin_path: Optional[str] = None


def build_search_config(**values) -> SearchConfig:
    """Validate search settings, reporting problems as ConfigurationError."""
    try:
        return SearchConfig(**values)
    except ValidationError as e:
        raise ConfigurationError(_describe(e)) from e


def build_oracle_config(**values) -> OracleConfig:
    try:
        return OracleConfig(**values)
    except ValidationError as e:
        raise ConfigurationError(_describe(e)) from e


def parse_dimensions(text: str) -> Dimensions:
    """Parse a `WxH` string such as `640x480`."""
    match = DIMENSIONS_PATTERN.match(text or "")
    if match is None:
        raise ConfigurationError(f"Invalid dimensions {text!r}, expected WxH")
    width, height = int(match.group(1)), int(match.group(2))
    if width == 0 or height == 0:
        raise ConfigurationError(f"Dimensions must be positive, got {text!r}")
    return Dimensions(width, height)


def _describe(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item["loc"]) or "value"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)

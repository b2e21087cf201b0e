"""
Resize oracles.

An oracle is anything callable as `oracle(dimensions) -> Sample`: it resizes the
source image to fit inside the requested box (keeping the aspect ratio, like
ImageMagick's `-resize WxH`), encodes it and reports what it actually produced.
"""
import io
import math
import os
import subprocess
import tempfile
from pathlib import Path
from typing import Callable, Optional

import structlog
from PIL import Image, UnidentifiedImageError

from bytestep.config import OracleConfig
from bytestep.models.samples import Dimensions, Sample
from bytestep.utils import ResizePluginFn, load_resize_fn

ResizeFn = Callable[[Dimensions], Sample]

log = structlog.get_logger(__name__)

# Formats Pillow can only write without an alpha channel.
OPAQUE_FORMATS = {"JPEG", "BMP"}


class OracleError(RuntimeError):
    pass


class OracleTimeout(OracleError):
    pass


def fit_within(source: Dimensions, box: Dimensions) -> Dimensions:
    """Largest size with the source aspect ratio that fits inside `box`."""
    scale = min(box.width / source.width, box.height / source.height)
    return Dimensions(
        max(1, math.floor(source.width * scale + 0.5)),
        max(1, math.floor(source.height * scale + 0.5)),
    )


def sample_from_bytes(data: bytes) -> Sample:
    """Measure an encoded image."""
    if not data:
        raise OracleError("Oracle produced an empty image")
    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
    except UnidentifiedImageError as e:
        raise OracleError(f"Oracle produced an unreadable image: {e}") from e
    return Sample(dimensions=Dimensions(width, height), file_size=len(data), data=data)


class PillowOracle:
    """Resize and re-encode in-process with Pillow."""

    def __init__(self, source_path: str, *, quality: Optional[int] = None):
        self.source_path = source_path
        self.quality = quality
        try:
            with Image.open(source_path) as img:
                img.load()
                self._image = img.copy()
                self._format = img.format or "PNG"
        except (OSError, UnidentifiedImageError) as e:
            raise OracleError(f"Cannot read source image {source_path}: {e}") from e
        self._size = Dimensions(*self._image.size)

    def __call__(self, dimensions: Dimensions) -> Sample:
        target = fit_within(self._size, dimensions)
        img = self._image
        if self._format in OPAQUE_FORMATS and img.mode not in ("RGB", "L", "CMYK"):
            img = img.convert("RGB")

        resized = img.resize((target.width, target.height), Image.Resampling.LANCZOS)
        params = {}
        if self.quality is not None and self._format in ("JPEG", "WEBP"):
            params["quality"] = self.quality

        buf = io.BytesIO()
        try:
            resized.save(buf, format=self._format, **params)
        except (OSError, ValueError) as e:
            raise OracleError(f"Pillow failed to encode {target}: {e}") from e
        data = buf.getvalue()
        log.debug("resized", oracle="pillow", requested=str(dimensions), actual=str(target), file_size=len(data))
        return Sample(dimensions=target, file_size=len(data), data=data)


class MagickOracle:
    """Resize with ImageMagick in a subprocess, bounded by a timeout."""

    def __init__(self, source_path: str, *, binary: str = "convert", timeout: float = 30.0):
        self.source_path = source_path
        self.binary = binary
        self.timeout = timeout
        self._suffix = Path(source_path).suffix or ".png"

    def __call__(self, dimensions: Dimensions) -> Sample:
        with tempfile.TemporaryDirectory(prefix="bytestep-") as tmp:
            output = os.path.join(tmp, f"probe{self._suffix}")
            command = [self.binary, self.source_path, "-resize", str(dimensions), output]
            try:
                subprocess.run(command, check=True, capture_output=True, timeout=self.timeout)
            except subprocess.TimeoutExpired as e:
                raise OracleTimeout(f"{self.binary} timed out after {self.timeout}s resizing to {dimensions}") from e
            except FileNotFoundError as e:
                raise OracleError(f"ImageMagick binary not found: {self.binary}") from e
            except subprocess.CalledProcessError as e:
                stderr = (e.stderr or b"").decode("utf-8", errors="replace").strip()
                raise OracleError(f"{self.binary} failed with exit code {e.returncode}: {stderr}") from e

            with open(output, "rb") as f:
                data = f.read()

        sample = sample_from_bytes(data)
        log.debug("resized", oracle="magick", requested=str(dimensions), actual=str(sample.dimensions), file_size=sample.file_size)
        return sample


class PluginOracle:
    """Delegate encoding to a user supplied `resize(source_path, width, height) -> bytes`."""

    def __init__(self, source_path: str, fn: ResizePluginFn):
        self.source_path = source_path
        self.fn = fn

    def __call__(self, dimensions: Dimensions) -> Sample:
        data = self.fn(self.source_path, dimensions.width, dimensions.height)
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise OracleError(f"Plugin resize must return bytes, got {type(data).__name__}")
        return sample_from_bytes(bytes(data))


def build_oracle(source_path: str, config: OracleConfig) -> ResizeFn:
    """Build the oracle selected by the configuration."""
    if config.plugin_path:
        return PluginOracle(source_path, load_resize_fn(config.plugin_path))
    if config.kind == "magick":
        return MagickOracle(source_path, binary=config.binary, timeout=config.timeout)
    return PillowOracle(source_path, quality=config.quality)

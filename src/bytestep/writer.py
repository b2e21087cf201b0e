from pathlib import Path
from typing import Optional, Union

import structlog

from bytestep.models.samples import Breakpoint, Dimensions

log = structlog.get_logger(__name__)


class BreakpointWriteError(ValueError):
    pass


class BreakpointWriter:
    """Persist accepted breakpoints as `<stem>-<W>x<H><ext>` files."""

    def __init__(self, source_path: Union[str, Path], output_dir: Optional[Union[str, Path]] = None):
        source = Path(source_path)
        self.stem = source.stem
        self.suffix = source.suffix
        self.output_dir = Path(output_dir) if output_dir is not None else Path.cwd()
        self.written: list[Path] = []

    def destination(self, dimensions: Dimensions) -> Path:
        return self.output_dir / f"{self.stem}-{dimensions}{self.suffix}"

    def write(self, breakpoint: Breakpoint) -> Path:
        if not breakpoint.sample.data:
            raise BreakpointWriteError(f"Breakpoint {breakpoint.index} carries no image data")

        path = self.destination(breakpoint.dimensions)
        if path in self.written:
            log.warning("overwriting breakpoint with the same dimensions", path=str(path))

        self.output_dir.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            f.write(breakpoint.sample.data)

        if path not in self.written:
            self.written.append(path)
        return path

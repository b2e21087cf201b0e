import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, List, Optional

import click
from PIL import Image

from bytestep.algorithm.growth import DivergentSamplesError
from bytestep.algorithm.search import BreakpointSearch
from bytestep.boundary import clamp_bounds, read_source, seed_samples
from bytestep.config import (
    DEFAULT_MAX_RECALIBRATIONS,
    DEFAULT_ORACLE_TIMEOUT,
    DEFAULT_TOLERANCE_FLOOR,
    ConfigurationError,
    OracleKind,
    build_oracle_config,
    build_search_config,
    parse_dimensions,
)
from bytestep.log import configure_logging, get_logger
from bytestep.models.samples import Breakpoint, Dimensions
from bytestep.oracle import OracleError, build_oracle
from bytestep.state_queue import SnapshotQueue
from bytestep.state_snapshot import SearchSnapshot
from bytestep.ui import UILogHandler, ui_loop
from bytestep.utils import PluginLoadError, PluginSignatureError
from bytestep.writer import BreakpointWriteError, BreakpointWriter

FATAL_ERRORS = (
    BreakpointWriteError,
    DivergentSamplesError,
    OracleError,
    PluginLoadError,
    PluginSignatureError,
)


class DimensionsType(click.ParamType):
    name = "WxH"

    def convert(self, value, param, ctx):
        if isinstance(value, Dimensions):
            return value
        try:
            return parse_dimensions(value)
        except ConfigurationError as e:
            self.fail(str(e), param, ctx)


DIMENSIONS = DimensionsType()


@click.group()
@click.option("--verbose", "-v", count=True, help="Show calibration details (-vv for every probe).")
@click.option("--quiet", "-q", is_flag=True, help="Only report errors.")
@click.pass_context
def cli(ctx: click.Context, verbose: int, quiet: bool):
    ctx.ensure_object(dict)
    ctx.obj["verbosity"] = -1 if quiet else verbose
    ctx.obj["quiet"] = quiet


def persist_breakpoints(
    search: BreakpointSearch,
    writer: BreakpointWriter,
    *,
    quiet: bool = False,
    cancel: Optional[threading.Event] = None,
    on_finish: Optional[Callable[[], None]] = None,
) -> List[Breakpoint]:
    """Pull breakpoints from the search and write each one as soon as it is accepted."""
    accepted = []
    try:
        for bp in search:
            path = writer.write(bp)
            accepted.append(bp.without_data())
            if not quiet:
                click.echo(f"created {path} with size {bp.file_size} bytes")
            if cancel is not None and cancel.is_set():
                break
    finally:
        if on_finish is not None:
            on_finish()
    return accepted


def searcher(search: BreakpointSearch, writer: BreakpointWriter, *, quiet: bool, ui: bool) -> List[Breakpoint]:
    """Run the search, optionally behind the live view."""
    if not ui:
        return persist_breakpoints(search, writer, quiet=quiet)

    state_queue: SnapshotQueue[SearchSnapshot] = SnapshotQueue()
    search.publish = state_queue.publish
    cancel = threading.Event()

    with ThreadPoolExecutor(max_workers=1) as executor:
        future = executor.submit(
            persist_breakpoints, search, writer, quiet=quiet, cancel=cancel, on_finish=state_queue.close
        )

        try:
            ui_loop(state_queue)
        except KeyboardInterrupt:
            cancel.set()
            state_queue.close()

        return future.result()


def run_pipeline(
    source: str,
    lower: Dimensions,
    upper: Optional[Dimensions],
    *,
    step: int,
    tolerance: int = DEFAULT_TOLERANCE_FLOOR,
    max_recalibrations: int = DEFAULT_MAX_RECALIBRATIONS,
    oracle_kind: OracleKind = "pillow",
    oracle_fn: Optional[str] = None,
    timeout: float = DEFAULT_ORACLE_TIMEOUT,
    binary: str = "convert",
    quality: Optional[int] = None,
    output_dir: Optional[str] = None,
    ui: bool = False,
    verbosity: int = 0,
    quiet: bool = False,
) -> List[Breakpoint]:
    """Resolve bounds, seed the search and write every breakpoint it finds."""
    configure_logging(verbosity, UILogHandler() if ui else None)
    log = get_logger("bytestep.cli")

    try:
        search_config = build_search_config(
            step=step, tolerance_floor=tolerance, max_recalibrations=max_recalibrations
        )
        oracle_config = build_oracle_config(
            kind=oracle_kind, timeout=timeout, binary=binary, quality=quality, plugin_path=oracle_fn
        )
        source_image = read_source(source)
        lower, upper = clamp_bounds(source_image, lower, upper)
        log.info("source", path=source, dimensions=str(source_image.dimensions), file_size=source_image.file_size)

        resize = build_oracle(source, oracle_config)
        seeds = seed_samples(resize, lower, upper)
        search = BreakpointSearch(resize, seeds.lower, seeds.upper, search_config, log=get_logger("bytestep.search"))
        writer = BreakpointWriter(source, output_dir)
        return searcher(search, writer, quiet=quiet, ui=ui)
    except ConfigurationError as e:
        raise click.UsageError(str(e))
    except FATAL_ERRORS as e:
        raise click.ClickException(str(e))


@cli.command()
@click.option("--source", "-s", required=True, type=click.Path(exists=True, dir_okay=False), help="Source image.")
@click.option("--step", required=True, type=int, help="File size increase between breakpoints, in bytes.")
@click.option("--lower", "-l", required=True, type=DIMENSIONS, help="Smallest image to create.")
@click.option("--upper", "-u", type=DIMENSIONS, default=None, help="Largest image to create (default: source size).")
@click.option("--tolerance", type=int, default=DEFAULT_TOLERANCE_FLOOR, show_default=True,
              help="Accept a breakpoint within this many bytes of its checkpoint.")
@click.option("--max-recalibrations", type=int, default=DEFAULT_MAX_RECALIBRATIONS, show_default=True,
              help="Punt a checkpoint after this many recalibrations.")
@click.option("--oracle", "oracle_kind", type=click.Choice(["pillow", "magick"]), default="pillow", show_default=True)
@click.option("--oracle-fn", type=click.Path(exists=True, dir_okay=False), default=None,
              help="Python file defining resize(source_path, width, height) -> bytes.")
@click.option("--timeout", type=float, default=DEFAULT_ORACLE_TIMEOUT, show_default=True,
              help="Seconds allowed per ImageMagick call.")
@click.option("--magick-binary", "binary", default="convert", show_default=True)
@click.option("--quality", type=int, default=None, help="Encoder quality for JPEG/WEBP with the pillow oracle.")
@click.option("--output-dir", "-o", type=click.Path(file_okay=False), default=None,
              help="Where to write breakpoints (default: current directory).")
@click.option("--ui/--no-ui", default=True, help="Show the live breakpoint table.")
@click.pass_context
def run(ctx: click.Context, source, step, lower, upper, tolerance, max_recalibrations,
        oracle_kind, oracle_fn, timeout, binary, quality, output_dir, ui):
    """Create images whose file sizes grow by roughly --step bytes each."""
    run_pipeline(
        source, lower, upper,
        step=step,
        tolerance=tolerance,
        max_recalibrations=max_recalibrations,
        oracle_kind=oracle_kind,
        oracle_fn=oracle_fn,
        timeout=timeout,
        binary=binary,
        quality=quality,
        output_dir=output_dir,
        ui=ui,
        verbosity=ctx.obj["verbosity"],
        quiet=ctx.obj["quiet"],
    )


@cli.command()
@click.option("--source", "-s", required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--size", required=True, type=DIMENSIONS, help="Box to resize into.")
@click.option("--oracle", "oracle_kind", type=click.Choice(["pillow", "magick"]), default="pillow", show_default=True)
@click.option("--oracle-fn", type=click.Path(exists=True, dir_okay=False), default=None)
@click.option("--timeout", type=float, default=DEFAULT_ORACLE_TIMEOUT, show_default=True)
@click.option("--magick-binary", "binary", default="convert", show_default=True)
@click.option("--quality", type=int, default=None, help="Encoder quality for JPEG/WEBP with the pillow oracle.")
@click.pass_context
def probe(ctx: click.Context, source, size, oracle_kind, oracle_fn, timeout, binary, quality):
    """Ask the resize oracle once what SOURCE weighs at SIZE."""
    configure_logging(ctx.obj["verbosity"])
    try:
        oracle_config = build_oracle_config(
            kind=oracle_kind, timeout=timeout, binary=binary, quality=quality, plugin_path=oracle_fn
        )
        sample = build_oracle(source, oracle_config)(size)
    except ConfigurationError as e:
        raise click.UsageError(str(e))
    except FATAL_ERRORS as e:
        raise click.ClickException(str(e))
    click.echo(f"{sample.dimensions} {sample.file_size} bytes")


@cli.command()
@click.option("--size", type=DIMENSIONS, default="800x600", show_default=True, help="Size of the generated source.")
@click.option("--step", type=int, default=50000, show_default=True)
@click.option("--output-dir", "-o", type=click.Path(file_okay=False), default=None,
              help="Where to write the demo (default: a new temporary directory).")
@click.option("--ui/--no-ui", default=True)
@click.pass_context
def demo(ctx: click.Context, size: Dimensions, step: int, output_dir: Optional[str], ui: bool):
    """Run over a generated noise image."""
    output = Path(output_dir or tempfile.mkdtemp(prefix="bytestep-demo-"))
    output.mkdir(parents=True, exist_ok=True)
    source = output / "noise.png"
    Image.effect_noise((size.width, size.height), 64).save(source)
    click.echo(f"Generated {source} ({size})")

    lower = Dimensions(max(1, size.width // 5), max(1, size.height // 5))
    run_pipeline(
        str(source), lower, None,
        step=step,
        output_dir=str(output),
        ui=ui,
        verbosity=ctx.obj["verbosity"],
        quiet=ctx.obj["quiet"],
    )


if __name__ == "__main__":
    cli()

import logging
from collections import deque
from typing import Optional

from rich.console import Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from bytestep.models.samples import Resolution
from bytestep.state_queue import SnapshotQueue
from bytestep.state_snapshot import SearchSnapshot
from bytestep.utils import format_bytes


LOG_BUFFER = deque(maxlen=5000)
LOG_LINES = 8

LEVEL_STYLE = {
    logging.DEBUG: "dim",
    logging.INFO: "",
    logging.WARNING: "yellow",
    logging.ERROR: "red",
    logging.CRITICAL: "bold red",
}

RESOLUTION_STYLE = {
    Resolution.SEED: "cyan",
    Resolution.CONVERGED: "spring_green2",
    Resolution.PUNTED: "yellow",
}


class UILogHandler(logging.Handler):
    """Keep log records in memory so the live view can show them."""

    def emit(self, record):
        msg = self.format(record)
        LOG_BUFFER.append((record.levelno, msg))


def render_log_panel(title: str, max_lines: int) -> Panel:
    """Render the last max_lines log entries (cropped to width, no wrap)."""
    items = list(LOG_BUFFER)[-max_lines:]
    if len(items) < max_lines:
        items = [(logging.INFO, "")] * (max_lines - len(items)) + items

    grid = Table.grid(padding=(0, 0))
    grid.add_column(no_wrap=True, overflow="crop")
    for level, msg in items:
        style = LEVEL_STYLE.get(level, "")
        grid.add_row(f"[{style}]{msg}[/{style}]" if style else msg)
    return Panel(grid, title=title, padding=(0, 1))


def render_breakpoints(state: SearchSnapshot) -> Table:
    """Table of the breakpoints accepted so far, plus the checkpoint in progress."""
    status = "done" if state.complete else f"checkpoint {state.checkpoint_index}"
    table = Table(
        title=(
            f"{state.lower} → {state.upper}  |  {status}  |  "
            f"factor {state.factor}  |  v{state.state_version}"
        )
    )
    table.add_column("#", justify="right")
    table.add_column("Size")
    table.add_column("Target", justify="right")
    table.add_column("Actual", justify="right")
    table.add_column("Delta", justify="right")
    table.add_column("Probes", justify="right")
    table.add_column("Result")

    for bp in state.breakpoints:
        style = RESOLUTION_STYLE[bp.resolution]
        table.add_row(
            str(bp.index),
            str(bp.dimensions),
            format_bytes(bp.target_file_size),
            format_bytes(bp.file_size),
            str(bp.delta),
            str(bp.probes),
            f"[{style}]{bp.resolution.value}[/{style}]",
        )

    accepted = {bp.index for bp in state.breakpoints}
    if not state.complete and state.checkpoint_index not in accepted:
        delta = "…" if state.last_delta is None else str(state.last_delta)
        table.add_row(
            str(state.checkpoint_index),
            f"[bold yellow]{state.guess}[/bold yellow]",
            format_bytes(state.target_file_size),
            "",
            delta,
            str(state.attempts),
            "[dim]searching[/dim]",
        )
    return table


def render(state: Optional[SearchSnapshot]):
    """Render the search state snapshot."""
    if state is None:
        return Panel("Waiting for first sample…", title="Breakpoints", border_style="dim")
    return Group(render_breakpoints(state), render_log_panel("Log", LOG_LINES))


def ui_loop(state_queue: SnapshotQueue[SearchSnapshot]) -> None:
    """Loop the UI until the search closes the queue."""
    with Live(render(None), refresh_per_second=10, screen=False) as live:
        while True:
            state = state_queue.get()
            if state is None:
                break
            live.update(render(state))

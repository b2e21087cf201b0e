"""
Breakpoint search.

Walks from the lower bound sample towards the upper bound sample, one file size
step at a time. For every checkpoint the current growth factor gives a size
guess; the oracle tells us what that guess really weighs, and the factor is
recalibrated from the observed error until the result is within tolerance or
the search has to punt and accept what it has.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional, Set, Tuple

import structlog

from bytestep.algorithm.growth import estimate_growth
from bytestep.config import SearchConfig
from bytestep.models.samples import Breakpoint, Dimensions, GrowthFactor, Resolution, Sample
from bytestep.oracle import OracleError, OracleTimeout, ResizeFn
from bytestep.state_snapshot import SearchSnapshot

PublishFn = Callable[[SearchSnapshot], None]


@dataclass(slots=True)
class SearchState:
    """Mutable working state of the search."""

    base: Dimensions
    guess: Dimensions
    target_file_size: int
    factor: GrowthFactor
    checkpoint_index: int = 0
    seen_deltas: Set[int] = field(default_factory=set)
    attempts: int = 0
    forced_recalibrations: int = 0
    probes: int = 0
    last_sample: Optional[Sample] = None
    last_delta: Optional[int] = None

    def begin_checkpoint(self, step: int, lower: Dimensions, upper: Dimensions) -> None:
        """Advance to the next checkpoint. Seen deltas only apply to one checkpoint."""
        self.checkpoint_index += 1
        self.target_file_size += step
        self.guess = (self.base + self.factor).clamp(lower, upper)
        self.seen_deltas.clear()
        self.attempts = 0
        self.forced_recalibrations = 0
        self.probes = 0
        self.last_sample = None
        self.last_delta = None


class BreakpointSearch:
    """
    Iterate over the breakpoints between a lower and an upper sample.

    The iterator is lazy and can only be consumed once. Each breakpoint is
    produced after the oracle has been probed for it, so a caller that stops
    iterating stops the search.
    """

    def __init__(
        self,
        resize: ResizeFn,
        lower: Sample,
        upper: Sample,
        config: SearchConfig,
        *,
        log=None,
        publish: Optional[PublishFn] = None,
    ):
        self.resize = resize
        self.lower = lower
        self.upper = upper
        self.config = config
        self.log = log or structlog.get_logger(__name__)
        self.publish = publish
        self.breakpoints: List[Breakpoint] = []
        self.state: Optional[SearchState] = None
        self._started = False
        self._version = 0

    def __iter__(self) -> Iterator[Breakpoint]:
        if self._started:
            raise RuntimeError("BreakpointSearch can only be iterated once")
        self._started = True
        return self._run()

    @property
    def step(self) -> int:
        return self.config.step

    def _run(self) -> Iterator[Breakpoint]:
        lower_bound = self.lower.dimensions
        upper_bound = self.upper.dimensions

        if lower_bound.reaches(upper_bound):
            # Nothing to step through; only the lower image is produced.
            self.state = SearchState(lower_bound, lower_bound, self.lower.file_size, GrowthFactor(0, 0))
            yield self._accept(self.lower, Resolution.SEED, delta=0)
            self._publish(complete=True)
            return

        factor = estimate_growth(self.lower, self.upper, self.step)
        if factor.collapsed:
            self.log.warning("growth factor below one pixel, stepping one pixel per axis", factor=str(factor))
            factor = factor.at_least(1)

        self.state = SearchState(
            base=lower_bound,
            guess=lower_bound,
            target_file_size=self.lower.file_size,
            factor=factor,
        )
        self.log.info("estimated growth factor", factor=str(factor), step=self.step)
        yield self._accept(self.lower, Resolution.SEED, delta=0)

        while not self._done():
            self.state.begin_checkpoint(self.step, lower_bound, upper_bound)
            sample, resolution, delta = self._converge()
            yield self._accept(sample, resolution, delta)

        self._publish(complete=True)

    def _done(self) -> bool:
        state = self.state
        return (
            state.base.reaches(self.upper.dimensions)
            or state.target_file_size >= self.upper.file_size + self.step
        )

    def _converge(self) -> Tuple[Sample, Resolution, int]:
        """Probe and recalibrate until the current checkpoint is accepted or punted."""
        state = self.state
        cap = self.config.max_recalibrations

        while True:
            try:
                sample = self._probe()
            except OracleTimeout as e:
                if state.attempts >= cap:
                    if state.last_sample is None:
                        raise OracleError(f"Oracle kept timing out at {state.guess}: {e}") from e
                    return self._punt("oracle timeouts", state.last_sample, state.last_delta)
                state.attempts += 1
                self.log.warning("oracle timed out, retrying", guess=str(state.guess), attempt=state.attempts)
                continue

            delta = abs(sample.file_size - state.target_file_size)
            state.last_sample = sample
            state.last_delta = delta
            self._publish()

            if delta <= self.config.tolerance_floor:
                return sample, Resolution.CONVERGED, delta

            if state.attempts >= cap:
                return self._punt("recalibration limit reached", sample, delta)

            if delta in state.seen_deltas:
                if delta < self.step:
                    return self._punt("repeated delta within step", sample, delta)
                if state.forced_recalibrations:
                    return self._punt("non-convergent", sample, delta)
                state.forced_recalibrations += 1

            previous_guess = state.guess
            if not self._recalibrate(sample, delta):
                return self._punt("growth factor collapsed", sample, delta)
            if state.guess == previous_guess:
                return self._punt("growth factor at a fixed point", sample, delta)
            state.attempts += 1

    def _probe(self) -> Sample:
        state = self.state
        state.probes += 1
        sample = self.resize(state.guess)
        self.log.debug(
            "probe",
            checkpoint=state.checkpoint_index,
            guess=str(state.guess),
            actual=str(sample.dimensions),
            file_size=sample.file_size,
            target=state.target_file_size,
        )
        return sample

    def _recalibrate(self, sample: Sample, delta: int) -> bool:
        """Rescale the growth factor from the observed size error. False if it collapsed."""
        state = self.state
        adjustment = sample.file_size / state.target_file_size
        state.seen_deltas.add(delta)
        factor = state.factor.rescale(adjustment)
        self.log.info("calibrating", adjustment=round(adjustment, 4), factor=str(factor), delta=delta)
        if factor.collapsed:
            return False

        state.factor = factor
        state.guess = (state.base + factor).clamp(self.lower.dimensions, self.upper.dimensions)
        return True

    def _punt(self, reason: str, sample: Sample, delta: int) -> Tuple[Sample, Resolution, int]:
        self.log.info("punting", reason=reason, delta=delta, checkpoint=self.state.checkpoint_index)
        return sample, Resolution.PUNTED, delta

    def _accept(self, sample: Sample, resolution: Resolution, delta: int) -> Breakpoint:
        state = self.state
        accepted = Breakpoint(
            index=state.checkpoint_index,
            target_file_size=state.target_file_size,
            sample=sample,
            delta=delta,
            resolution=resolution,
            probes=state.probes,
        )
        # The oracle's actual size, not the guess, is where the next step starts.
        state.base = sample.dimensions
        self.breakpoints.append(accepted.without_data())
        self.log.info(
            "accepted",
            checkpoint=accepted.index,
            dimensions=str(accepted.dimensions),
            file_size=accepted.file_size,
            target=accepted.target_file_size,
            resolution=resolution.value,
        )
        self._publish()
        return accepted

    def _publish(self, complete: bool = False) -> None:
        if self.publish is None:
            return
        state = self.state
        self._version += 1
        self.publish(SearchSnapshot(
            state_version=self._version,
            complete=complete,
            checkpoint_index=state.checkpoint_index,
            target_file_size=state.target_file_size,
            guess=state.guess,
            factor=state.factor,
            attempts=state.attempts,
            lower=self.lower.dimensions,
            upper=self.upper.dimensions,
            upper_file_size=self.upper.file_size,
            last_delta=state.last_delta,
            breakpoints=tuple(self.breakpoints),
        ))

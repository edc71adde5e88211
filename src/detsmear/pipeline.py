"""Event-by-event smearing driver with reproducible per-event random streams."""

from __future__ import annotations

import logging
import random
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable, Iterator

from .beams import BeamIdentifier
from .detector import Detector
from .kinematics import KinematicsReconstructor
from .models import SmearedEvent, SmearedParticle, TrueEvent
from .sidis import event_semi_inclusive

logger = logging.getLogger(__name__)


def event_rng(seed: int | str, position: int) -> random.Random:
    """Random stream owned by the event at `position` of a run seeded with `seed`."""
    return random.Random(f"{seed}:{position}")


@dataclass
class RunSummary:
    """Counters of one `process_events*` call."""

    events: int = 0
    particles: int = 0
    accepted: int = 0
    invalid_kinematics: int = 0
    cancelled: bool = False

    def add(self, event: TrueEvent, smeared: SmearedEvent) -> None:
        self.events += 1
        self.particles += len(event.particles)
        self.accepted += len(smeared.particles)
        if not smeared.kinematics.valid:
            self.invalid_kinematics += 1


@dataclass(frozen=True)
class SmearingPipeline:
    """Turns true events into smeared events with a shared, read-only `Detector`.

    Only final-state particles (status 1) are smeared unless
    `final_state_only=False`; partons are always skipped. Accepted particles
    keep their generator index and order.
    """

    detector: Detector
    final_state_only: bool = True
    reconstructor: KinematicsReconstructor = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "reconstructor", self.detector.reconstructor)

    def process_event(self, event: TrueEvent, rng: random.Random) -> SmearedEvent:
        identifier = BeamIdentifier(event.beams.lepton_species)
        smeared: list[SmearedParticle] = []
        for prt in event.particles:
            if self.final_state_only and prt.status != 1:
                continue
            if identifier.skip_particle(prt):
                continue
            smeared_prt, accepted = self.detector.smear(prt, rng)
            if accepted:
                smeared.append(smeared_prt)
        beams = identifier.identify_beams(event)
        scattered = beams.scattered_lepton
        scattered_index = None if scattered is None else scattered.index
        kinematics = self.reconstructor.reconstruct(smeared, event.beams, scattered_index)
        return SmearedEvent(
            event_id=event.event_id,
            particles=tuple(smeared),
            beams=event.beams,
            kinematics=kinematics,
            scattered_lepton_index=scattered_index,
            true_kinematics=dict(event.true_kinematics),
            semi_inclusive=event_semi_inclusive(event, beams, frozenset(prt.index for prt in smeared)),
        )

    def process_events(
        self,
        events: Iterable[TrueEvent],
        seed: int | str | None = None,
        cancel: threading.Event | None = None,
    ) -> Iterator[SmearedEvent]:
        """Yield smeared events in input order; stop between events once `cancel` is set."""
        seed = _resolve_seed(seed)
        summary = RunSummary()
        for position, event in enumerate(events):
            if cancel is not None and cancel.is_set():
                summary.cancelled = True
                break
            smeared = self.process_event(event, event_rng(seed, position))
            summary.add(event, smeared)
            yield smeared
        _log_summary(summary, seed)

    def process_events_parallel(
        self,
        events: Iterable[TrueEvent],
        seed: int | str | None = None,
        workers: int = 4,
        cancel: threading.Event | None = None,
    ) -> Iterator[SmearedEvent]:
        """Same output as `process_events`, with events smeared on a thread pool.

        At most `2 * workers` events are in flight. After cancellation no new
        event is started, events not yet started are dropped and the output
        stays the in-order prefix of completed events.
        """
        if workers < 1:
            raise ValueError("workers must be >= 1.")
        seed = _resolve_seed(seed)
        summary = RunSummary()
        pending: deque[tuple[TrueEvent, Future[SmearedEvent]]] = deque()
        with ThreadPoolExecutor(max_workers=workers) as pool:
            for position, event in enumerate(events):
                if cancel is not None and cancel.is_set():
                    break
                pending.append((event, pool.submit(self.process_event, event, event_rng(seed, position))))
                if len(pending) >= 2 * workers:
                    yield self._collect(pending.popleft(), summary)
            while pending:
                if cancel is not None and cancel.is_set() and pending[0][1].cancel():
                    break
                yield self._collect(pending.popleft(), summary)
            summary.cancelled = cancel is not None and cancel.is_set()
            for _, future in pending:
                future.cancel()
        _log_summary(summary, seed)

    def run(
        self,
        events: Iterable[TrueEvent],
        seed: int | str | None = None,
        workers: int = 1,
        cancel: threading.Event | None = None,
    ) -> list[SmearedEvent]:
        """Smear all events into a list, in parallel when `workers > 1`."""
        if workers > 1:
            return list(self.process_events_parallel(events, seed=seed, workers=workers, cancel=cancel))
        return list(self.process_events(events, seed=seed, cancel=cancel))

    @staticmethod
    def _collect(item: tuple[TrueEvent, Future[SmearedEvent]], summary: RunSummary) -> SmearedEvent:
        event, future = item
        smeared = future.result()
        summary.add(event, smeared)
        return smeared


def _resolve_seed(seed: int | str | None) -> int | str:
    if seed is not None:
        return seed
    drawn = random.SystemRandom().getrandbits(63)
    logger.info("No seed given, using seed %d", drawn)
    return drawn


def _log_summary(summary: RunSummary, seed: int | str) -> None:
    logger.info(
        "Smeared %d events (seed %s): %d/%d particles accepted, %d events with invalid kinematics%s",
        summary.events,
        seed,
        summary.accepted,
        summary.particles,
        summary.invalid_kinematics,
        ", cancelled" if summary.cancelled else "",
    )

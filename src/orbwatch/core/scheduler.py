"""Multi-rate simulation scheduler.

Owns the virtual clock and runs registered update tasks at independent
wall-clock cadences. The host calls :meth:`SimulationScheduler.tick` once per
frame with a monotonic wall-clock reading in seconds.
"""
from __future__ import annotations

import logging
import math
import numbers
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable

from orbwatch.core.propagation import as_utc
from orbwatch.utils.constants import (
    ACTIVE_UPDATE_INTERVAL_S,
    DEBRIS_UPDATE_INTERVAL_S,
    MAX_TIME_MULTIPLIER,
    MIN_TIME_MULTIPLIER,
    SCORE_UPDATE_INTERVAL_S,
    UI_UPDATE_INTERVAL_S,
)

logger = logging.getLogger(__name__)

UpdateTask = Callable[[datetime], None]


class UpdateCategory(Enum):
    """Update categories, in the order they run within a tick."""

    PLAYER = "player"
    DEBRIS = "debris"
    ACTIVE = "active"
    SCORE = "score"
    UI = "ui"


# Throttled categories that stop while the simulation is paused.
_GATED = frozenset({UpdateCategory.DEBRIS, UpdateCategory.SCORE, UpdateCategory.UI})
_THROTTLED = (UpdateCategory.DEBRIS, UpdateCategory.ACTIVE, UpdateCategory.SCORE, UpdateCategory.UI)


@dataclass(frozen=True)
class UpdateIntervals:
    """Wall-clock cadence of each throttled category, in seconds."""

    debris: float = DEBRIS_UPDATE_INTERVAL_S
    active: float = ACTIVE_UPDATE_INTERVAL_S
    score: float = SCORE_UPDATE_INTERVAL_S
    ui: float = UI_UPDATE_INTERVAL_S

    def __post_init__(self) -> None:
        for name in ("debris", "active", "score", "ui"):
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0:
                raise ValueError(f"Update interval {name!r} must be a non-negative number, got {value!r}")

    def for_category(self, category: UpdateCategory) -> float:
        return getattr(self, category.value)


@dataclass
class SimulationClock:
    """Virtual simulation time and the wall-clock sample it was last advanced at."""

    virtual_time: datetime
    last_wall_time: float | None = None
    time_multiplier: float = 1.0


def clamp_time_multiplier(value: float) -> float:
    if isinstance(value, bool) or not isinstance(value, numbers.Real) or not math.isfinite(value):
        raise ValueError(f"Time multiplier must be a finite number, got {value!r}")
    return max(MIN_TIME_MULTIPLIER, min(float(value), MAX_TIME_MULTIPLIER))


@dataclass
class SimulationScheduler:
    """Advances the clock and runs update tasks when they are due.

    ``PLAYER`` runs on every tick while running. Throttled categories run
    when they have never run or when more than their interval of real time
    has passed since their last run. ``DEBRIS``, ``SCORE`` and ``UI`` only
    run while running; ``ACTIVE`` keeps refreshing while paused. Virtual time
    advances regardless of the running flag.

    Attributes:
        clock: The simulation clock.
        intervals: Cadences of the throttled categories.
        running: Whether gated categories run.
    """

    clock: SimulationClock = field(default_factory=lambda: SimulationClock(datetime.now(timezone.utc)))
    intervals: UpdateIntervals = field(default_factory=UpdateIntervals)
    running: bool = False
    _tasks: dict[UpdateCategory, list[UpdateTask]] = field(default_factory=dict, init=False, repr=False)
    _last_run: dict[UpdateCategory, float] = field(default_factory=dict, init=False, repr=False)
    tick_count: int = field(default=0, init=False)

    @classmethod
    def starting_at(cls, start_time: datetime, intervals: UpdateIntervals | None = None) -> SimulationScheduler:
        return cls(clock=SimulationClock(virtual_time=as_utc(start_time)), intervals=intervals or UpdateIntervals())

    @property
    def simulation_time(self) -> datetime:
        return self.clock.virtual_time

    @property
    def time_multiplier(self) -> float:
        return self.clock.time_multiplier

    def register(self, category: UpdateCategory, task: UpdateTask) -> None:
        """Add a task run with the simulation time whenever ``category`` is due."""
        self._tasks.setdefault(category, []).append(task)

    def tick(self, now: float) -> list[UpdateCategory]:
        """Advance the simulation by one host frame.

        Args:
            now: Monotonic wall-clock reading in seconds.

        Returns:
            The categories that ran, in execution order.
        """
        clock = self.clock
        elapsed = 0.0 if clock.last_wall_time is None else now - clock.last_wall_time
        if elapsed < 0:
            logger.warning("Wall clock went backwards by %.3f s; ignoring", -elapsed)
            elapsed = 0.0
        clock.last_wall_time = now
        clock.virtual_time += timedelta(seconds=elapsed * clock.time_multiplier)
        self.tick_count += 1

        ran: list[UpdateCategory] = []
        if self.running:
            self._run(UpdateCategory.PLAYER)
            ran.append(UpdateCategory.PLAYER)

        for category in _THROTTLED:
            if category in _GATED and not self.running:
                continue
            if not self._is_due(category, now):
                continue
            self._run(category)
            self._last_run[category] = now
            ran.append(category)

        return ran

    def _is_due(self, category: UpdateCategory, now: float) -> bool:
        last = self._last_run.get(category)
        return last is None or now - last > self.intervals.for_category(category)

    def _run(self, category: UpdateCategory) -> None:
        for task in self._tasks.get(category, ()):
            task(self.clock.virtual_time)

    def set_time_multiplier(self, value: float) -> float:
        """Set time acceleration, clamped to [0.1, 100]. Takes effect next tick."""
        self.clock.time_multiplier = clamp_time_multiplier(value)
        logger.info("Time multiplier set to %gx", self.clock.time_multiplier)
        return self.clock.time_multiplier

    def pause(self) -> None:
        self.running = False
        logger.info("Simulation paused")

    def resume(self) -> None:
        self.running = True
        logger.info("Simulation resumed")

    def reset(self, start_time: datetime | None = None) -> None:
        """Forget wall-clock samples so the next tick starts fresh.

        Args:
            start_time: If given, the virtual time is rewound to it.
        """
        self.clock.last_wall_time = None
        self._last_run.clear()
        if start_time is not None:
            self.clock.virtual_time = as_utc(start_time)
        logger.debug("Scheduler reset at %s", self.clock.virtual_time.isoformat())

    def last_run(self, category: UpdateCategory) -> float | None:
        return self._last_run.get(category)

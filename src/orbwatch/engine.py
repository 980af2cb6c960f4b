"""Simulation engine: one object owning the catalog, clock and threat history.

The engine wires the element set store, propagator, scoring engine and
scheduler together and is the only surface a renderer or UI needs. It never
raises for bad records or unlocatable objects; those degrade to ``None``,
empty arrays or a zero score.

Example::

    engine = SimulationEngine(start_time=datetime.now(timezone.utc))
    engine.ingest_elements({"debris": debris_text, "active": active_text})
    engine.set_player("ISS (ZARYA)", line1, line2)
    engine.subscribe(renderer.on_snapshot)
    while True:
        engine.tick(time.monotonic())
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Mapping, Sequence

import numpy as np
from numpy.typing import NDArray

from orbwatch.core.frames import (
    Geodetic,
    altitude_km,
    distance_km,
    speed_km_s,
    to_geodetic,
    to_scene_space,
    to_scene_space_batch,
)
from orbwatch.core.propagation import PropagationError, PropagationErrorKind, StateVector, propagate, propagate_batch
from orbwatch.core.scheduler import SimulationScheduler, UpdateCategory, UpdateIntervals
from orbwatch.core.scoring import ScoringConfig, ThreatScoringEngine, ThreatSnapshot, ThreatStatistics
from orbwatch.core.tle import BatchIngest, ElementSet, ParseError, ingest, ingest_batch, parse_user_input
from orbwatch.utils.constants import DEFAULT_EPOCH_WINDOW_DAYS, MAX_ACTIVE_RENDER

logger = logging.getLogger(__name__)


class ObjectCategory(Enum):
    ACTIVE = "active"
    DEBRIS = "debris"
    CRITICAL = "critical"
    PLAYER = "player"


_CATALOG_CATEGORIES = (ObjectCategory.ACTIVE, ObjectCategory.DEBRIS, ObjectCategory.CRITICAL)


@dataclass(frozen=True)
class SimulationConfig:
    """Engine configuration.

    Attributes:
        scoring: Threat scoring policy; its ``scene_scale_km`` is also the
            scale used for scene-space positions.
        intervals: Scheduler cadences.
        max_active_render: Active objects propagated for display.
        epoch_window_days: Validity window around element set epochs,
            ``None`` to accept any offset.
    """

    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    intervals: UpdateIntervals = field(default_factory=UpdateIntervals)
    max_active_render: int = MAX_ACTIVE_RENDER
    epoch_window_days: float | None = DEFAULT_EPOCH_WINDOW_DAYS

    @property
    def scene_scale_km(self) -> float:
        return self.scoring.scene_scale_km

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SimulationConfig:
        """Build a config from plain nested mappings (e.g. parsed JSON).

        Raises:
            ValueError: On unknown keys or invalid values.
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")

        kwargs: dict[str, Any] = {k: v for k, v in data.items() if k not in ("scoring", "intervals")}
        try:
            if "scoring" in data:
                kwargs["scoring"] = ScoringConfig(**data["scoring"])
            if "intervals" in data:
                kwargs["intervals"] = UpdateIntervals(**data["intervals"])
        except TypeError as exc:
            raise ValueError(f"Invalid configuration: {exc}") from exc
        return cls(**kwargs)


@dataclass(frozen=True)
class OrbitalParams:
    altitude_km: float
    velocity_km_s: float
    inclination_deg: float


@dataclass(frozen=True)
class DebrisDistance:
    name: str
    position: NDArray[np.float64]
    distance_km: float


@dataclass(frozen=True)
class SimulationSnapshot:
    """Everything a renderer/UI needs for one frame, published on UI ticks."""

    simulation_time: datetime
    running: bool
    player_name: str | None
    player_position: NDArray[np.float64] | None
    orbital_params: OrbitalParams | None
    debris_positions: NDArray[np.float64]
    active_positions: NDArray[np.float64]
    threat: ThreatSnapshot
    threat_description: str


@dataclass
class EngineStatistics:
    running: bool
    initialized: bool
    simulation_time: datetime
    tick_count: int
    time_multiplier: float
    active_objects: int
    debris_objects: int
    critical_objects: int
    threat: ThreatStatistics


SnapshotListener = Callable[[SimulationSnapshot], None]


def _empty_positions() -> NDArray[np.float64]:
    return np.empty((0, 3), dtype=np.float64)


class SimulationEngine:
    """Tracks a player object against debris in simulated time."""

    def __init__(self, config: SimulationConfig | None = None, start_time: datetime | None = None) -> None:
        self._config = config or SimulationConfig()
        self._catalog: dict[ObjectCategory, list[ElementSet]] = {c: [] for c in _CATALOG_CATEGORIES}
        self._player: ElementSet | None = None
        self._critical_scenario = False
        self._scorer = ThreatScoringEngine(self._config.scoring)
        self._scheduler = SimulationScheduler.starting_at(
            start_time or datetime.now(timezone.utc), self._config.intervals
        )
        self._listeners: list[SnapshotListener] = []

        # Latest positions refreshed by the scheduler, handed to listeners.
        self._frame_player: NDArray[np.float64] | None = None
        self._frame_debris = _empty_positions()
        self._frame_active = _empty_positions()

        self._scheduler.register(UpdateCategory.PLAYER, self._update_player)
        self._scheduler.register(UpdateCategory.DEBRIS, self._update_debris)
        self._scheduler.register(UpdateCategory.ACTIVE, self._update_active)
        self._scheduler.register(UpdateCategory.SCORE, self._update_threat_score)
        self._scheduler.register(UpdateCategory.UI, self._publish)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> SimulationConfig:
        return self._config

    @property
    def scheduler(self) -> SimulationScheduler:
        return self._scheduler

    @property
    def scorer(self) -> ThreatScoringEngine:
        return self._scorer

    @property
    def player(self) -> ElementSet | None:
        return self._player

    @property
    def simulation_time(self) -> datetime:
        return self._scheduler.simulation_time

    @property
    def running(self) -> bool:
        return self._scheduler.running

    @property
    def critical_scenario(self) -> bool:
        return self._critical_scenario

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest_elements(self, raw_text: Mapping[ObjectCategory | str, str]) -> dict[ObjectCategory, BatchIngest]:
        """Replace catalog categories with freshly parsed element sets.

        Args:
            raw_text: Catalog text keyed by category (``"active"``,
                ``"debris"``, ``"critical"`` or ObjectCategory members).

        Returns:
            Per-category ingestion results with valid/skipped counts.
        """
        results: dict[ObjectCategory, BatchIngest] = {}
        for key, text in raw_text.items():
            category = self._catalog_category(key)
            batch = ingest_batch(text)
            self._catalog[category] = batch.records
            results[category] = batch
            logger.info(
                "Ingested %d %s element sets (%d skipped)",
                batch.valid_count, category.value, batch.skipped_count,
            )
        return results

    def ingest_element_sets(self, category: ObjectCategory | str, element_sets: Sequence[ElementSet]) -> int:
        """Replace a catalog category with already-parsed element sets."""
        category = self._catalog_category(category)
        self._catalog[category] = list(element_sets)
        logger.info("Loaded %d %s element sets", len(element_sets), category.value)
        return len(element_sets)

    def element_sets(self, category: ObjectCategory | str) -> list[ElementSet]:
        category = ObjectCategory(category)
        if category is ObjectCategory.PLAYER:
            return [self._player] if self._player is not None else []
        return list(self._catalog[category])

    def counts(self) -> dict[ObjectCategory, int]:
        return {c: len(self._catalog[c]) for c in _CATALOG_CATEGORIES}

    def set_player(self, name: str, line1: str, line2: str, start_time: datetime | None = None) -> bool:
        """Start tracking a new player object.

        A successful call starts a new session: threat history and scheduler
        stamps are reset and the simulation runs.

        Args:
            start_time: If given, virtual time is rewound to it.

        Returns:
            False if the element set was rejected.
        """
        try:
            element_set = ingest(name, line1, line2)
        except ParseError as exc:
            logger.error("Rejected player element set %r (%s): %s", name, exc.kind.value, exc)
            return False
        self._start_session(element_set, start_time)
        return True

    def set_player_from_text(self, text: str, start_time: datetime | None = None) -> bool:
        """Like :meth:`set_player`, for pasted multi-line text."""
        try:
            element_set = parse_user_input(text)
        except ParseError as exc:
            logger.error("Rejected player element set (%s): %s", exc.kind.value, exc)
            return False
        self._start_session(element_set, start_time)
        return True

    def _start_session(self, element_set: ElementSet, start_time: datetime | None) -> None:
        self._player = element_set
        self._scorer.reset_history()
        self._scheduler.reset(start_time)
        self._scheduler.resume()
        self._frame_player = self.player_position()
        logger.info("Tracking %s (NORAD %d)", element_set.name or "unnamed object", element_set.norad_id)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def tick(self, now: float) -> list[UpdateCategory]:
        """Drive the scheduler with a monotonic wall-clock reading in seconds."""
        return self._scheduler.tick(now)

    def set_time_multiplier(self, value: float) -> float:
        return self._scheduler.set_time_multiplier(value)

    def pause(self) -> None:
        self._scheduler.pause()

    def resume(self) -> None:
        self._scheduler.resume()

    def set_force_score(self, score: float | None) -> None:
        self._scorer.set_force_score(score)

    def switch_to_critical_debris(self) -> int:
        """Score and display the critical population instead of regular debris.

        Returns:
            Number of critical objects; 0 leaves the scenario unchanged.
        """
        count = len(self._catalog[ObjectCategory.CRITICAL])
        if count == 0:
            logger.warning("No critical debris available")
            return 0
        self._critical_scenario = True
        self._frame_debris = self.critical_debris_positions()
        logger.warning("Critical debris field active: %d high-threat objects", count)
        return count

    def reset_to_nominal(self) -> None:
        """Return to the regular debris population and clear any forced score."""
        self._critical_scenario = False
        self._scorer.set_force_score(None)
        self._frame_debris = self.debris_positions()
        logger.info("Reset to nominal operations")

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Receive a SimulationSnapshot on every UI tick.

        Returns:
            A callable that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Queries (evaluated at the current simulation time)
    # ------------------------------------------------------------------

    def player_state(self, time: datetime | None = None) -> StateVector | None:
        if self._player is None:
            return None
        time = time or self.simulation_time
        try:
            return propagate(self._player, time, self._config.epoch_window_days)
        except PropagationError as exc:
            if exc.kind is PropagationErrorKind.INVALID_EPOCH_RANGE:
                logger.debug("Player position unavailable: %s", exc)
            else:
                logger.warning("Player position unavailable: %s", exc)
            return None

    def player_position(self, time: datetime | None = None) -> NDArray[np.float64] | None:
        state = self.player_state(time)
        if state is None:
            return None
        return to_scene_space(state.position_km, self._config.scene_scale_km)

    def player_orbital_params(self, time: datetime | None = None) -> OrbitalParams | None:
        state = self.player_state(time)
        if state is None:
            return None
        return OrbitalParams(
            altitude_km=altitude_km(state.position_km),
            velocity_km_s=speed_km_s(state.velocity_km_s),
            inclination_deg=math.degrees(self._player.inclination_rad),
        )

    def player_geodetic(self, time: datetime | None = None) -> Geodetic | None:
        time = time or self.simulation_time
        state = self.player_state(time)
        if state is None:
            return None
        return to_geodetic(state.position_km, time)

    def debris_positions(self, time: datetime | None = None) -> NDArray[np.float64]:
        return self._visible_positions(self._catalog[ObjectCategory.DEBRIS], time)

    def critical_debris_positions(self, time: datetime | None = None) -> NDArray[np.float64]:
        return self._visible_positions(self._catalog[ObjectCategory.CRITICAL], time)

    def active_object_positions(self, time: datetime | None = None) -> NDArray[np.float64]:
        active = self._catalog[ObjectCategory.ACTIVE][: self._config.max_active_render]
        return self._visible_positions(active, time)

    def debris_with_distances(self, time: datetime | None = None) -> list[DebrisDistance]:
        """Locatable debris of the scored population, closest first."""
        time = time or self.simulation_time
        player = self.player_position(time)
        if player is None:
            return []

        population = self._scored_population()
        scene, valid = self._scene_positions(population, time)
        scale = self._config.scene_scale_km
        result = [
            DebrisDistance(name=population[i].name, position=scene[i], distance_km=distance_km(player, scene[i], scale))
            for i in np.flatnonzero(valid)
        ]
        result.sort(key=lambda d: d.distance_km)
        return result

    def current_threat_snapshot(self) -> ThreatSnapshot:
        return self._scorer.snapshot

    def threat_description(self) -> str:
        return self._scorer.threat_description()

    def threat_statistics(self) -> ThreatStatistics:
        return self._scorer.statistics()

    def statistics(self) -> EngineStatistics:
        counts = self.counts()
        return EngineStatistics(
            running=self.running,
            initialized=self._player is not None,
            simulation_time=self.simulation_time,
            tick_count=self._scheduler.tick_count,
            time_multiplier=self._scheduler.time_multiplier,
            active_objects=counts[ObjectCategory.ACTIVE],
            debris_objects=counts[ObjectCategory.DEBRIS],
            critical_objects=counts[ObjectCategory.CRITICAL],
            threat=self._scorer.statistics(),
        )

    # ------------------------------------------------------------------
    # Scheduler tasks
    # ------------------------------------------------------------------

    def _update_player(self, time: datetime) -> None:
        self._frame_player = self.player_position(time)

    def _update_debris(self, time: datetime) -> None:
        self._frame_debris = self._visible_positions(self._scored_population(), time)

    def _update_active(self, time: datetime) -> None:
        self._frame_active = self.active_object_positions(time)

    def _update_threat_score(self, time: datetime) -> None:
        population = self._scored_population()
        player = self.player_position(time)
        scene, valid = self._scene_positions(population, time)
        scene[~valid] = np.nan
        self._scorer.calculate_score(player, scene, timestamp=time, names=[es.name for es in population])

    def _publish(self, time: datetime) -> None:
        if not self._listeners:
            return
        snapshot = SimulationSnapshot(
            simulation_time=time,
            running=self.running,
            player_name=self._player.name if self._player is not None else None,
            player_position=self._frame_player,
            orbital_params=self.player_orbital_params(time),
            debris_positions=self._frame_debris,
            active_positions=self._frame_active,
            threat=self._scorer.snapshot,
            threat_description=self._scorer.threat_description(),
        )
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Snapshot listener %r failed", listener)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _scored_population(self) -> list[ElementSet]:
        category = ObjectCategory.CRITICAL if self._critical_scenario else ObjectCategory.DEBRIS
        return self._catalog[category]

    def _scene_positions(
        self, element_sets: Sequence[ElementSet], time: datetime | None
    ) -> tuple[NDArray[np.float64], NDArray[np.bool_]]:
        time = time or self.simulation_time
        states, valid = propagate_batch(element_sets, time, self._config.epoch_window_days)
        scene, finite = to_scene_space_batch(states[:, 0:3], self._config.scene_scale_km)
        return scene, valid & finite

    def _visible_positions(self, element_sets: Sequence[ElementSet], time: datetime | None) -> NDArray[np.float64]:
        scene, valid = self._scene_positions(element_sets, time)
        return scene[valid]

    @staticmethod
    def _catalog_category(key: ObjectCategory | str) -> ObjectCategory:
        category = ObjectCategory(key)
        if category is ObjectCategory.PLAYER:
            raise ValueError("Use set_player() to set the player object")
        return category

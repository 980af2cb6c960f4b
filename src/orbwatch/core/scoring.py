"""Proximity threat scoring around the player object.

Scores come from debris inside the danger radius of the player in scene
space, with flat bonuses inside the critical and extreme radii. Each scoring
tick appends one sample to a bounded history and rebuilds the snapshot.
"""
from __future__ import annotations

import logging
import math
import numbers
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Sequence

import numpy as np
from numpy.typing import ArrayLike
from scipy.spatial import cKDTree

from orbwatch.utils.constants import (
    CRITICAL_BONUS,
    CRITICAL_RADIUS_KM,
    DANGER_RADIUS_KM,
    DANGER_WEIGHT,
    EXTREME_BONUS,
    EXTREME_RADIUS_KM,
    HIGH_THREAT_LOG_SCORE,
    MAX_CLOSEST_THREATS,
    MAX_HISTORY,
    NEAR_RADIUS_KM,
    SCENE_SCALE_KM,
)

logger = logging.getLogger(__name__)

NO_THREATS_MESSAGE = "No immediate threats detected."


class ThreatStatus(Enum):
    """Status band derived from a collision threat score."""

    NOMINAL = "NOMINAL"
    ELEVATED = "ELEVATED"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class ThreatSeverity(Enum):
    """Severity of the closest threat, by distance."""

    NONE = "none"
    ELEVATED = "elevated"
    WARNING = "warning"
    CRITICAL = "critical"
    EXTREME = "extreme"


@dataclass(frozen=True)
class ScoringConfig:
    """Tunable scoring policy.

    The radii, weight and bonuses are empirical, not physically derived.
    """

    danger_radius_km: float = DANGER_RADIUS_KM
    critical_radius_km: float = CRITICAL_RADIUS_KM
    extreme_radius_km: float = EXTREME_RADIUS_KM
    near_radius_km: float = NEAR_RADIUS_KM
    danger_weight: float = DANGER_WEIGHT
    critical_bonus: float = CRITICAL_BONUS
    extreme_bonus: float = EXTREME_BONUS
    max_history: int = MAX_HISTORY
    max_closest_threats: int = MAX_CLOSEST_THREATS
    scene_scale_km: float = SCENE_SCALE_KM

    def __post_init__(self) -> None:
        if not 0 < self.extreme_radius_km <= self.critical_radius_km <= self.danger_radius_km:
            raise ValueError("Threat radii must satisfy 0 < extreme <= critical <= danger")
        if self.max_history < 1:
            raise ValueError("max_history must be at least 1")
        if self.max_closest_threats < 0:
            raise ValueError("max_closest_threats must not be negative")
        if self.scene_scale_km <= 0:
            raise ValueError("scene_scale_km must be positive")


@dataclass(frozen=True)
class ThreatSample:
    timestamp: datetime | None
    score: int


@dataclass(frozen=True)
class Threat:
    """A debris object inside the danger radius.

    Attributes:
        index: Position of the object in the scored debris list.
        distance_km: Distance from the player in km.
        contribution: Proximity points it added, excluding flat bonuses.
        name: Object name, when names were supplied.
    """

    index: int
    distance_km: float
    contribution: float
    name: str | None = None


@dataclass(frozen=True)
class ThreatSnapshot:
    """Result of the latest scoring tick."""

    current: int
    closest_threats: tuple[Threat, ...] = ()
    status: ThreatStatus = ThreatStatus.NOMINAL
    timestamp: datetime | None = None


@dataclass
class ThreatStatistics:
    current: int
    average: float
    maximum: int
    threats_in_range: int
    history_length: int


def score_status(score: float) -> ThreatStatus:
    """Map a score to its status band."""
    if score >= 86:
        return ThreatStatus.CRITICAL
    elif score >= 61:
        return ThreatStatus.WARNING
    elif score >= 31:
        return ThreatStatus.ELEVATED
    else:
        return ThreatStatus.NOMINAL


def classify_distance(distance_km: float, config: ScoringConfig | None = None) -> ThreatSeverity:
    """Severity of a threat at ``distance_km``; NONE outside the danger radius."""
    config = config or ScoringConfig()
    if distance_km < config.extreme_radius_km:
        return ThreatSeverity.EXTREME
    elif distance_km < config.critical_radius_km:
        return ThreatSeverity.CRITICAL
    elif distance_km < config.near_radius_km:
        return ThreatSeverity.WARNING
    elif distance_km < config.danger_radius_km:
        return ThreatSeverity.ELEVATED
    else:
        return ThreatSeverity.NONE


def describe_threat(
    closest_km: float | None,
    near_count: int = 1,
    in_range_count: int = 1,
    config: ScoringConfig | None = None,
) -> str:
    """Human-readable summary of the closest threat.

    Args:
        closest_km: Distance of the closest threat, or None if there is none.
        near_count: Objects within the soft-warning radius.
        in_range_count: Objects within the danger radius.
    """
    if closest_km is None:
        return NO_THREATS_MESSAGE

    config = config or ScoringConfig()
    severity = classify_distance(closest_km, config)

    if severity is ThreatSeverity.EXTREME:
        return f"EXTREME DANGER: Debris at {closest_km:.1f} km. Immediate action required!"
    elif severity is ThreatSeverity.CRITICAL:
        return f"CRITICAL: Debris fragment at {closest_km:.1f} km proximity. Collision risk imminent."
    elif severity is ThreatSeverity.WARNING:
        return (
            f"WARNING: {near_count} object(s) within {config.near_radius_km:g} km. "
            f"Closest at {closest_km:.1f} km."
        )
    elif severity is ThreatSeverity.ELEVATED:
        return f"ELEVATED: {in_range_count} object(s) within danger zone. Closest at {closest_km:.1f} km."
    else:
        return NO_THREATS_MESSAGE


def estimate_collision_time(
    distance_km: float,
    relative_velocity_km_s: float = 1.0,
    danger_radius_km: float = DANGER_RADIUS_KM,
) -> float | None:
    """Naive time to contact in seconds, or None outside the danger radius."""
    if relative_velocity_km_s <= 0:
        raise ValueError("relative_velocity_km_s must be positive")
    if distance_km > danger_radius_km:
        return None
    return distance_km / relative_velocity_km_s


def format_duration(seconds: float | None) -> str:
    if seconds is None:
        return "N/A"
    if seconds < 60:
        return f"{round(seconds)} seconds"
    elif seconds < 3600:
        return f"{round(seconds / 60)} minutes"
    else:
        return f"{seconds / 3600:.1f} hours"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class ThreatScoringEngine:
    """Scores debris proximity around the player and keeps a rolling history.

    Each call to :meth:`calculate_score` is one scoring tick: it appends
    exactly one sample to the history (oldest evicted beyond
    ``max_history``) and rebuilds the snapshot.

    Example::

        scorer = ThreatScoringEngine()
        score = scorer.calculate_score(player_scene_pos, debris_scene_pos)
        scorer.snapshot.status
    """

    def __init__(self, config: ScoringConfig | None = None) -> None:
        self._config = config or ScoringConfig()
        self._history: deque[ThreatSample] = deque(maxlen=self._config.max_history)
        self._force_score: int | None = None
        self._snapshot = ThreatSnapshot(current=0)
        self._in_range: tuple[Threat, ...] = ()

    @property
    def config(self) -> ScoringConfig:
        return self._config

    @property
    def force_score(self) -> int | None:
        return self._force_score

    @property
    def snapshot(self) -> ThreatSnapshot:
        return self._snapshot

    def calculate_score(
        self,
        player_position: ArrayLike | None,
        debris_positions: ArrayLike | None,
        timestamp: datetime | None = None,
        names: Sequence[str] | None = None,
    ) -> int:
        """Score one tick from scene-space positions.

        Args:
            player_position: Player position (3,) in scene units, or None.
            debris_positions: Debris positions (n, 3) in scene units.
            timestamp: Simulation time of the tick, stored with the sample.
            names: Optional debris names, aligned with ``debris_positions``.

        Returns:
            Integer score in [0, 100]. Missing inputs score 0.
        """
        if self._force_score is not None:
            logger.debug("Force score active: %d", self._force_score)
            return self._record(self._force_score, [], timestamp)

        player = _as_point(player_position)
        if player is None or debris_positions is None:
            return self._record(0, [], timestamp)

        debris = _as_rows(debris_positions)
        if len(debris) == 0:
            return self._record(0, [], timestamp)

        score, threats = self._evaluate(player, debris, names)
        return self._record(score, threats, timestamp)

    def _evaluate(
        self,
        player: np.ndarray,
        debris: np.ndarray,
        names: Sequence[str] | None,
    ) -> tuple[int, list[Threat]]:
        cfg = self._config

        finite_idx = np.flatnonzero(np.all(np.isfinite(debris), axis=1))
        if finite_idx.size == 0:
            return 0, []

        tree = cKDTree(debris[finite_idx])
        candidates = sorted(tree.query_ball_point(player, r=cfg.danger_radius_km / cfg.scene_scale_km))

        total = 0.0
        threats: list[Threat] = []

        for local in candidates:
            index = int(finite_idx[local])
            distance = float(np.linalg.norm(debris[index] - player)) * cfg.scene_scale_km
            if not math.isfinite(distance) or distance >= cfg.danger_radius_km:
                continue

            contribution = (cfg.danger_radius_km - distance) * cfg.danger_weight
            total += contribution

            if distance < cfg.critical_radius_km:
                total += cfg.critical_bonus
                if distance < cfg.extreme_radius_km:
                    total += cfg.extreme_bonus

            name = names[index] if names is not None and index < len(names) else None
            threats.append(Threat(index=index, distance_km=distance, contribution=contribution, name=name))

        score = _round_half_up(max(0.0, min(100.0, total)))

        if score > HIGH_THREAT_LOG_SCORE:
            logger.warning("High threat score: %d (%d objects in danger zone)", score, len(threats))

        return score, threats

    def _record(self, score: int, threats: list[Threat], timestamp: datetime | None) -> int:
        self._history.append(ThreatSample(timestamp=timestamp, score=score))

        threats.sort(key=lambda t: t.distance_km)
        self._in_range = tuple(threats)
        self._snapshot = ThreatSnapshot(
            current=score,
            closest_threats=tuple(threats[: self._config.max_closest_threats]),
            status=score_status(score),
            timestamp=timestamp,
        )
        return score

    def set_force_score(self, score: float | None) -> None:
        """Override live scoring with a fixed value, or clear with None."""
        if score is None:
            if self._force_score is not None:
                logger.info("Force score disabled")
            self._force_score = None
            return

        if isinstance(score, bool) or not isinstance(score, numbers.Real) or not math.isfinite(score):
            raise ValueError(f"Force score must be a finite number, got {score!r}")

        self._force_score = min(max(_round_half_up(score), 0), 100)
        logger.info("Force score set to %d", self._force_score)

    def closest_threats(self) -> tuple[Threat, ...]:
        return self._snapshot.closest_threats

    def history(self) -> list[ThreatSample]:
        return list(self._history)

    def scores(self) -> list[int]:
        return [sample.score for sample in self._history]

    def reset_history(self) -> None:
        self._history.clear()
        self._in_range = ()
        self._snapshot = ThreatSnapshot(current=0)
        logger.info("Threat history reset")

    def threat_description(self) -> str:
        """Narrative for the latest tick's closest threat."""
        if not self._in_range:
            return NO_THREATS_MESSAGE

        near = sum(1 for t in self._in_range if t.distance_km < self._config.near_radius_km)
        return describe_threat(
            self._in_range[0].distance_km,
            near_count=near,
            in_range_count=len(self._in_range),
            config=self._config,
        )

    def statistics(self) -> ThreatStatistics:
        scores = self.scores()
        return ThreatStatistics(
            current=scores[-1] if scores else 0,
            average=round(sum(scores) / len(scores), 1) if scores else 0.0,
            maximum=max(scores) if scores else 0,
            threats_in_range=len(self._in_range),
            history_length=len(scores),
        )


def _as_rows(positions: ArrayLike) -> np.ndarray:
    """(n, 3) float array; None entries become NaN rows so indices are kept."""
    if isinstance(positions, np.ndarray):
        return positions.astype(np.float64, copy=False).reshape(-1, 3)
    rows = [(math.nan, math.nan, math.nan) if p is None else p for p in positions]
    if not rows:
        return np.empty((0, 3), dtype=np.float64)
    return np.asarray(rows, dtype=np.float64).reshape(-1, 3)


def _as_point(position: ArrayLike | None) -> np.ndarray | None:
    if position is None:
        return None
    try:
        point = np.asarray(position, dtype=np.float64)
    except (TypeError, ValueError):
        return None
    if point.shape != (3,) or not np.all(np.isfinite(point)):
        return None
    return point

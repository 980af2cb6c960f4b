"""
orbwatch — Collision threat tracking for a satellite in simulated time.

Propagates two-line element sets with SGP4, scores debris proximity around
a designated player object and drives both from a multi-rate scheduler
with time acceleration. Rendering and UI are left to the caller.
"""

from __future__ import annotations

__version__ = "0.1.0"

from orbwatch.core.tle import (
    BatchIngest,
    ElementSet,
    ParseError,
    ParseErrorKind,
    filter_stale,
    ingest,
    ingest_batch,
    parse_tle,
    parse_user_input,
)
from orbwatch.core.propagation import (
    PropagationError,
    PropagationErrorKind,
    StateVector,
    propagate,
    propagate_batch,
)
from orbwatch.core.frames import Geodetic, distance_km, to_geodetic, to_scene_space
from orbwatch.core.scoring import (
    ScoringConfig,
    Threat,
    ThreatSample,
    ThreatScoringEngine,
    ThreatSnapshot,
    ThreatStatus,
    score_status,
)
from orbwatch.core.scheduler import SimulationClock, SimulationScheduler, UpdateCategory, UpdateIntervals
from orbwatch.engine import ObjectCategory, OrbitalParams, SimulationConfig, SimulationEngine, SimulationSnapshot

__all__ = [
    "__version__",
    "BatchIngest",
    "ElementSet",
    "ParseError",
    "ParseErrorKind",
    "filter_stale",
    "ingest",
    "ingest_batch",
    "parse_tle",
    "parse_user_input",
    "PropagationError",
    "PropagationErrorKind",
    "StateVector",
    "propagate",
    "propagate_batch",
    "Geodetic",
    "distance_km",
    "to_geodetic",
    "to_scene_space",
    "ScoringConfig",
    "Threat",
    "ThreatSample",
    "ThreatScoringEngine",
    "ThreatSnapshot",
    "ThreatStatus",
    "score_status",
    "SimulationClock",
    "SimulationScheduler",
    "UpdateCategory",
    "UpdateIntervals",
    "ObjectCategory",
    "OrbitalParams",
    "SimulationConfig",
    "SimulationEngine",
    "SimulationSnapshot",
]

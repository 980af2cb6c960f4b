from __future__ import annotations

"""Physical constants and default tracking/scoring policy.

Distances in km, times in seconds unless otherwise noted.
"""

# --- Earth parameters ---
EARTH_RADIUS_KM: float = 6378.137
"""Equatorial radius of Earth in km (WGS-84)."""

EARTH_MEAN_RADIUS_KM: float = 6371.0
"""Mean radius of Earth in km, used for displayed altitude."""

EARTH_FLATTENING: float = 1.0 / 298.257223563
"""WGS-84 flattening."""

EARTH_MU_KM3_S2: float = 398600.4418
"""Earth gravitational parameter (GM) in km³/s²."""

# --- Render space ---
SCENE_SCALE_KM: float = 1000.0
"""Kilometres per render-space unit."""

MAX_ACTIVE_RENDER: int = 500
"""Upper bound on active objects propagated for display."""

# --- Element set validity ---
DEFAULT_EPOCH_WINDOW_DAYS: float = 30.0
"""Propagation further than this from the element set epoch is flagged."""

# --- Threat zones (km) ---
DANGER_RADIUS_KM: float = 100.0
"""Outer warning zone."""

CRITICAL_RADIUS_KM: float = 10.0
"""Immediate threat zone."""

EXTREME_RADIUS_KM: float = 5.0
"""Extreme danger zone."""

NEAR_RADIUS_KM: float = 50.0
"""Soft-warning threshold used by the threat narrative."""

# --- Scoring weights ---
DANGER_WEIGHT: float = 0.5
"""Score points per km of penetration into the danger zone."""

CRITICAL_BONUS: float = 50.0
"""Flat bonus for an object inside the critical radius."""

EXTREME_BONUS: float = 80.0
"""Additional flat bonus for an object inside the extreme radius."""

HIGH_THREAT_LOG_SCORE: int = 70
"""Scores above this are logged at warning level."""

# --- History ---
MAX_HISTORY: int = 120
"""Score samples kept (about 2 minutes at 1 Hz)."""

MAX_CLOSEST_THREATS: int = 5
"""Threats retained in a snapshot."""

# --- Time acceleration ---
MIN_TIME_MULTIPLIER: float = 0.1
MAX_TIME_MULTIPLIER: float = 100.0

# --- Update cadences (seconds of wall-clock time) ---
DEBRIS_UPDATE_INTERVAL_S: float = 0.1
ACTIVE_UPDATE_INTERVAL_S: float = 0.5
SCORE_UPDATE_INTERVAL_S: float = 0.1
UI_UPDATE_INTERVAL_S: float = 0.1

"""Frame conversions and distance helpers.

Propagation output is in the TEME inertial frame (km). Two derived frames
are supported:

- Scene space: the render frame, Y-up. Inertial X stays X, inertial Z
  becomes Y and inertial Y becomes -Z; everything is divided by a uniform
  scale (1 unit = 1000 km by default).
- Geodetic: latitude/longitude/altitude over the WGS-84 ellipsoid, using
  Greenwich mean sidereal time to rotate out of the inertial frame.

All angles are radians internally; only ``Geodetic`` holds degrees.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime

import numpy as np
from numpy.typing import ArrayLike, NDArray
from sgp4.propagation import gstime

from orbwatch.core.propagation import julian_date
from orbwatch.utils.constants import (
    EARTH_FLATTENING,
    EARTH_MEAN_RADIUS_KM,
    EARTH_RADIUS_KM,
    SCENE_SCALE_KM,
)

logger = logging.getLogger(__name__)

_GEODETIC_MAX_ITERATIONS = 20
_GEODETIC_TOLERANCE_RAD = 1e-12


@dataclass(frozen=True)
class Geodetic:
    """Position over the Earth's surface.

    Attributes:
        latitude_deg: Geodetic latitude in degrees, [-90, 90].
        longitude_deg: Longitude in degrees, (-180, 180].
        altitude_km: Height above the ellipsoid in km.
    """

    latitude_deg: float
    longitude_deg: float
    altitude_km: float


def to_scene_space(position: ArrayLike, scale_km: float = SCENE_SCALE_KM) -> NDArray[np.float64] | None:
    """Convert an inertial position (km) to scene coordinates.

    Returns:
        A (3,) array, or None if the input is not three finite numbers.
    """
    try:
        v = np.asarray(position, dtype=np.float64)
    except (TypeError, ValueError):
        return None
    if v.shape != (3,) or not np.all(np.isfinite(v)):
        return None
    return np.array([v[0], v[2], -v[1]], dtype=np.float64) / scale_km


def to_scene_space_batch(
    positions: NDArray[np.float64], scale_km: float = SCENE_SCALE_KM
) -> tuple[NDArray[np.float64], NDArray[np.bool_]]:
    """Vectorized ``to_scene_space`` for an (n, 3) array.

    Returns:
        Tuple of scene positions (n, 3) and a validity mask (n,). Rows with a
        non-finite component are invalid; their scene values are meaningless.
    """
    positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
    scene = np.empty_like(positions)
    scene[:, 0] = positions[:, 0]
    scene[:, 1] = positions[:, 2]
    scene[:, 2] = -positions[:, 1]
    scene /= scale_km
    valid = np.all(np.isfinite(positions), axis=1)
    return scene, valid


def magnitude(vector: ArrayLike) -> float:
    return float(np.linalg.norm(np.asarray(vector, dtype=np.float64)))


def distance_km(a: ArrayLike, b: ArrayLike, scale_km: float = SCENE_SCALE_KM) -> float:
    """Distance in km between two scene-space positions."""
    return magnitude(np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)) * scale_km


def altitude_km(position_km: ArrayLike, earth_radius_km: float = EARTH_MEAN_RADIUS_KM) -> float:
    """Altitude as |r| minus the Earth radius."""
    return magnitude(position_km) - earth_radius_km


def speed_km_s(velocity_km_s: ArrayLike) -> float:
    return magnitude(velocity_km_s)


def gmst(time: datetime) -> float:
    """Greenwich mean sidereal time in radians, [0, 2π)."""
    jd, fr = julian_date(time)
    return gstime(jd + fr)


def to_geodetic(position_km: ArrayLike, time: datetime) -> Geodetic:
    """Convert an inertial position to geodetic coordinates at ``time``.

    Latitude is found by fixed-point iteration on the WGS-84 ellipsoid,
    stopping on convergence or after a bounded number of iterations.

    Raises:
        ValueError: If the position is not three finite numbers.
    """
    r = np.asarray(position_km, dtype=np.float64)
    if r.shape != (3,) or not np.all(np.isfinite(r)):
        raise ValueError(f"Invalid position for geodetic conversion: {position_km!r}")

    x, y, z = (float(c) for c in r)
    a = EARTH_RADIUS_KM
    e2 = 2.0 * EARTH_FLATTENING - EARTH_FLATTENING**2
    rho = math.hypot(x, y)

    longitude = math.atan2(y, x) - gmst(time)
    longitude = (longitude + math.pi) % (2.0 * math.pi) - math.pi
    if longitude == -math.pi:
        longitude = math.pi

    latitude = math.atan2(z, rho)
    c = 1.0
    for _ in range(_GEODETIC_MAX_ITERATIONS):
        sin_lat = math.sin(latitude)
        c = 1.0 / math.sqrt(1.0 - e2 * sin_lat * sin_lat)
        updated = math.atan2(z + a * c * e2 * sin_lat, rho)
        if abs(updated - latitude) < _GEODETIC_TOLERANCE_RAD:
            latitude = updated
            break
        latitude = updated

    cos_lat = math.cos(latitude)
    if abs(cos_lat) > 1e-10:
        height = rho / cos_lat - a * c
    else:
        # over a pole
        height = abs(z) - a * c * (1.0 - e2)

    return Geodetic(
        latitude_deg=math.degrees(latitude),
        longitude_deg=math.degrees(longitude),
        altitude_km=height,
    )

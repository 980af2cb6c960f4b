"""Orbital propagation via SGP4."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Sequence

import numpy as np
from numpy.typing import NDArray
from sgp4.api import SatrecArray, jday

from orbwatch.core.tle import ElementSet
from orbwatch.utils.constants import DEFAULT_EPOCH_WINDOW_DAYS

logger = logging.getLogger(__name__)


class PropagationErrorKind(Enum):
    """Reasons a position is unavailable for an object at a given time."""

    DECAYED = "decayed"
    NUMERICAL_ERROR = "numerical_error"
    INVALID_EPOCH_RANGE = "invalid_epoch_range"


# sgp4 error codes -> (kind, description)
_SGP4_ERRORS: dict[int, tuple[PropagationErrorKind, str]] = {
    1: (PropagationErrorKind.NUMERICAL_ERROR, "mean eccentricity out of range"),
    2: (PropagationErrorKind.NUMERICAL_ERROR, "mean motion below zero"),
    3: (PropagationErrorKind.NUMERICAL_ERROR, "perturbed eccentricity out of range"),
    4: (PropagationErrorKind.NUMERICAL_ERROR, "semi-latus rectum below zero"),
    5: (PropagationErrorKind.DECAYED, "epoch elements are sub-orbital"),
    6: (PropagationErrorKind.DECAYED, "satellite has decayed"),
}


@dataclass
class StateVector:
    """Position and velocity in the TEME (Earth-centered inertial) frame.

    Attributes:
        position_km: [x, y, z] position in km.
        velocity_km_s: [vx, vy, vz] velocity in km/s.
        epoch: Time of this state vector (UTC).
    """

    position_km: NDArray[np.float64]  # shape (3,)
    velocity_km_s: NDArray[np.float64]  # shape (3,)
    epoch: datetime


class PropagationError(ValueError):
    """Raised when an element set cannot be propagated to a time.

    Attributes:
        kind: What went wrong.
        norad_id: Catalog number of the object.
        time: Requested propagation time.
        state: For ``INVALID_EPOCH_RANGE`` only, the state SGP4 computed
            anyway. Its accuracy is not trustworthy.
    """

    def __init__(
        self,
        message: str,
        kind: PropagationErrorKind,
        norad_id: int,
        time: datetime,
        state: StateVector | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.norad_id = norad_id
        self.time = time
        self.state = state


def as_utc(time: datetime) -> datetime:
    """Return an aware UTC datetime; naive datetimes are taken to be UTC."""
    if time.tzinfo is None:
        return time.replace(tzinfo=timezone.utc)
    return time.astimezone(timezone.utc)


def julian_date(time: datetime) -> tuple[float, float]:
    """Split Julian date (whole, fraction) for a UTC datetime."""
    time = as_utc(time)
    return jday(time.year, time.month, time.day, time.hour, time.minute, time.second + time.microsecond / 1e6)


def epoch_offset_days(element_set: ElementSet, time: datetime) -> float:
    """Signed time since the element set epoch, in days."""
    return (as_utc(time) - element_set.epoch).total_seconds() / 86400.0


def propagate(
    element_set: ElementSet,
    time: datetime,
    max_epoch_offset_days: float | None = DEFAULT_EPOCH_WINDOW_DAYS,
) -> StateVector:
    """Propagate one element set to one time using SGP4.

    Deterministic: the result depends only on the element set and the time.

    Args:
        element_set: A parsed ElementSet.
        time: UTC datetime to propagate to.
        max_epoch_offset_days: Validity window around the epoch. ``None``
            disables the check.

    Returns:
        The StateVector at ``time``.

    Raises:
        PropagationError: ``NUMERICAL_ERROR`` or ``DECAYED`` if SGP4 fails,
            ``INVALID_EPOCH_RANGE`` if ``time`` is outside the validity window.
    """
    time = as_utc(time)
    jd, fr = julian_date(time)

    error_code, pos, vel = element_set.satrec.sgp4(jd, fr)

    if error_code != 0:
        kind, reason = _SGP4_ERRORS.get(error_code, (PropagationErrorKind.NUMERICAL_ERROR, "unknown error"))
        logger.debug("SGP4 failed for NORAD %d at %s: error code %d (%s)", element_set.norad_id, time, error_code, reason)
        raise PropagationError(
            f"SGP4 propagation failed for NORAD {element_set.norad_id} at {time}: {reason} (error code {error_code})",
            kind,
            element_set.norad_id,
            time,
        )

    state = StateVector(
        position_km=np.array(pos, dtype=np.float64),
        velocity_km_s=np.array(vel, dtype=np.float64),
        epoch=time,
    )

    if not (np.all(np.isfinite(state.position_km)) and np.all(np.isfinite(state.velocity_km_s))):
        raise PropagationError(
            f"SGP4 returned a non-finite state for NORAD {element_set.norad_id} at {time}",
            PropagationErrorKind.NUMERICAL_ERROR,
            element_set.norad_id,
            time,
        )

    if max_epoch_offset_days is not None:
        offset = epoch_offset_days(element_set, time)
        if abs(offset) > max_epoch_offset_days:
            raise PropagationError(
                f"NORAD {element_set.norad_id} propagated {offset:.1f} days from epoch "
                f"(window {max_epoch_offset_days:.1f} days)",
                PropagationErrorKind.INVALID_EPOCH_RANGE,
                element_set.norad_id,
                time,
                state=state,
            )

    return state


def propagate_batch(
    element_sets: Sequence[ElementSet],
    time: datetime,
    max_epoch_offset_days: float | None = DEFAULT_EPOCH_WINDOW_DAYS,
) -> tuple[NDArray[np.float64], NDArray[np.bool_]]:
    """Propagate many element sets to a single time using vectorized SGP4.

    Uses SatrecArray for C-level batch propagation. Each object owns one row
    of the output; a failed object leaves its row marked invalid without
    affecting the others.

    Args:
        element_sets: Element sets to propagate.
        time: Single UTC datetime to propagate all objects to.
        max_epoch_offset_days: Validity window around each epoch; objects
            outside it are marked invalid. ``None`` disables the check.

    Returns:
        Tuple of:
            - states: Array of shape (n, 6) with [x,y,z,vx,vy,vz] in km, km/s
            - valid_mask: Boolean array of shape (n,), True where a usable
              state was produced
    """
    if not element_sets:
        return np.empty((0, 6), dtype=np.float64), np.empty(0, dtype=np.bool_)

    satrec_array = SatrecArray([es.satrec for es in element_sets])

    jd, fr = julian_date(time)
    jd_array = np.array([jd], dtype=np.float64)
    fr_array = np.array([fr], dtype=np.float64)

    # errors (n,1), positions (n,1,3), velocities (n,1,3)
    errors, positions, velocities = satrec_array.sgp4(jd_array, fr_array)

    n = len(element_sets)
    result = np.empty((n, 6), dtype=np.float64)
    result[:, 0:3] = positions[:, 0, :]
    result[:, 3:6] = velocities[:, 0, :]

    valid_mask = (errors[:, 0] == 0) & np.all(np.isfinite(result), axis=1)

    if max_epoch_offset_days is not None:
        offsets = np.array([epoch_offset_days(es, time) for es in element_sets], dtype=np.float64)
        valid_mask &= np.abs(offsets) <= max_epoch_offset_days

    failed = n - int(np.count_nonzero(valid_mask))
    if failed:
        logger.debug("propagate_batch: %d/%d objects have no position at %s", failed, n, time)

    return result, valid_mask

"""Tests for propagation and its failure modes."""
from __future__ import annotations

import dataclasses
import math
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import numpy as np
import pytest

from orbwatch.core.tle import ElementSet
from orbwatch.core.propagation import (
    PropagationError,
    PropagationErrorKind,
    as_utc,
    epoch_offset_days,
    propagate,
    propagate_batch,
)


ISS_LINE1 = "1 25544U 98067A   24045.54896019  .00016717  00000-0  30093-3 0  9993"
ISS_LINE2 = "2 25544  51.6412 207.4925 0004948 290.5508 178.9792 15.49583488439596"

HST_LINE1 = "1 20580U 90037B   24045.55478014  .00001456  00000-0  73052-4 0  9994"
HST_LINE2 = "2 20580  28.4701  41.0696 0002622 348.3544 140.2428 15.09435694872912"


@pytest.fixture
def iss() -> ElementSet:
    return ElementSet.from_lines(ISS_LINE1, ISS_LINE2, name="ISS (ZARYA)")


@pytest.fixture
def hst() -> ElementSet:
    return ElementSet.from_lines(HST_LINE1, HST_LINE2, name="HST")


def _with_fake_satrec(element_set: ElementSet, error_code: int, position: tuple[float, float, float]) -> ElementSet:
    satrec = MagicMock()
    satrec.sgp4.return_value = (error_code, position, (0.0, 7.5, 0.0))
    return dataclasses.replace(element_set, satrec=satrec)


def test_propagation_is_deterministic(iss: ElementSet):
    t = iss.epoch + timedelta(minutes=42)
    a = propagate(iss, t)
    b = propagate(iss, t)
    np.testing.assert_array_equal(a.position_km, b.position_km)
    np.testing.assert_array_equal(a.velocity_km_s, b.velocity_km_s)


def test_propagation_leo_magnitudes(iss: ElementSet):
    state = propagate(iss, iss.epoch + timedelta(hours=1))
    assert 6500 < np.linalg.norm(state.position_km) < 7000
    assert 7.0 < np.linalg.norm(state.velocity_km_s) < 8.0
    assert state.position_km.shape == (3,)
    assert state.epoch == iss.epoch + timedelta(hours=1)


def test_naive_time_is_utc(iss: ElementSet):
    aware = iss.epoch + timedelta(minutes=5)
    naive = aware.replace(tzinfo=None)
    np.testing.assert_array_equal(propagate(iss, naive).position_km, propagate(iss, aware).position_km)


def test_as_utc_converts_offsets():
    tz = timezone(timedelta(hours=2))
    t = datetime(2024, 2, 14, 12, 0, tzinfo=tz)
    assert as_utc(t) == datetime(2024, 2, 14, 10, 0, tzinfo=timezone.utc)
    assert as_utc(t).tzinfo is timezone.utc


def test_epoch_offset_days(iss: ElementSet):
    assert epoch_offset_days(iss, iss.epoch + timedelta(days=2)) == pytest.approx(2.0)
    assert epoch_offset_days(iss, iss.epoch - timedelta(hours=12)) == pytest.approx(-0.5)


def test_outside_epoch_window_carries_state(iss: ElementSet):
    t = iss.epoch + timedelta(days=35)
    with pytest.raises(PropagationError) as excinfo:
        propagate(iss, t)
    err = excinfo.value
    assert err.kind is PropagationErrorKind.INVALID_EPOCH_RANGE
    assert err.norad_id == 25544
    assert err.state is not None
    assert np.all(np.isfinite(err.state.position_km))


def test_epoch_window_can_be_disabled(iss: ElementSet):
    state = propagate(iss, iss.epoch + timedelta(days=35), max_epoch_offset_days=None)
    assert np.all(np.isfinite(state.position_km))


def test_custom_epoch_window(iss: ElementSet):
    with pytest.raises(PropagationError):
        propagate(iss, iss.epoch - timedelta(days=2), max_epoch_offset_days=1.0)


def test_decayed_error_kind(iss: ElementSet):
    decayed = _with_fake_satrec(iss, 6, (0.0, 0.0, 0.0))
    with pytest.raises(PropagationError) as excinfo:
        propagate(decayed, iss.epoch)
    assert excinfo.value.kind is PropagationErrorKind.DECAYED
    assert excinfo.value.state is None


@pytest.mark.parametrize("code", [1, 2, 3, 4])
def test_numerical_error_kinds(iss: ElementSet, code: int):
    broken = _with_fake_satrec(iss, code, (0.0, 0.0, 0.0))
    with pytest.raises(PropagationError) as excinfo:
        propagate(broken, iss.epoch)
    assert excinfo.value.kind is PropagationErrorKind.NUMERICAL_ERROR


def test_non_finite_result_is_numerical_error(iss: ElementSet):
    broken = _with_fake_satrec(iss, 0, (math.nan, 0.0, 0.0))
    with pytest.raises(PropagationError) as excinfo:
        propagate(broken, iss.epoch)
    assert excinfo.value.kind is PropagationErrorKind.NUMERICAL_ERROR


def test_propagation_error_is_value_error(iss: ElementSet):
    with pytest.raises(ValueError):
        propagate(iss, iss.epoch + timedelta(days=60))


def test_batch_matches_single(iss: ElementSet, hst: ElementSet):
    t = iss.epoch + timedelta(minutes=30)
    states, valid = propagate_batch([iss, hst], t)
    assert states.shape == (2, 6)
    assert valid.tolist() == [True, True]
    for row, es in zip(states, [iss, hst]):
        single = propagate(es, t)
        np.testing.assert_allclose(row[:3], single.position_km, atol=1e-6)
        np.testing.assert_allclose(row[3:], single.velocity_km_s, atol=1e-9)


def test_batch_empty():
    states, valid = propagate_batch([], datetime(2024, 2, 14, tzinfo=timezone.utc))
    assert states.shape == (0, 6)
    assert valid.shape == (0,)


def test_batch_epoch_window_marks_invalid(iss: ElementSet, hst: ElementSet):
    t = iss.epoch + timedelta(days=35)
    states, valid = propagate_batch([iss, hst], t)
    assert states.shape == (2, 6)
    assert not valid.any()

    _, valid = propagate_batch([iss, hst], t, max_epoch_offset_days=None)
    assert valid.all()


def test_batch_far_future(iss: ElementSet):
    far = iss.epoch + timedelta(days=365 * 50)
    states, valid = propagate_batch([iss], far, max_epoch_offset_days=None)
    # Either succeeds or valid[0] is False
    assert states.shape == (1, 6)
    assert valid.shape == (1,)

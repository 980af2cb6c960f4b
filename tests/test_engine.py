"""Tests for the simulation engine facade."""
from __future__ import annotations

from datetime import timedelta

import numpy as np
import pytest

from conftest import (
    ACTIVE_TLES_TEXT,
    CRITICAL_DEBRIS_TEXT,
    FAR_DEBRIS_TEXT,
    ISS_LINE1,
    ISS_LINE2,
    ISS_NAME,
    NEAR_DEBRIS_TEXT,
)
from orbwatch.core.scheduler import UpdateCategory
from orbwatch.core.scoring import ThreatStatus
from orbwatch.engine import ObjectCategory, SimulationConfig, SimulationEngine, SimulationSnapshot


@pytest.fixture
def engine(iss) -> SimulationEngine:
    eng = SimulationEngine(start_time=iss.epoch)
    eng.ingest_elements({
        "active": ACTIVE_TLES_TEXT,
        "debris": NEAR_DEBRIS_TEXT + FAR_DEBRIS_TEXT,
        "critical": CRITICAL_DEBRIS_TEXT,
    })
    return eng


@pytest.fixture
def tracking(engine, iss) -> SimulationEngine:
    assert engine.set_player(ISS_NAME, ISS_LINE1, ISS_LINE2, start_time=iss.epoch)
    return engine


@pytest.fixture
def snapshots(tracking) -> list[SimulationSnapshot]:
    received: list[SimulationSnapshot] = []
    tracking.subscribe(received.append)
    return received


class TestIngestion:
    def test_counts(self, engine):
        assert engine.counts() == {
            ObjectCategory.ACTIVE: 2,
            ObjectCategory.DEBRIS: 3,
            ObjectCategory.CRITICAL: 1,
        }

    def test_results_report_skipped(self, iss):
        eng = SimulationEngine(start_time=iss.epoch)
        results = eng.ingest_elements({ObjectCategory.DEBRIS: "BROKEN\n1 garbage\n2 garbage\n" + FAR_DEBRIS_TEXT})
        batch = results[ObjectCategory.DEBRIS]
        assert (batch.valid_count, batch.skipped_count) == (2, 1)

    def test_ingest_replaces_category(self, engine):
        engine.ingest_elements({"debris": FAR_DEBRIS_TEXT})
        assert engine.counts()[ObjectCategory.DEBRIS] == 2
        assert [es.name for es in engine.element_sets("debris")] == ["NOAA 18", "FENGYUN 1C DEB"]

    def test_ingest_player_rejected(self, engine):
        with pytest.raises(ValueError):
            engine.ingest_elements({"player": NEAR_DEBRIS_TEXT})

    def test_unknown_category_rejected(self, engine):
        with pytest.raises(ValueError):
            engine.ingest_elements({"junk": NEAR_DEBRIS_TEXT})

    def test_ingest_element_sets(self, engine, iss):
        assert engine.ingest_element_sets(ObjectCategory.ACTIVE, [iss]) == 1
        assert engine.element_sets(ObjectCategory.ACTIVE) == [iss]


class TestPlayer:
    def test_no_player_initially(self, engine):
        assert engine.player is None
        assert engine.player_position() is None
        assert engine.player_orbital_params() is None
        assert not engine.running

    def test_invalid_player_rejected(self, engine):
        assert engine.set_player("BAD", "1 garbage", "2 garbage") is False
        assert engine.player is None
        assert not engine.running

    def test_set_player_starts_session(self, tracking, iss):
        assert tracking.running
        assert tracking.player.norad_id == 25544
        assert tracking.element_sets(ObjectCategory.PLAYER) == [tracking.player]
        assert tracking.simulation_time == iss.epoch

    def test_set_player_from_text(self, engine):
        assert engine.set_player_from_text(f"{ISS_LINE1}\n{ISS_LINE2}")
        assert engine.player.name == "USER SATELLITE"
        assert engine.set_player_from_text("not a tle") is False

    def test_orbital_params(self, tracking):
        params = tracking.player_orbital_params()
        assert 200 < params.altitude_km < 500
        assert 7.0 < params.velocity_km_s < 8.0
        assert params.inclination_deg == pytest.approx(51.6412)

    def test_geodetic(self, tracking):
        geo = tracking.player_geodetic()
        assert abs(geo.latitude_deg) < 52.5
        assert 380 < geo.altitude_km < 450

    def test_player_outside_epoch_window(self, engine, iss):
        engine.set_player(ISS_NAME, ISS_LINE1, ISS_LINE2, start_time=iss.epoch + timedelta(days=60))
        assert engine.player_position() is None
        engine.tick(0.0)
        assert engine.current_threat_snapshot().current == 0

    def test_new_player_resets_history(self, tracking):
        tracking.tick(0.0)
        tracking.tick(0.5)
        assert len(tracking.scorer.history()) == 2
        tracking.set_player_from_text(f"{ISS_NAME}\n{ISS_LINE1}\n{ISS_LINE2}")
        assert tracking.scorer.history() == []


class TestScoring:
    def test_nearby_debris_scores_elevated(self, tracking):
        tracking.tick(0.0)
        snapshot = tracking.current_threat_snapshot()
        assert 31 <= snapshot.current <= 60
        assert snapshot.status is ThreatStatus.ELEVATED
        (threat,) = snapshot.closest_threats
        assert threat.name == "NEAR DEB"
        assert 15 < threat.distance_km < 35
        assert tracking.threat_description().startswith("WARNING: 1 object(s) within 50 km")

    def test_debris_with_distances(self, tracking):
        distances = tracking.debris_with_distances()
        assert [d.name for d in distances][0] == "NEAR DEB"
        assert len(distances) == 3
        values = [d.distance_km for d in distances]
        assert values == sorted(values)

    def test_force_score(self, tracking):
        tracking.set_force_score(95)
        tracking.tick(0.0)
        assert tracking.current_threat_snapshot().current == 95
        assert tracking.current_threat_snapshot().status is ThreatStatus.CRITICAL
        assert tracking.scorer.scores()[-1] == 95

    def test_critical_scenario(self, tracking):
        assert tracking.switch_to_critical_debris() == 1
        assert tracking.critical_scenario
        tracking.tick(0.0)
        snapshot = tracking.current_threat_snapshot()
        assert snapshot.current == 100
        assert snapshot.status is ThreatStatus.CRITICAL
        assert tracking.threat_description().startswith("EXTREME DANGER")

        tracking.set_force_score(50)
        tracking.reset_to_nominal()
        assert not tracking.critical_scenario
        assert tracking.scorer.force_score is None
        tracking.tick(1.0)
        assert tracking.current_threat_snapshot().status is ThreatStatus.ELEVATED

    def test_critical_scenario_without_objects(self, tracking):
        tracking.ingest_elements({"critical": ""})
        assert tracking.switch_to_critical_debris() == 0
        assert not tracking.critical_scenario

    def test_history_grows_once_per_score_tick(self, tracking):
        for now in (0.0, 0.05, 0.2, 0.25, 0.4):
            tracking.tick(now)
        # score runs at 0.0, 0.2 and 0.4
        assert len(tracking.scorer.history()) == 3

    def test_pause_and_resume(self, tracking, iss):
        tracking.tick(0.0)
        tracking.pause()
        tracking.tick(0.5)
        tracking.tick(1.0)
        assert len(tracking.scorer.history()) == 1
        assert tracking.simulation_time == iss.epoch + timedelta(seconds=1)

        tracking.resume()
        tracking.tick(1.5)
        assert len(tracking.scorer.history()) == 2
        assert tracking.simulation_time == iss.epoch + timedelta(seconds=1.5)

    def test_time_multiplier(self, tracking, iss):
        assert tracking.set_time_multiplier(500) == 100.0
        tracking.tick(0.0)
        tracking.tick(2.0)
        assert tracking.simulation_time == iss.epoch + timedelta(seconds=200)


class TestSnapshots:
    def test_published_on_ui_tick(self, tracking, snapshots, iss):
        ran = tracking.tick(0.0)
        assert UpdateCategory.UI in ran
        assert len(snapshots) == 1
        snap = snapshots[0]
        assert snap.simulation_time == iss.epoch
        assert snap.running
        assert snap.player_name == ISS_NAME
        assert snap.player_position.shape == (3,)
        assert snap.debris_positions.shape == (3, 3)
        assert snap.active_positions.shape == (2, 3)
        assert snap.threat.status is ThreatStatus.ELEVATED
        assert snap.threat_description.startswith("WARNING")

    def test_not_published_while_paused(self, tracking, snapshots):
        tracking.pause()
        tracking.tick(0.0)
        tracking.tick(1.0)
        assert snapshots == []

    def test_unsubscribe(self, tracking):
        received = []
        unsubscribe = tracking.subscribe(received.append)
        tracking.tick(0.0)
        unsubscribe()
        tracking.tick(1.0)
        assert len(received) == 1

    def test_failing_listener_does_not_stop_others(self, tracking, snapshots):
        def broken(_snapshot):
            raise RuntimeError("renderer crashed")

        tracking.subscribe(broken)
        tracking.tick(0.0)
        tracking.tick(1.0)
        assert len(snapshots) == 2

    def test_active_render_limit(self, iss):
        eng = SimulationEngine(SimulationConfig(max_active_render=1), start_time=iss.epoch)
        eng.ingest_elements({"active": ACTIVE_TLES_TEXT})
        assert eng.active_object_positions().shape == (1, 3)

    def test_positions_are_finite(self, tracking):
        for positions in (tracking.debris_positions(), tracking.active_object_positions()):
            assert np.all(np.isfinite(positions))

    def test_statistics(self, tracking):
        tracking.tick(0.0)
        stats = tracking.statistics()
        assert stats.initialized
        assert stats.running
        assert stats.tick_count == 1
        assert (stats.active_objects, stats.debris_objects, stats.critical_objects) == (2, 3, 1)
        assert stats.threat.history_length == 1
        assert stats.threat.threats_in_range == 1


class TestSimulationConfig:
    def test_from_dict(self):
        cfg = SimulationConfig.from_dict({
            "max_active_render": 10,
            "epoch_window_days": None,
            "scoring": {"danger_radius_km": 150.0},
            "intervals": {"ui": 0.2},
        })
        assert cfg.max_active_render == 10
        assert cfg.epoch_window_days is None
        assert cfg.scoring.danger_radius_km == 150.0
        assert cfg.intervals.ui == 0.2
        assert cfg.intervals.debris == 0.1

    def test_unknown_key(self):
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            SimulationConfig.from_dict({"render_everything": True})

    def test_unknown_nested_key(self):
        with pytest.raises(ValueError):
            SimulationConfig.from_dict({"scoring": {"bogus": 1}})

    def test_invalid_nested_value(self):
        with pytest.raises(ValueError):
            SimulationConfig.from_dict({"intervals": {"score": -1.0}})

    def test_scene_scale(self):
        assert SimulationConfig().scene_scale_km == 1000

"""Tests for the data model and tournament file loading."""

from datetime import datetime, timedelta
from pathlib import Path

import pytest

from stationplan.errors import ConfigError
from stationplan.intervals import Interval
from stationplan.schedule import (
    Algorithm,
    ConstraintPriority,
    ConstraintType,
    GoalType,
    Match,
    PlayerAvailability,
    SchedulingConfig,
    Slot,
    Station,
    load_tournament,
)

T0 = datetime(2026, 5, 2, 10, 0)

TOURNAMENT_YAML = """
tournament_id: "cup-1"
config:
  algorithm: backtracking
  start_time: 2026-05-02T10:00:00
  end_time: "2026-05-02T14:00:00"
  match_duration: 20
  buffer_time: 5
  min_rest_time: 10
  optimization_goals:
    - type: minimize_total_time
      weight: 0.7
solver:
  max_backtracks: 500
stations:
  - station_id: "s1"
    name: "Setup 1"
    game_types: ["melee"]
  - station_id: "s2"
    is_active: false
matches:
  - match_id: "m1"
    round: 1
    side_a: ["p1"]
    side_b: ["p2"]
    event_name: melee
  - match_id: 2
    side_a: [p3, p4]
    side_b: [p1]
    duration: 45
constraints:
  - type: time_range
    match_ids: ["m1"]
    priority: hard
    value:
      start: 2026-05-02T11:00:00
      end: 2026-05-02T12:00:00
availability:
  - player_id: p1
    blackout_periods:
      - start: 2026-05-02T13:00:00
        end: 2026-05-02T14:00:00
"""


def write(tmp_path, text) -> Path:
    path = tmp_path / "tournament.yaml"
    path.write_text(text)
    return path


class TestLoadTournament:
    """Tournament files from YAML."""

    def test_load_valid_file(self, tmp_path):
        plan = load_tournament(write(tmp_path, TOURNAMENT_YAML))

        assert plan.tournament_id == "cup-1"
        assert plan.config.algorithm == Algorithm.BACKTRACKING
        assert plan.config.end_time == datetime(2026, 5, 2, 14, 0)
        assert plan.config.solver.max_backtracks == 500
        assert plan.config.optimization_goals[0].type == GoalType.MINIMIZE_TOTAL_TIME
        assert [s.station_id for s in plan.stations] == ["s1", "s2"]
        assert plan.stations[1].is_active is False
        assert plan.stations[1].name == "s2"

    def test_matches_inherit_tournament_and_defaults(self, tmp_path):
        plan = load_tournament(write(tmp_path, TOURNAMENT_YAML))

        second = plan.matches[1]
        assert second.match_id == "2"
        assert second.round == 1
        assert second.tournament_id == "cup-1"
        assert second.duration == 45
        assert second.player_ids == ("p3", "p4", "p1")

    def test_constraints_and_availability(self, tmp_path):
        plan = load_tournament(write(tmp_path, TOURNAMENT_YAML))

        [constraint] = plan.constraints
        assert constraint.type == ConstraintType.TIME_RANGE
        assert constraint.priority == ConstraintPriority.HARD
        assert constraint.value == Interval(datetime(2026, 5, 2, 11), datetime(2026, 5, 2, 12))
        assert plan.availability[0].blackout_periods[0].start == datetime(2026, 5, 2, 13)

    def test_missing_field_is_config_error(self, tmp_path):
        with pytest.raises(ConfigError, match="stations"):
            load_tournament(write(tmp_path, "config:\n  start_time: 2026-05-02T10:00:00\n  end_time: 2026-05-02T11:00:00\nmatches: []\n"))

    def test_bad_values_are_config_errors(self, tmp_path):
        bad_algorithm = TOURNAMENT_YAML.replace("algorithm: backtracking", "algorithm: simulated_annealing")
        with pytest.raises(ConfigError):
            load_tournament(write(tmp_path, bad_algorithm))

        bad_time = TOURNAMENT_YAML.replace('end_time: "2026-05-02T14:00:00"', 'end_time: "tomorrow"')
        with pytest.raises(ConfigError, match="timestamp"):
            load_tournament(write(tmp_path, bad_time))

    def test_malformed_yaml_is_config_error(self, tmp_path):
        with pytest.raises(ConfigError, match="invalid YAML"):
            load_tournament(write(tmp_path, "config: [unclosed\n"))

    def test_malformed_structure_is_config_error(self, tmp_path):
        text = "config:\n  start_time: 2026-05-02T10:00:00\n  end_time: 2026-05-02T11:00:00\nstations: 5\nmatches: []\n"
        with pytest.raises(ConfigError, match="malformed"):
            load_tournament(write(tmp_path, text))

    def test_non_mapping_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_tournament(write(tmp_path, "- just\n- a list\n"))

    def test_sample_tournament_loads(self):
        sample = Path(__file__).parent.parent / "tournaments" / "sample.yaml"
        if not sample.exists():
            pytest.skip("Sample tournament not found")

        plan = load_tournament(sample)
        assert plan.matches
        assert plan.config.window_minutes == 240


class TestModel:
    def test_config_validation(self):
        with pytest.raises(ConfigError):
            SchedulingConfig(start_time=T0, end_time=T0)
        with pytest.raises(ConfigError):
            SchedulingConfig(start_time=T0, end_time=T0 + timedelta(hours=1), match_duration=0)
        with pytest.raises(ConfigError):
            SchedulingConfig(start_time=T0, end_time=T0 + timedelta(hours=1), buffer_time=-1)

    def test_station_game_types(self):
        assert Station("s1").supports("melee")
        assert Station("s1", game_types=["melee"]).supports(None)
        assert not Station("s1", game_types=["melee"]).supports("ultimate")

    def test_slot_shift_keeps_duration(self):
        slot = Slot("slot-m1", "t", T0, T0 + timedelta(minutes=15), 15, "s1", match_id="m1")
        slot.shift(10)
        assert slot.start == T0 + timedelta(minutes=10)
        assert slot.end == T0 + timedelta(minutes=25)

    def test_placeholder_slot(self):
        assert Slot("slot-x", "t", T0, T0 + timedelta(minutes=15), 15, "s1").is_placeholder

    def test_match_players_deduplicated(self):
        assert Match("m1", 1, ["p1", "p2"], ["p2", "p3"]).player_ids == ("p1", "p2", "p3")

    def test_availability(self):
        span = Interval(T0, T0 + timedelta(minutes=15))
        assert PlayerAvailability("p1").allows(span)
        assert not PlayerAvailability("p1", available_windows=[Interval(T0 + timedelta(hours=1), T0 + timedelta(hours=2))]).allows(span)
        assert not PlayerAvailability("p1", blackout_periods=[Interval(T0 + timedelta(minutes=10), T0 + timedelta(hours=2))]).allows(span)

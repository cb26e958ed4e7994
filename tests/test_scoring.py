"""Tests for schedule metrics and scores."""

from datetime import datetime, timedelta

import pytest

from stationplan.placement import new_conflict
from stationplan.schedule import (
    ConflictType,
    Constraint,
    ConstraintViolation,
    OptimizationGoal,
    SchedulingConfig,
    Severity,
    Slot,
    Station,
)
from stationplan.scoring import Scorer, player_waits

T0 = datetime(2026, 5, 2, 10, 0)


def make_slot(match_id, start_min, station="s1", players=(), length=15):
    start = T0 + timedelta(minutes=start_min)
    return Slot(
        slot_id=f"slot-{match_id}",
        tournament_id="t",
        start=start,
        end=start + timedelta(minutes=length),
        duration=length,
        station_id=station,
        match_id=match_id,
        player_ids=tuple(players),
    )


@pytest.fixture
def scorer():
    config = SchedulingConfig(
        start_time=T0,
        end_time=T0 + timedelta(minutes=60),
        match_duration=15,
        buffer_time=5,
        optimization_goals=(
            OptimizationGoal("minimize_total_time", 1.0),
            OptimizationGoal("maximize_station_usage", 0.5),
            OptimizationGoal("balance_station_load", 1.0),
            OptimizationGoal("minimize_player_wait", 1.0),
            OptimizationGoal("minimize_conflicts", 0.5),
        ),
    )
    return Scorer(config, [Station("s1"), Station("s2")])


def error_conflict():
    return new_conflict(ConflictType.STATION_OVERLAP, Severity.ERROR, "clash")


class TestMetrics:
    def test_measure(self, scorer):
        slots = [
            make_slot("a", 0, "s1", ["p1"]),
            make_slot("b", 0, "s2", ["p2"]),
            make_slot("c", 45, "s1", ["p1"]),
        ]
        metrics = scorer.measure(slots)

        assert metrics.total_duration == 60
        assert metrics.station_utilization == {"s1": 0.5, "s2": 0.25}
        assert metrics.station_loads == {"s1": 2, "s2": 1}
        assert metrics.average_player_wait == 30
        assert metrics.max_player_wait == 30

    def test_empty_schedule(self, scorer):
        metrics = scorer.measure([])
        assert metrics.total_duration == 0
        assert metrics.average_player_wait == 0

    def test_player_waits_between_consecutive_matches(self):
        slots = [make_slot("a", 0, players=["p1"]), make_slot("b", 25, players=["p1"]), make_slot("c", 60, players=["p1"])]
        assert player_waits(slots) == [10, 20]


class TestComposite:
    def test_clean_schedule_scores_full(self, scorer):
        metrics = scorer.measure([make_slot("a", 0), make_slot("b", 0, "s2")])
        assert scorer.composite(metrics, []) == 100

    def test_penalties(self, scorer):
        slots = [make_slot("a", 0, players=["p1"]), make_slot("b", 75, players=["p1"])]
        metrics = scorer.measure(slots)  # 60 minute wait
        soft = ConstraintViolation(Constraint(type="same_station", match_ids=["a", "b"]), "b", "slot-b", "soft")

        score = scorer.composite(metrics, [error_conflict()], [soft])

        assert score == pytest.approx(100 - 10 - 15 - 5)

    def test_resolved_conflicts_do_not_count(self, scorer):
        conflict = error_conflict()
        conflict.resolve("moved by operator")
        metrics = scorer.measure([make_slot("a", 0)])
        assert scorer.composite(metrics, [conflict]) == 100

    def test_score_is_clamped(self, scorer):
        metrics = scorer.measure([make_slot("a", 0)])
        assert scorer.composite(metrics, [error_conflict() for _ in range(20)]) == 0


class TestBreakdown:
    def test_goal_scores_are_weighted(self, scorer):
        slots = [make_slot("a", 0, "s1"), make_slot("b", 0, "s2")]
        metrics = scorer.measure(slots)

        breakdown = scorer.breakdown(slots, metrics, [error_conflict()])

        # ideal = 2 x 20 min; actual span is 15 min, so no penalty
        assert breakdown["minimize_total_time"] == 100
        assert breakdown["maximize_station_usage"] == pytest.approx(25 * 0.5)
        assert breakdown["balance_station_load"] == 100
        assert breakdown["minimize_player_wait"] == 100
        assert breakdown["minimize_conflicts"] == pytest.approx(80 * 0.5)

    def test_unbalanced_load(self, scorer):
        slots = [make_slot("a", 0), make_slot("b", 20), make_slot("c", 40)]
        breakdown = scorer.breakdown(slots, scorer.measure(slots), [])
        # loads 3 and 0: variance 2.25
        assert breakdown["balance_station_load"] == pytest.approx(77.5)


def test_goal_weight_must_be_fraction():
    from stationplan.errors import ConfigError

    with pytest.raises(ConfigError):
        OptimizationGoal("minimize_total_time", 1.5)

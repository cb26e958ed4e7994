"""Tests for delay propagation."""

from datetime import datetime, timedelta

import pytest

from stationplan.constraints import ConstraintEvaluator
from stationplan.errors import SlotNotFoundError
from stationplan.placement import PlacementBuilder
from stationplan.rescheduler import Rescheduler
from stationplan.intervals import Interval
from stationplan.schedule import ConflictType, Constraint, SchedulingConfig, Slot

T0 = datetime(2026, 5, 2, 10, 0)


def at(offset_min):
    return T0 + timedelta(minutes=offset_min)


def make_slot(match_id, start_min, station="s1", players=(), length=15):
    return Slot(
        slot_id=f"slot-{match_id}",
        tournament_id="t",
        start=at(start_min),
        end=at(start_min + length),
        duration=length,
        station_id=station,
        match_id=match_id,
        player_ids=tuple(players),
    )


@pytest.fixture
def rescheduler():
    config = SchedulingConfig(start_time=T0, end_time=at(240), match_duration=15, buffer_time=0)
    return Rescheduler(PlacementBuilder(config, ConstraintEvaluator()), clock=lambda: at(-60))


def rested_rescheduler(rest=20, constraints=()):
    config = SchedulingConfig(start_time=T0, end_time=at(240), match_duration=15, buffer_time=0, min_rest_time=rest)
    return Rescheduler(PlacementBuilder(config, ConstraintEvaluator(constraints)))


class TestApplyDelay:
    def test_cascade_to_same_station(self, rescheduler):
        """S1 ends at T, S2 starts at T+2 on the same station: a 10 minute delay moves S2 to T+12."""
        s1 = make_slot("a", 0)
        s2 = make_slot("b", 17)
        s3 = make_slot("c", 60)
        slots = [s1, s2, s3]

        outcome = rescheduler.apply_delay(slots, "slot-a", 10)

        assert s1.start == at(10)
        assert s2.start == at(27)  # T = 10:15, T + 12
        assert s3.start == at(60)
        assert [u.slot_ids for u in outcome.update.cascading_updates] == [["slot-b"]]
        assert outcome.update.cascading_updates[0].previous_starts == [at(17)]

    def test_cascade_through_shared_player(self, rescheduler):
        s1 = make_slot("a", 0, "s1", players=["p1"])
        s2 = make_slot("b", 20, "s2", players=["p1"])
        outcome = rescheduler.apply_delay([s1, s2], "slot-a", 10)
        assert s2.start == at(30)
        assert outcome.shifted == [s2]

    def test_cascade_chains_downstream(self, rescheduler):
        slots = [make_slot("a", 0), make_slot("b", 15), make_slot("c", 30), make_slot("d", 50)]
        outcome = rescheduler.apply_delay(slots, "slot-a", 10)
        assert [s.start for s in slots] == [at(10), at(25), at(40), at(60)]
        assert len(outcome.update.cascading_updates) == 3

    def test_single_hop_shift(self, rescheduler):
        """Every cascaded slot moves by exactly the delay, never more."""
        slots = [make_slot("a", 0), make_slot("b", 5, "s2", players=["p1"]), make_slot("c", 15), make_slot("d", 16, players=["p1"])]
        before = {s.slot_id: s.start for s in slots}

        rescheduler.apply_delay(slots, "slot-a", 25)

        for slot in slots:
            assert slot.start - before[slot.slot_id] in (timedelta(0), timedelta(minutes=25))

    def test_cascade_when_rest_becomes_too_short(self):
        rescheduler = rested_rescheduler(rest=20)
        a = make_slot("a", 0, "s1", players=["p1"])
        b = make_slot("b", 40, "s2", players=["p1"])
        assert rescheduler.audit([a, b]).conflicts == []

        outcome = rescheduler.apply_delay([a, b], "slot-a", 10)

        assert b.start == at(50)
        assert outcome.shifted == [b]
        assert rescheduler.audit([a, b]).conflicts == []

    def test_rest_already_short_does_not_cascade(self):
        rescheduler = rested_rescheduler(rest=20)
        a = make_slot("a", 0, "s1", players=["p1"])
        b = make_slot("b", 25, "s2", players=["p1"])

        outcome = rescheduler.apply_delay([a, b], "slot-a", 5)

        assert b.start == at(25)
        assert outcome.shifted == []

    def test_earlier_slots_untouched(self, rescheduler):
        earlier = make_slot("a", 0)
        delayed = make_slot("b", 20)
        rescheduler.apply_delay([earlier, delayed], "slot-b", 30)
        assert earlier.start == at(0)

    def test_zero_delay_changes_nothing(self, rescheduler):
        slots = [make_slot("a", 0), make_slot("b", 15)]
        outcome = rescheduler.apply_delay(slots, "slot-a", 0)
        assert [s.start for s in slots] == [at(0), at(15)]
        assert outcome.update.cascading_updates == []

    def test_unknown_slot(self, rescheduler):
        with pytest.raises(SlotNotFoundError) as excinfo:
            rescheduler.apply_delay([make_slot("a", 0)], "slot-zzz", 5)
        assert excinfo.value.slot_id == "slot-zzz"
        assert str(excinfo.value) == "Slot slot-zzz not found"

    def test_update_metadata(self, rescheduler):
        outcome = rescheduler.apply_delay([make_slot("a", 0)], "slot-a", 5, reason="controller swap")
        update = outcome.update
        assert update.update_type == "delay"
        assert update.reason == "controller swap"
        assert update.previous_starts == [at(0)]
        assert update.new_starts == [at(5)]
        assert update.updated_at == at(-60)


class TestAudit:
    def test_reports_remaining_overlaps(self, rescheduler):
        slots = [make_slot("a", 0, "s1", ["p1"]), make_slot("b", 10, "s2", ["p1"]), make_slot("c", 5, "s1")]
        types = sorted(c.type.value for c in rescheduler.audit(slots).conflicts)
        assert types == [ConflictType.PLAYER_DOUBLE_BOOKED.value, ConflictType.STATION_OVERLAP.value]

    def test_clean_schedule(self, rescheduler):
        report = rescheduler.audit([make_slot("a", 0), make_slot("b", 15)])
        assert report.conflicts == []
        assert report.violations == []

    def test_reports_constraint_violations(self):
        window = Interval(at(0), at(30))
        constraints = [
            Constraint(type="time_range", match_ids=["a"], priority="hard", value=window),
            Constraint(type="same_station", match_ids=["a", "b"]),
        ]
        rescheduler = rested_rescheduler(rest=0, constraints=constraints)
        a = make_slot("a", 0, "s1")
        b = make_slot("b", 20, "s2")
        rescheduler.apply_delay([a, b], "slot-a", 60)

        report = rescheduler.audit([a, b])

        assert report.conflicts == []
        assert [(v.match_id, v.is_hard) for v in report.violations] == [("a", True), ("b", False)]

"""
Delay propagation.

A delay moves one slot forward. Slots placed after it are then swept once in
placement order: a slot that now overlaps a moved slot on its station, or
shares a player with an overlapping moved slot, moves by the same delay. So
does a slot whose player now gets less than the minimum rest after a moved
slot but had enough before the delay.
Buffers are not enforced here; a delay may use up buffer time.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Sequence

from stationplan.conflict_index import ConflictIndex
from stationplan.errors import SlotNotFoundError
from stationplan.intervals import minutes, to_minutes
from stationplan.placement import PlacementBuilder, new_conflict
from stationplan.schedule import Conflict, ConflictType, ConstraintViolation, ScheduleUpdate, Severity, Slot

logger = logging.getLogger("stationplan.rescheduler")


@dataclass
class DelayOutcome:
    slots: list[Slot]
    update: ScheduleUpdate
    shifted: list[Slot] = field(default_factory=list)


@dataclass
class AuditReport:
    """Conflicts and constraint violations found in a mutated schedule."""
    conflicts: list[Conflict] = field(default_factory=list)
    violations: list[ConstraintViolation] = field(default_factory=list)


class Rescheduler:
    """Applies operator-declared delays to a placed schedule."""

    def __init__(self, builder: PlacementBuilder, clock: Callable[[], datetime] = datetime.now):
        self.builder = builder
        self.clock = clock

    def apply_delay(self, slots: Sequence[Slot], slot_id: str, delay_minutes: float, reason: str = "") -> DelayOutcome:
        """
        Shift ``slot_id`` by ``delay_minutes`` and cascade to later slots.

        ``slots`` must be in placement order and is mutated in place.
        """
        position = next((i for i, s in enumerate(slots) if s.slot_id == slot_id), None)
        if position is None:
            raise SlotNotFoundError(slot_id)

        delayed = slots[position]
        now = self.clock()
        update = ScheduleUpdate(
            update_type="delay",
            slot_ids=[delayed.slot_id],
            match_ids=[delayed.match_id] if delayed.match_id else [],
            reason=reason or f"Match delayed by {delay_minutes:g} minutes",
            delay_minutes=delay_minutes,
            previous_starts=[delayed.start],
            updated_at=now,
        )
        delayed.shift(delay_minutes)
        update.new_starts.append(delayed.start)

        moved = ConflictIndex([delayed])
        shifted = []
        if delay_minutes > 0:
            for slot in slots[position + 1:]:
                if slot.is_placeholder or not self._collides(slot, moved, delay_minutes):
                    continue
                previous = slot.start
                slot.shift(delay_minutes)
                moved.insert(slot)
                shifted.append(slot)
                update.cascading_updates.append(ScheduleUpdate(
                    update_type="cascade",
                    slot_ids=[slot.slot_id],
                    match_ids=[slot.match_id],
                    reason=f"Cascaded from delay of {delayed.slot_id}",
                    delay_minutes=delay_minutes,
                    previous_starts=[previous],
                    new_starts=[slot.start],
                    updated_at=now,
                ))

        logger.info(f"Delayed {slot_id} by {delay_minutes:g} min, cascaded to {len(shifted)} slots")
        return DelayOutcome(slots=list(slots), update=update, shifted=shifted)

    def _collides(self, slot: Slot, moved: ConflictIndex, delay_minutes: float) -> bool:
        if moved.query_station(slot.station_id, slot.start, slot.end):
            return True
        if moved.query_players(slot.player_ids, slot.start, slot.end):
            return True
        return self._rest_broken(slot, moved, delay_minutes)

    def _rest_broken(self, slot: Slot, moved: ConflictIndex, delay_minutes: float) -> bool:
        """A moved slot of a shared player is now within the rest time but was not before the delay."""
        rest = self.builder.config.min_rest_time
        if rest <= 0 or not slot.player_ids:
            return False
        nearby = moved.query_players(slot.player_ids, slot.start - minutes(rest), slot.end + minutes(rest))
        for other in nearby:
            gap_before = to_minutes(slot.interval.gap_to(other.interval.shifted(-delay_minutes)))
            if gap_before >= rest:
                return True
        return False

    def audit(self, slots: Sequence[Slot]) -> AuditReport:
        """Re-check a whole schedule, each slot against those placed before it."""
        index = ConflictIndex()
        placed: dict[str, Slot] = {}
        report = AuditReport()
        for slot in slots:
            if slot.is_placeholder:
                continue
            booked = index.query_station(slot.station_id, slot.start, slot.end)
            if booked:
                report.conflicts.append(new_conflict(
                    ConflictType.STATION_OVERLAP,
                    Severity.ERROR,
                    f"Station {slot.station_name or slot.station_id} is double-booked",
                    slots=[slot, *booked],
                    station_ids=[slot.station_id],
                ))
            report.conflicts.extend(self.builder.player_conflicts(slot, index))
            report.violations.extend(self.builder.evaluator.evaluate(slot, placed))
            index.insert(slot)
            placed[slot.match_id] = slot
        return report

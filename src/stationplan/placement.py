"""
Placement building and vetting.

``PlacementBuilder.try_place`` is the one place that decides whether a match
may start at a given time on a given station. Checks run in order and stop at
the first hard failure:

1. station overlap, with the buffer kept free around the slot
2. player double booking, then rest time and player availability
3. hard user constraints
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Mapping

from stationplan.conflict_index import ConflictIndex
from stationplan.constraints import ConstraintEvaluator
from stationplan.intervals import minutes, to_minutes
from stationplan.schedule import (
    Conflict,
    ConflictType,
    ConstraintViolation,
    Match,
    PlayerAvailability,
    SchedulingConfig,
    Severity,
    Slot,
    SlotStatus,
    Station,
)


def new_conflict(
    conflict_type: ConflictType,
    severity: Severity,
    description: str,
    slots: Iterable[Slot] = (),
    match_ids: Iterable[str] = (),
    player_ids: Iterable[str] = (),
    station_ids: Iterable[str] = (),
    tournament_id: str = "",
    suggested_resolution: str | None = None,
) -> Conflict:
    """
    Build an unnumbered conflict record.

    The engine assigns ids and detection times when a run's conflicts are
    finalized, so rejected candidate placements do not consume ids.
    """
    slots = list(slots)
    match_ids = list(match_ids) or [s.match_id for s in slots if s.match_id]
    return Conflict(
        conflict_id="",
        type=conflict_type,
        severity=severity,
        description=description,
        tournament_id=tournament_id or (slots[0].tournament_id if slots else ""),
        slot_ids=[s.slot_id for s in slots],
        match_ids=match_ids,
        player_ids=list(player_ids),
        station_ids=list(station_ids),
        suggested_resolution=suggested_resolution,
    )


@dataclass
class Placement:
    """Outcome of vetting one candidate placement."""
    slot: Slot | None
    conflicts: list[Conflict] = field(default_factory=list)
    soft_violations: list[ConstraintViolation] = field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.slot is not None


class WorkingSchedule:
    """Slots accepted so far in a run, in placement order, with their index."""

    def __init__(self):
        self.slots: list[Slot] = []
        self.index = ConflictIndex()
        self.by_match: dict[str, Slot] = {}
        self._notes: dict[str, Placement] = {}
        self._usage: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self.slots)

    def add(self, placement: Placement) -> Slot:
        """Commit an accepted placement."""
        slot = placement.slot
        self.slots.append(slot)
        self.index.insert(slot)
        self.by_match[slot.match_id] = slot
        self._notes[slot.slot_id] = placement
        self._usage[slot.station_id] = self._usage.get(slot.station_id, 0) + 1
        return slot

    def remove(self, slot: Slot):
        """Undo a placement; the index is rebuilt without it."""
        self.slots.remove(slot)
        self.index.remove(slot)
        del self.by_match[slot.match_id]
        del self._notes[slot.slot_id]
        self._usage[slot.station_id] -= 1

    def usage(self, station_id: str) -> int:
        return self._usage.get(station_id, 0)

    @property
    def conflicts(self) -> list[Conflict]:
        """Non-fatal conflicts recorded by the accepted placements."""
        return [c for s in self.slots for c in self._notes[s.slot_id].conflicts]

    @property
    def soft_violations(self) -> list[ConstraintViolation]:
        return [v for s in self.slots for v in self._notes[s.slot_id].soft_violations]


class PlacementBuilder:
    """Builds candidate slots and decides whether they may be placed."""

    def __init__(
        self,
        config: SchedulingConfig,
        evaluator: ConstraintEvaluator,
        availability: Mapping[str, PlayerAvailability] | None = None,
    ):
        self.config = config
        self.evaluator = evaluator
        self.availability = dict(availability or {})

    def duration_for(self, match: Match) -> int:
        return match.duration or self.config.match_duration

    def build_slot(self, match: Match, station: Station, start: datetime) -> Slot:
        """Materialize the slot a match would occupy on a station at ``start``."""
        duration = self.duration_for(match)
        return Slot(
            slot_id=f"slot-{match.match_id}",
            tournament_id=match.tournament_id,
            start=start,
            end=start + minutes(duration),
            duration=duration,
            station_id=station.station_id,
            station_name=station.name,
            match_id=match.match_id,
            round=match.round,
            status=SlotStatus.SCHEDULED,
            buffer_before=self.config.buffer_time,
            buffer_after=self.config.buffer_time,
            player_ids=match.player_ids,
        )

    def try_place(self, match: Match, station: Station, start: datetime, schedule: WorkingSchedule) -> Placement:
        return self.vet(self.build_slot(match, station, start), schedule)

    def vet(self, slot: Slot, schedule: WorkingSchedule) -> Placement:
        """Run every check for an already built slot against the working schedule."""
        index = schedule.index

        # (a) Station overlap, buffers included
        padded_start = slot.start - minutes(slot.buffer_before)
        padded_end = slot.end + minutes(slot.buffer_after)
        booked = [s for s in index.query_station(slot.station_id, padded_start, padded_end) if s is not slot]
        if booked:
            return Placement(None, [new_conflict(
                ConflictType.STATION_OVERLAP,
                Severity.ERROR,
                f"Station {slot.station_name or slot.station_id} is already booked",
                slots=[slot, *booked],
                station_ids=[slot.station_id],
            )])

        # (b) Players: double booking, rest, availability
        conflicts = self.player_conflicts(slot, index)
        if any(self._is_fatal(c) for c in conflicts):
            return Placement(None, conflicts)

        # (c) User constraints
        violations = self.evaluator.evaluate(slot, schedule.by_match)
        if any(v.is_hard for v in violations):
            return Placement(None, conflicts, violations)

        return Placement(slot, conflicts, violations)

    def player_conflicts(self, slot: Slot, index: ConflictIndex) -> list[Conflict]:
        """Double booking, rest and availability conflicts of a slot's players."""
        if not slot.player_ids:
            return []

        overlapping = [s for s in index.query_players(slot.player_ids, slot.start, slot.end) if s is not slot]
        if overlapping:
            conflicts = []
            for other in overlapping:
                common = [p for p in slot.player_ids if p in other.player_ids]
                conflicts.append(new_conflict(
                    ConflictType.PLAYER_DOUBLE_BOOKED,
                    Severity.ERROR,
                    f"Players {', '.join(common)} are double-booked",
                    slots=[slot, other],
                    player_ids=common,
                ))
            return conflicts

        conflicts = self.rest_conflicts(slot, index)

        if self.config.respect_availability:
            for player_id in slot.player_ids:
                window = self.availability.get(player_id)
                if window is not None and not window.allows(slot.interval):
                    conflicts.append(new_conflict(
                        ConflictType.AVAILABILITY_VIOLATION,
                        Severity.ERROR,
                        f"Player {player_id} is not available at {slot.start:%H:%M}",
                        slots=[slot],
                        player_ids=[player_id],
                    ))
        return conflicts

    def rest_conflicts(self, slot: Slot, index: ConflictIndex) -> list[Conflict]:
        """One conflict per neighbouring slot closer than the minimum rest time."""
        rest = self.config.min_rest_time
        if rest <= 0:
            return []

        severity = Severity.ERROR if self.config.rest_violation_is_fatal else Severity.WARNING
        conflicts = []
        nearby = index.query_players(slot.player_ids, slot.start - minutes(rest), slot.end + minutes(rest))
        for other in nearby:
            if other is slot:
                continue
            gap = to_minutes(slot.interval.gap_to(other.interval))
            if gap < 0 or gap >= rest:
                continue
            common = [p for p in slot.player_ids if p in other.player_ids]
            conflicts.append(new_conflict(
                ConflictType.INSUFFICIENT_REST,
                severity,
                f"Players {', '.join(common)} have insufficient rest time ({int(gap)} minutes)",
                slots=[slot, other],
                player_ids=common,
                suggested_resolution=f"Delay match by {math.ceil(rest - gap)} minutes",
            ))
        return conflicts

    @staticmethod
    def _is_fatal(conflict: Conflict) -> bool:
        return conflict.severity != Severity.WARNING

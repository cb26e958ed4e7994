"""
Constraint evaluation.

A constraint names a group of matches. For ``before`` and ``after`` the first
listed match is the anchor and the relation is between the anchor and each of
the others; every other constraint type relates all pairs of its matches.
Partners that have not been placed yet are vacuously satisfied and get checked
again once they are placed.
"""

from typing import Iterable, Mapping

from stationplan.schedule import Constraint, ConstraintType, ConstraintViolation, Slot

BINARY_TYPES = frozenset({
    ConstraintType.BEFORE,
    ConstraintType.AFTER,
    ConstraintType.SAME_TIME,
    ConstraintType.DIFFERENT_TIME,
    ConstraintType.SAME_STATION,
    ConstraintType.DIFFERENT_STATION,
})


def _ordered(anchor_slot: Slot, other: Slot, constraint_type: ConstraintType) -> bool:
    if constraint_type == ConstraintType.BEFORE:
        return anchor_slot.end <= other.start
    return anchor_slot.start >= other.end


def pair_holds(constraint: Constraint, slot: Slot, other: Slot) -> bool:
    """
    Check the binary relation of a constraint between two placed slots.

    Pairs that the constraint does not relate (e.g. two non-anchor matches of
    an ordering constraint) always hold.
    """
    ctype = constraint.type
    if ctype in (ConstraintType.BEFORE, ConstraintType.AFTER):
        if slot.match_id == constraint.anchor:
            return _ordered(slot, other, ctype)
        if other.match_id == constraint.anchor:
            return _ordered(other, slot, ctype)
        return True
    if ctype == ConstraintType.SAME_TIME:
        return slot.start == other.start
    if ctype == ConstraintType.DIFFERENT_TIME:
        return not slot.interval.overlaps(other.interval)
    if ctype == ConstraintType.SAME_STATION:
        return slot.station_id == other.station_id
    if ctype == ConstraintType.DIFFERENT_STATION:
        return slot.station_id != other.station_id
    return True


def unary_holds(constraint: Constraint, slot: Slot) -> bool:
    """Check the single-slot part of a constraint (time ranges)."""
    if constraint.type == ConstraintType.TIME_RANGE:
        return constraint.value.contains(slot.interval)
    return True


def _describe(constraint: Constraint, slot: Slot, other: Slot | None = None) -> str:
    kind = "hard" if constraint.is_hard else "soft"
    if constraint.type == ConstraintType.TIME_RANGE:
        window = constraint.value
        return (f"Match {slot.match_id} violates {kind} time_range "
                f"{window.start:%H:%M}-{window.end:%H:%M}")
    return f"Match {slot.match_id} violates {kind} {constraint.type.value} with match {other.match_id}"


class ConstraintEvaluator:
    """Evaluates user constraints for candidate placements."""

    def __init__(self, constraints: Iterable[Constraint] = ()):
        self.constraints = list(constraints)
        self._by_match: dict[str, list[Constraint]] = {}
        for c in self.constraints:
            for match_id in dict.fromkeys(c.match_ids):
                self._by_match.setdefault(match_id, []).append(c)

    def for_match(self, match_id: str) -> list[Constraint]:
        """Constraints that name the given match."""
        return self._by_match.get(match_id, [])

    def hard_count(self, match_id: str) -> int:
        return sum(1 for c in self.for_match(match_id) if c.is_hard)

    def evaluate(self, slot: Slot, placed: Mapping[str, Slot]) -> list[ConstraintViolation]:
        """
        Every constraint violated by placing ``slot`` next to the placed slots.

        ``placed`` maps match id to its slot. Callers reject the placement if
        any returned violation is hard.
        """
        violations = []
        for constraint in self.for_match(slot.match_id):
            violation = self._check(constraint, slot, placed)
            if violation is not None:
                violations.append(violation)
        return violations

    def _check(self, constraint: Constraint, slot: Slot, placed: Mapping[str, Slot]) -> ConstraintViolation | None:
        if not unary_holds(constraint, slot):
            return ConstraintViolation(constraint, slot.match_id, slot.slot_id, _describe(constraint, slot))

        if constraint.type not in BINARY_TYPES:
            return None

        for match_id in constraint.match_ids:
            if match_id == slot.match_id:
                continue
            other = placed.get(match_id)
            if other is None:
                continue
            if not pair_holds(constraint, slot, other):
                return ConstraintViolation(constraint, slot.match_id, slot.slot_id, _describe(constraint, slot, other))
        return None

    def count_violations(self, slots: Iterable[Slot]) -> int:
        """Number of constraints (hard or soft) the complete schedule breaks."""
        placed = {s.match_id: s for s in slots if not s.is_placeholder}
        count = 0
        for constraint in self.constraints:
            if not self._schedule_satisfies(constraint, placed):
                count += 1
        return count

    def _schedule_satisfies(self, constraint: Constraint, placed: Mapping[str, Slot]) -> bool:
        members = [placed[m] for m in dict.fromkeys(constraint.match_ids) if m in placed]
        for i, slot in enumerate(members):
            if not unary_holds(constraint, slot):
                return False
            for other in members[i + 1:]:
                if not pair_holds(constraint, slot, other):
                    return False
        return True

"""
Schedule scoring.

Turns a finished (possibly partial) schedule into metrics, a 0-100 composite
score and a per-goal breakdown weighted by the configured optimization goals.
"""

from dataclasses import dataclass
from typing import Sequence

from stationplan.intervals import to_minutes
from stationplan.schedule import (
    Conflict,
    ConstraintViolation,
    GoalType,
    SchedulingConfig,
    Slot,
    Station,
)

CONFLICT_PENALTY = 10
WAIT_THRESHOLD_MIN = 30
WAIT_PENALTY_PER_MIN = 0.5
SOFT_VIOLATION_PENALTY = 5


@dataclass
class ScheduleMetrics:
    """Raw measurements of a schedule."""
    total_duration: float
    station_utilization: dict[str, float]
    station_loads: dict[str, int]
    average_player_wait: float
    max_player_wait: float


def player_waits(slots: Sequence[Slot]) -> list[float]:
    """Idle minutes between consecutive matches of each player."""
    by_player: dict[str, list[Slot]] = {}
    for slot in slots:
        if slot.is_placeholder:
            continue
        for player_id in slot.player_ids:
            by_player.setdefault(player_id, []).append(slot)

    waits = []
    for player_slots in by_player.values():
        player_slots = sorted(player_slots, key=lambda s: s.start)
        for prev, nxt in zip(player_slots, player_slots[1:]):
            waits.append(max(0.0, to_minutes(nxt.start - prev.end)))
    return waits


class Scorer:
    """Computes metrics and scores for schedules of one configuration."""

    def __init__(self, config: SchedulingConfig, stations: Sequence[Station]):
        self.config = config
        self.stations = list(stations)

    def measure(self, slots: Sequence[Slot]) -> ScheduleMetrics:
        placed = [s for s in slots if not s.is_placeholder]

        total_duration = 0.0
        if placed:
            first = min(s.start for s in placed)
            last = max(s.end for s in placed)
            total_duration = to_minutes(last - first)

        window = self.config.window_minutes
        utilization = {}
        loads = {}
        for station in self.stations:
            station_slots = [s for s in placed if s.station_id == station.station_id]
            used = sum(s.duration for s in station_slots)
            utilization[station.station_id] = used / window if window > 0 else 0.0
            loads[station.station_id] = len(station_slots)

        waits = player_waits(placed)
        return ScheduleMetrics(
            total_duration=total_duration,
            station_utilization=utilization,
            station_loads=loads,
            average_player_wait=sum(waits) / len(waits) if waits else 0.0,
            max_player_wait=max(waits) if waits else 0.0,
        )

    def composite(
        self,
        metrics: ScheduleMetrics,
        conflicts: Sequence[Conflict],
        violations: Sequence[ConstraintViolation] = (),
    ) -> float:
        """Single 0-100 quality figure."""
        score = 100.0
        score -= CONFLICT_PENALTY * sum(1 for c in conflicts if not c.is_resolved)
        if metrics.average_player_wait > WAIT_THRESHOLD_MIN:
            score -= (metrics.average_player_wait - WAIT_THRESHOLD_MIN) * WAIT_PENALTY_PER_MIN
        score -= SOFT_VIOLATION_PENALTY * sum(1 for v in violations if not v.is_hard)
        return min(100.0, max(0.0, score))

    def breakdown(self, slots: Sequence[Slot], metrics: ScheduleMetrics, conflicts: Sequence[Conflict]) -> dict[str, float]:
        """Each configured goal's normalized score times its weight."""
        unresolved = sum(1 for c in conflicts if not c.is_resolved)
        result = {}
        for goal in self.config.optimization_goals:
            if goal.type == GoalType.MINIMIZE_TOTAL_TIME:
                value = self._score_total_time(slots, metrics)
            elif goal.type == GoalType.MAXIMIZE_STATION_USAGE:
                value = self._score_station_usage(metrics)
            elif goal.type == GoalType.MINIMIZE_PLAYER_WAIT:
                value = max(0.0, 100 - metrics.average_player_wait)
            elif goal.type == GoalType.BALANCE_STATION_LOAD:
                value = self._score_load_balance(metrics)
            else:
                value = max(0.0, 100.0 - 20 * unresolved)
            result[goal.type.value] = value * goal.weight
        return result

    def _score_total_time(self, slots: Sequence[Slot], metrics: ScheduleMetrics) -> float:
        count = sum(1 for s in slots if not s.is_placeholder)
        if count == 0:
            return 0.0
        ideal = count * (self.config.match_duration + self.config.buffer_time)
        deviation = (metrics.total_duration - ideal) / ideal
        return min(100.0, max(0.0, 100 - deviation * 100))

    @staticmethod
    def _score_station_usage(metrics: ScheduleMetrics) -> float:
        values = list(metrics.station_utilization.values())
        if not values:
            return 0.0
        return min(100.0, sum(values) / len(values) * 100)

    @staticmethod
    def _score_load_balance(metrics: ScheduleMetrics) -> float:
        loads = list(metrics.station_loads.values())
        if not loads:
            return 0.0
        mean = sum(loads) / len(loads)
        variance = sum((load - mean) ** 2 for load in loads) / len(loads)
        return max(0.0, 100 - variance * 10)

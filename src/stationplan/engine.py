"""
Scheduling engine facade.

Holds the stations, player availability and the current schedule of one
tournament, dispatches generation to the configured search strategy and
applies delays through the rescheduler.
"""

import logging
import random
import time
from dataclasses import replace
from datetime import datetime
from typing import Callable, Iterable, Sequence

from stationplan.constraints import ConstraintEvaluator
from stationplan.errors import StationsNotInitializedError
from stationplan.placement import PlacementBuilder
from stationplan.rescheduler import Rescheduler
from stationplan.schedule import (
    Algorithm,
    Conflict,
    Constraint,
    ConstraintViolation,
    Match,
    PlayerAvailability,
    ScheduleResult,
    ScheduleUpdate,
    SchedulingConfig,
    Slot,
    Station,
    TournamentPlan,
)
from stationplan.scoring import Scorer
from stationplan.strategies import SearchContext, prioritize_matches, strategy_for

logger = logging.getLogger("stationplan.engine")


class SchedulingEngine:
    """
    Multi-station match scheduler for one tournament.

    ``rng`` drives the genetic search and ``clock`` stamps conflicts and
    updates; both can be injected for reproducible runs.
    """

    def __init__(
        self,
        config: SchedulingConfig,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config
        self.rng = rng if rng is not None else random.Random(config.solver.random_seed)
        self.clock = clock or datetime.now
        self.stations: list[Station] = []
        self.availability: dict[str, PlayerAvailability] = {}

        self._slots: list[Slot] = []
        self._unplaced: list[Conflict] = []
        self._violations: list[ConstraintViolation] = []
        self._conflicts: list[Conflict] = []
        self._constraints: list[Constraint] = []
        self._conflict_seq = 0

    @classmethod
    def from_plan(
        cls,
        plan: TournamentPlan,
        algorithm: Algorithm | str | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> "SchedulingEngine":
        """Engine with stations and availability taken from a tournament file."""
        config = plan.config
        if algorithm is not None:
            config = replace(config, algorithm=Algorithm(algorithm))
        engine = cls(config, rng=rng, clock=clock)
        engine.initialize_stations(plan.stations)
        engine.set_player_availability(plan.availability)
        return engine

    # --- Setup ---

    def initialize_stations(self, stations: Iterable[Station]):
        """Replace the station set; only active stations are kept, up to ``max_stations``."""
        active = [s for s in stations if s.is_active]
        if self.config.max_stations is not None:
            active = active[:self.config.max_stations]
        self.stations = active
        logger.info(f"Initialized {len(active)} active stations")

    def set_player_availability(self, availability: Iterable[PlayerAvailability]):
        self.availability = {a.player_id: a for a in availability}

    @property
    def schedule(self) -> list[Slot]:
        """Copies of the current slots, in placement order."""
        return [s.copy() for s in self._slots]

    # --- Operations ---

    def generate_schedule(self, matches: Sequence[Match], constraints: Sequence[Constraint] = ()) -> ScheduleResult:
        """Place every match; unplaceable matches come back as conflicts."""
        if not self.stations:
            raise StationsNotInitializedError("Stations must be initialized before generating a schedule")

        started = time.perf_counter()
        constraints = list(constraints)
        evaluator = ConstraintEvaluator(constraints)
        context = SearchContext(
            config=self.config,
            stations=self.stations,
            builder=self._builder(evaluator),
            evaluator=evaluator,
            rng=self.rng,
        )
        items = prioritize_matches(matches, evaluator)

        logger.info(f"Scheduling {len(items)} matches on {len(self.stations)} stations "
                    f"with {self.config.algorithm.value}")
        outcome = strategy_for(self.config.algorithm, context).generate(items, constraints)

        for station in self.stations:
            station.matches_played = sum(1 for s in outcome.slots if s.station_id == station.station_id)

        conflicts = self._stamp(outcome.conflicts)
        self._slots = [s.copy() for s in outcome.slots]
        self._unplaced = [c for c in conflicts if not c.slot_ids]
        self._violations = list(outcome.soft_violations)
        self._constraints = constraints
        self._conflicts = conflicts

        result = self._result(
            conflicts,
            elapsed_ms=(time.perf_counter() - started) * 1000,
            iterations=outcome.iterations,
            backtrack_count=outcome.backtrack_count,
        )
        logger.info(f"Placed {len(result.schedule)}/{len(items)} matches, "
                    f"{len(result.unresolved_conflicts)} unresolved conflicts, score {result.score:.1f}")
        return result

    def reschedule_for_delay(self, slot_id: str, delay_minutes: float, reason: str = "") -> ScheduleResult:
        """Delay one slot and cascade the delay; raises SlotNotFoundError for unknown ids."""
        started = time.perf_counter()
        rescheduler = Rescheduler(self._builder(ConstraintEvaluator(self._constraints)), clock=self.clock)
        outcome = rescheduler.apply_delay(self._slots, slot_id, delay_minutes, reason)
        report = rescheduler.audit(self._slots)
        conflicts = self._unplaced + self._stamp(self._carry_over(report.conflicts))
        self._violations = report.violations
        self._conflicts = conflicts
        return self._result(
            conflicts,
            elapsed_ms=(time.perf_counter() - started) * 1000,
            updates=[outcome.update],
        )

    # --- Internal helpers ---

    def _builder(self, evaluator: ConstraintEvaluator) -> PlacementBuilder:
        return PlacementBuilder(self.config, evaluator, self.availability)

    def _stamp(self, conflicts: Iterable[Conflict]) -> list[Conflict]:
        """Give new conflicts an id and a detection time."""
        now = self.clock()
        stamped = []
        for conflict in conflicts:
            if not conflict.conflict_id:
                self._conflict_seq += 1
                conflict.conflict_id = f"conflict-{self._conflict_seq}"
            if conflict.detected_at is None:
                conflict.detected_at = now
            stamped.append(conflict)
        return stamped

    def _carry_over(self, conflicts: Iterable[Conflict]) -> list[Conflict]:
        """Conflicts already reported for the same slots keep their id, detection time and resolution."""
        known = {(c.type, frozenset(c.slot_ids)): c for c in self._conflicts if c.slot_ids}
        carried = []
        for conflict in conflicts:
            previous = known.get((conflict.type, frozenset(conflict.slot_ids)))
            if previous is not None:
                conflict.conflict_id = previous.conflict_id
                conflict.detected_at = previous.detected_at
                conflict.is_resolved = previous.is_resolved
                conflict.resolution_action = previous.resolution_action
            carried.append(conflict)
        return carried

    def _result(
        self,
        conflicts: list[Conflict],
        elapsed_ms: float,
        iterations: int = 0,
        backtrack_count: int = 0,
        updates: Sequence[ScheduleUpdate] = (),
    ) -> ScheduleResult:
        slots = self.schedule
        scorer = Scorer(self.config, self.stations)
        metrics = scorer.measure(slots)
        return ScheduleResult(
            success=not any(c.is_blocking for c in conflicts) and not any(v.is_hard for v in self._violations),
            schedule=slots,
            conflicts=conflicts,
            constraint_violations=list(self._violations),
            total_duration=metrics.total_duration,
            station_utilization=metrics.station_utilization,
            average_player_wait=metrics.average_player_wait,
            max_player_wait=metrics.max_player_wait,
            score=scorer.composite(metrics, conflicts, self._violations),
            score_breakdown=scorer.breakdown(slots, metrics, conflicts),
            algorithm_used=self.config.algorithm.value,
            generation_time_ms=elapsed_ms,
            iterations=iterations,
            backtrack_count=backtrack_count,
            updates=list(updates),
        )

"""
Search strategies for match placement.

All strategies share the same Placement Builder and differ only in how they
walk the (match x station x time) space:

- Greedy: one forward pass with a moving time cursor.
- Backtracking: depth-first search that undoes placements on dead ends.
- Constraint satisfaction: node and arc consistency pruning, then the
  reduced domains are searched with Google OR-Tools CP-SAT.
- Genetic: population-based stochastic search over complete assignments.
"""

import logging
import random
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, Sequence

from ortools.sat.python import cp_model

from stationplan.conflict_index import ConflictIndex
from stationplan.constraints import BINARY_TYPES, ConstraintEvaluator, pair_holds, unary_holds
from stationplan.intervals import minutes, time_grid
from stationplan.placement import Placement, PlacementBuilder, WorkingSchedule, new_conflict
from stationplan.schedule import (
    Algorithm,
    Conflict,
    ConflictType,
    Constraint,
    ConstraintViolation,
    Match,
    SchedulingConfig,
    Severity,
    Slot,
    Station,
)

logger = logging.getLogger("stationplan.strategies")

ROUND_PRIORITY = 100
HARD_CONSTRAINT_PRIORITY = 50


# --- Shared Types ---

@dataclass
class ScheduleItem:
    """A match with its scheduling priority."""
    match: Match
    priority: int
    constraints: list[Constraint] = field(default_factory=list)


@dataclass
class SearchOutcome:
    """What a strategy hands back to the engine."""
    slots: list[Slot]
    conflicts: list[Conflict]
    soft_violations: list[ConstraintViolation] = field(default_factory=list)
    backtrack_count: int = 0
    iterations: int = 0


@dataclass
class SearchContext:
    """Everything a strategy needs for one run."""
    config: SchedulingConfig
    stations: list[Station]
    builder: PlacementBuilder
    evaluator: ConstraintEvaluator
    rng: random.Random

    def stations_for(self, match: Match) -> list[Station]:
        """Active stations that support the match's game type."""
        return [s for s in self.stations if s.supports(match.event_name)]

    def time_grid(self, match: Match) -> list[datetime]:
        """Candidate start times: one per (duration + buffer) step inside the window."""
        duration = self.builder.duration_for(match)
        return time_grid(
            self.config.start_time,
            self.config.end_time,
            duration + self.config.buffer_time,
            duration,
        )

    def candidates(self, match: Match) -> list[tuple[datetime, Station]]:
        return [(t, station) for t in self.time_grid(match) for station in self.stations_for(match)]


class SearchStrategy(Protocol):
    def generate(self, items: Sequence[ScheduleItem], constraints: Sequence[Constraint]) -> SearchOutcome:
        ...


def prioritize_matches(matches: Sequence[Match], evaluator: ConstraintEvaluator) -> list[ScheduleItem]:
    """
    Order matches for placement, highest priority first.

    Later rounds come first; each hard constraint naming a match adds a boost.
    Ties keep the input order.
    """
    items = []
    for match in matches:
        constraints = evaluator.for_match(match.match_id)
        priority = match.round * ROUND_PRIORITY
        priority += HARD_CONSTRAINT_PRIORITY * sum(1 for c in constraints if c.is_hard)
        items.append(ScheduleItem(match=match, priority=priority, constraints=list(constraints)))
    return sorted(items, key=lambda item: -item.priority)


def unplaced_conflict(match: Match, severity: Severity, how: str = "") -> Conflict:
    suffix = f" with {how}" if how else ""
    return new_conflict(
        ConflictType.STATION_OVERLAP,
        severity,
        f"Unable to schedule match {match.match_id}{suffix}",
        match_ids=[match.match_id],
        tournament_id=match.tournament_id,
    )


def _outcome(schedule: WorkingSchedule, unplaced: list[Conflict], **kwargs) -> SearchOutcome:
    return SearchOutcome(
        slots=list(schedule.slots),
        conflicts=schedule.conflicts + unplaced,
        soft_violations=schedule.soft_violations,
        **kwargs,
    )


# --- Greedy ---

class GreedyStrategy:
    """
    Single pass over prioritized matches.

    A time cursor starts at the window start and only moves forward in
    buffer-sized steps. At each time, stations are tried least used first and
    the first legal placement wins. When the cursor runs past the window end
    it wraps to the window start, which counts as a backtrack. A match that
    still has no place after ``stations x 10`` time positions is recorded as
    an error conflict.
    """

    def __init__(self, context: SearchContext):
        self.context = context

    def generate(self, items: Sequence[ScheduleItem], constraints: Sequence[Constraint]) -> SearchOutcome:
        config = self.context.config
        builder = self.context.builder
        schedule = WorkingSchedule()
        unplaced = []

        step = minutes(config.buffer_time or config.match_duration)
        max_attempts = len(self.context.stations) * 10
        cursor = config.start_time
        backtracks = 0
        iterations = 0

        for item in items:
            match = item.match
            stations = self.context.stations_for(match)
            length = minutes(builder.duration_for(match))
            placed = False
            attempts = 0

            while stations and not placed and attempts < max_attempts:
                attempts += 1

                if cursor + length <= config.end_time:
                    by_usage = sorted(stations, key=lambda s: schedule.usage(s.station_id))
                    for station in by_usage:
                        iterations += 1
                        placement = builder.try_place(match, station, cursor, schedule)
                        if placement.accepted:
                            schedule.add(placement)
                            placed = True
                            break

                if not placed:
                    cursor += step
                    if cursor + length > config.end_time:
                        backtracks += 1
                        cursor = config.start_time

            if not placed:
                logger.debug(f"Greedy could not place {match.match_id} after {attempts} attempts")
                unplaced.append(unplaced_conflict(match, Severity.ERROR))

        return _outcome(schedule, unplaced, backtrack_count=backtracks, iterations=iterations)


# --- Backtracking ---

class BacktrackingStrategy:
    """
    Depth-first search over prioritized matches.

    Every (grid time x station) pair is tried for a match before giving up on
    it. Undoing a placement removes it from the conflict index and counts a
    backtrack. If the search is exhausted (or hits ``max_backtracks``), the
    deepest partial schedule reached is returned and each match of the
    unplaced tail gets a critical conflict.
    """

    def __init__(self, context: SearchContext):
        self.context = context
        self.backtracks = 0
        self.iterations = 0

    def generate(self, items: Sequence[ScheduleItem], constraints: Sequence[Constraint]) -> SearchOutcome:
        self.backtracks = 0
        self.iterations = 0
        self._items = list(items)
        self._candidates = [self.context.candidates(item.match) for item in self._items]
        self._schedule = WorkingSchedule()
        self._stack: list[Placement] = []
        self._deepest: list[Placement] = []
        self._limit = self.context.config.solver.max_backtracks

        if self._place_from(0):
            schedule = self._schedule
        else:
            logger.info(f"Backtracking exhausted after {self.backtracks} backtracks, "
                        f"keeping {len(self._deepest)} of {len(self._items)} matches")
            schedule = WorkingSchedule()
            for placement in self._deepest:
                schedule.add(placement)

        unplaced = [
            unplaced_conflict(item.match, Severity.CRITICAL, "backtracking")
            for item in self._items[len(schedule):]
        ]
        return _outcome(schedule, unplaced, backtrack_count=self.backtracks, iterations=self.iterations)

    def _place_from(self, index: int) -> bool:
        if len(self._stack) > len(self._deepest):
            self._deepest = list(self._stack)
        if index >= len(self._items):
            return True

        match = self._items[index].match
        builder = self.context.builder
        for start, station in self._candidates[index]:
            if self.backtracks >= self._limit:
                return False
            self.iterations += 1
            placement = builder.try_place(match, station, start, self._schedule)
            if not placement.accepted:
                continue

            self._schedule.add(placement)
            self._stack.append(placement)
            if self._place_from(index + 1):
                return True
            if self.backtracks >= self._limit:
                return False

            # Backtrack
            self._stack.pop()
            self._schedule.remove(placement.slot)
            self.backtracks += 1

        return False


# --- Constraint Satisfaction ---

PLACE_WEIGHT = 1_000_000
REST_WEIGHT = 1_000


class ConstraintSatisfactionStrategy:
    """
    Domain pruning followed by an exact search.

    Each match is a variable whose domain is every (station x grid time) slot.
    Node consistency drops values that break a hard time range or player
    availability; AC-3 then drops values with no support in a partner's domain
    across hard binary constraints. A partner whose domain is empty can never
    be placed, so its constraints are vacuous: it is set aside and pruning
    restarts without it.

    The reduced domains are searched with CP-SAT: at most one value per match,
    no station overlap (buffers included), no player double booking, hard
    constraint support, a soft penalty for short rest, maximizing placed
    matches and then packing them early. The solution is replayed through the
    Placement Builder.
    """

    def __init__(self, context: SearchContext):
        self.context = context

    def generate(self, items: Sequence[ScheduleItem], constraints: Sequence[Constraint]) -> SearchOutcome:
        builder = self.context.builder
        hard = [c for c in constraints if c.is_hard]

        initial = {
            item.match.match_id: [
                slot for slot in (builder.build_slot(item.match, station, t)
                                  for t, station in self.context.candidates(item.match))
                if self._node_consistent(slot, hard)
            ]
            for item in items
        }
        domains, dropped = self.prune(initial, hard)
        logger.debug(f"CSP domains after pruning: "
                     f"{sum(len(d) for d in domains.values())} values, {len(dropped)} empty")

        chosen, branches = self._solve(domains, hard)

        schedule = WorkingSchedule()
        unplaced = []
        for item in items:
            slot = chosen.get(item.match.match_id)
            if slot is None:
                unplaced.append(unplaced_conflict(item.match, Severity.CRITICAL, "constraint satisfaction"))
                continue
            placement = builder.vet(slot, schedule)
            if placement.accepted:
                schedule.add(placement)
            else:
                unplaced.append(unplaced_conflict(item.match, Severity.CRITICAL, "constraint satisfaction"))

        return _outcome(schedule, unplaced, iterations=branches)

    def _node_consistent(self, slot: Slot, hard: Sequence[Constraint]) -> bool:
        for constraint in hard:
            if slot.match_id in constraint.match_ids and not unary_holds(constraint, slot):
                return False
        builder = self.context.builder
        if self.context.config.respect_availability:
            for player_id in slot.player_ids:
                window = builder.availability.get(player_id)
                if window is not None and not window.allows(slot.interval):
                    return False
        return True

    def prune(self, initial: dict[str, list[Slot]], hard: Sequence[Constraint]) -> tuple[dict[str, list[Slot]], set[str]]:
        """Arc consistency over hard binary constraints; returns domains and unplaceable matches."""
        dropped = {m for m, values in initial.items() if not values}
        while True:
            domains = {m: list(values) for m, values in initial.items() if m not in dropped}
            self._ac3(domains, hard)
            empty = {m for m, values in domains.items() if not values}
            if not empty:
                return domains, dropped
            dropped |= empty

    def _ac3(self, domains: dict[str, list[Slot]], hard: Sequence[Constraint]):
        arcs = []
        for constraint in hard:
            if constraint.type not in BINARY_TYPES:
                continue
            members = [m for m in dict.fromkeys(constraint.match_ids) if m in domains]
            for xi in members:
                for xj in members:
                    if xi != xj:
                        arcs.append((xi, xj, constraint))

        queue = deque(arcs)
        while queue:
            xi, xj, constraint = queue.popleft()
            if self._revise(domains, xi, xj, constraint):
                if not domains[xi]:
                    return
                queue.extend(arc for arc in arcs if arc[1] == xi and arc[0] != xj)

    @staticmethod
    def _revise(domains: dict[str, list[Slot]], xi: str, xj: str, constraint: Constraint) -> bool:
        partner = domains[xj]
        if not partner:
            return False
        kept = [a for a in domains[xi] if any(pair_holds(constraint, a, b) for b in partner)]
        revised = len(kept) != len(domains[xi])
        domains[xi] = kept
        return revised

    def _solve(self, domains: dict[str, list[Slot]], hard: Sequence[Constraint]) -> tuple[dict[str, Slot], int]:
        config = self.context.config
        if not domains:
            return {}, 0

        model = cp_model.CpModel()

        # x[m, k] = 1 if match m takes the k-th value of its domain
        x = {}
        placed = {}
        for match_id, values in domains.items():
            for k in range(len(values)):
                x[match_id, k] = model.new_bool_var(f"x_{match_id}_{k}")
            placed[match_id] = model.new_bool_var(f"placed_{match_id}")
            model.add(sum(x[match_id, k] for k in range(len(values))) == placed[match_id])

        buffer = minutes(config.buffer_time)
        rest = minutes(config.min_rest_time)

        by_station: dict[str, list] = {}
        by_player: dict[str, list] = {}
        for match_id, values in domains.items():
            for k, slot in enumerate(values):
                var = x[match_id, k]
                by_station.setdefault(slot.station_id, []).append((slot.start, slot.end + buffer, var))
                for player_id in slot.player_ids:
                    by_player.setdefault(player_id, []).append((slot, var))

        for spans in by_station.values():
            for group in _cliques(spans):
                model.add_at_most_one(group)

        for entries in by_player.values():
            for group in _cliques([(s.start, s.end, var) for s, var in entries]):
                model.add_at_most_one(group)

        rest_penalties = []
        if config.min_rest_time > 0:
            for player_id, entries in by_player.items():
                groups = _cliques([(s.start, s.end + rest, var) for s, var in entries])
                for i, group in enumerate(groups):
                    if config.rest_violation_is_fatal:
                        model.add_at_most_one(group)
                    else:
                        excess = model.new_int_var(0, len(group), f"rest_{player_id}_{i}")
                        model.add(sum(group) <= 1 + excess)
                        rest_penalties.append(excess)

        self._add_hard_constraints(model, x, placed, domains, hard)

        # Maximize placed matches, then prefer earlier grid positions
        packing = sum(
            x[match_id, k] * int((slot.start - config.start_time).total_seconds() // 60)
            for match_id, values in domains.items()
            for k, slot in enumerate(values)
        )
        model.maximize(
            PLACE_WEIGHT * sum(placed.values())
            - REST_WEIGHT * sum(rest_penalties)
            - packing
        )

        solver = cp_model.CpSolver()
        solver.parameters.max_time_in_seconds = config.solver.timeout_seconds
        solver.parameters.num_workers = 1
        solver.parameters.random_seed = config.solver.random_seed
        status = solver.solve(model)
        logger.info(f"CP-SAT solver: {solver.StatusName(status)} in {solver.WallTime():.2f}s")

        if status not in (cp_model.OPTIMAL, cp_model.FEASIBLE):
            return {}, solver.NumBranches()

        chosen = {}
        for (match_id, k), var in x.items():
            if solver.value(var):
                chosen[match_id] = domains[match_id][k]
        return chosen, solver.NumBranches()

    @staticmethod
    def _add_hard_constraints(model: cp_model.CpModel, x: dict, placed: dict, domains: dict[str, list[Slot]], hard: Sequence[Constraint]):
        """A value of one match needs a supporting value of each placed partner."""
        for constraint in hard:
            if constraint.type not in BINARY_TYPES:
                continue
            members = [m for m in dict.fromkeys(constraint.match_ids) if m in domains]
            for mi in members:
                for mj in members:
                    if mi == mj:
                        continue
                    partner = domains[mj]
                    for k, slot in enumerate(domains[mi]):
                        support = [x[mj, l] for l, other in enumerate(partner) if pair_holds(constraint, slot, other)]
                        if len(support) == len(partner):
                            continue
                        if support:
                            model.add(sum(support) >= 1).only_enforce_if([x[mi, k], placed[mj]])
                        else:
                            model.add_bool_or([x[mi, k].negated(), placed[mj].negated()])


def _cliques(spans: list[tuple[datetime, datetime, object]]) -> list[list]:
    """
    Groups of variables whose spans all share an instant.

    Pairwise-overlapping intervals always share the latest start among them,
    so checking every start point covers every overlapping pair.
    """
    groups = []
    seen = set()
    for point in sorted({start for start, _, _ in spans}):
        group = [var for start, end, var in spans if start <= point < end]
        key = tuple(id(v) for v in group)
        if len(group) > 1 and key not in seen:
            seen.add(key)
            groups.append(group)
    return groups


# --- Genetic ---

class GeneticStrategy:
    """
    Population-based search over complete assignments.

    An individual assigns every placeable match a (station, grid time) gene.
    Fitness is ``100 - 10 x conflicting slot pairs - 5 x constraint
    violations``. Each generation picks parents by tournament selection,
    recombines them with single-point crossover and mutates each offspring
    with ``mutation_rate`` probability. The fittest individual seen is
    replayed through the Placement Builder; genes it rejects are repaired
    with the first legal grid position.
    """

    def __init__(self, context: SearchContext):
        self.context = context
        self._fitness_cache: dict[tuple, float] = {}

    def generate(self, items: Sequence[ScheduleItem], constraints: Sequence[Constraint]) -> SearchOutcome:
        settings = self.context.config.solver
        rng = self.context.rng
        self._fitness_cache = {}

        self._items = []
        unplaced = []
        for item in items:
            if self.context.stations_for(item.match) and self.context.time_grid(item.match):
                self._items.append(item)
            else:
                unplaced.append(unplaced_conflict(item.match, Severity.ERROR, "genetic search"))

        if not self._items:
            return SearchOutcome(slots=[], conflicts=unplaced)

        population = [self._random_individual() for _ in range(settings.population_size)]
        best = max(population, key=self.fitness)
        best_fitness = self.fitness(best)

        for generation in range(settings.generations):
            parents = self._tournament_selection(population)
            offspring = self._crossover(parents)
            population = [
                self._mutate(child) if rng.random() < settings.mutation_rate else child
                for child in offspring
            ]
            leader = max(population, key=self.fitness)
            if self.fitness(leader) > best_fitness:
                best, best_fitness = leader, self.fitness(leader)
                logger.debug(f"Generation {generation}: best fitness {best_fitness:.0f}")

        logger.info(f"Genetic search finished with fitness {best_fitness:.0f}")
        schedule, repair_conflicts = self._replay(best)
        return _outcome(schedule, repair_conflicts + unplaced, iterations=settings.generations)

    # --- Individuals ---

    def _random_individual(self) -> tuple:
        rng = self.context.rng
        return tuple(
            (rng.choice(self.context.stations_for(item.match)), rng.choice(self.context.time_grid(item.match)))
            for item in self._items
        )

    def _slots(self, individual: tuple) -> list[Slot]:
        builder = self.context.builder
        return [
            builder.build_slot(item.match, station, start)
            for item, (station, start) in zip(self._items, individual)
        ]

    def fitness(self, individual: tuple) -> float:
        key = tuple((station.station_id, start) for station, start in individual)
        cached = self._fitness_cache.get(key)
        if cached is None:
            slots = self._slots(individual)
            conflicts = count_conflicting_pairs(slots)
            violations = self.context.evaluator.count_violations(slots)
            cached = 100 - 10 * conflicts - 5 * violations
            self._fitness_cache[key] = cached
        return cached

    # --- Operators ---

    def _tournament_selection(self, population: list[tuple]) -> list[tuple]:
        rng = self.context.rng
        size = self.context.config.solver.tournament_size
        selected = []
        for _ in range(len(population)):
            contenders = [population[rng.randrange(len(population))] for _ in range(size)]
            selected.append(max(contenders, key=self.fitness))
        return selected

    def _crossover(self, parents: list[tuple]) -> list[tuple]:
        rng = self.context.rng
        offspring = []
        for i in range(0, len(parents) - 1, 2):
            first, second = parents[i], parents[i + 1]
            point = rng.randrange(len(first))
            offspring.append(first[:point] + second[point:])
            offspring.append(second[:point] + first[point:])
        if len(parents) % 2:
            offspring.append(parents[-1])
        return offspring

    def _mutate(self, individual: tuple) -> tuple:
        rng = self.context.rng
        genes = list(individual)
        index = rng.randrange(len(genes))
        match = self._items[index].match
        station, start = genes[index]
        if rng.random() < 0.5:
            station = rng.choice(self.context.stations_for(match))
        else:
            start = rng.choice(self.context.time_grid(match))
        genes[index] = (station, start)
        return tuple(genes)

    # --- Result ---

    def _replay(self, individual: tuple) -> tuple[WorkingSchedule, list[Conflict]]:
        builder = self.context.builder
        schedule = WorkingSchedule()
        conflicts = []
        for item, (station, start) in zip(self._items, individual):
            placement = builder.try_place(item.match, station, start, schedule)
            if not placement.accepted:
                placement = self._repair(item.match, schedule)
            if placement is None:
                conflicts.append(unplaced_conflict(item.match, Severity.ERROR, "genetic search"))
            else:
                schedule.add(placement)
        return schedule, conflicts

    def _repair(self, match: Match, schedule: WorkingSchedule) -> Placement | None:
        for start, station in self.context.candidates(match):
            placement = self.context.builder.try_place(match, station, start, schedule)
            if placement.accepted:
                return placement
        return None


def count_conflicting_pairs(slots: Sequence[Slot]) -> int:
    """Pairs of slots that share a station or a player while overlapping."""
    index = ConflictIndex(slots)
    pairs = set()
    for slot in slots:
        padded_start = slot.start - minutes(slot.buffer_before)
        padded_end = slot.end + minutes(slot.buffer_after)
        clashes = index.query_station(slot.station_id, padded_start, padded_end)
        clashes += index.query_players(slot.player_ids, slot.start, slot.end)
        for other in clashes:
            if other is not slot:
                pairs.add(frozenset((slot.slot_id, other.slot_id)))
    return len(pairs)


STRATEGIES = {
    Algorithm.GREEDY: GreedyStrategy,
    Algorithm.BACKTRACKING: BacktrackingStrategy,
    Algorithm.CONSTRAINT_SATISFACTION: ConstraintSatisfactionStrategy,
    Algorithm.GENETIC: GeneticStrategy,
}


def strategy_for(algorithm: Algorithm, context: SearchContext) -> SearchStrategy:
    """Instantiate the strategy named by the configuration, greedy by default."""
    return STRATEGIES.get(algorithm, GreedyStrategy)(context)

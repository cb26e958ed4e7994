"""
Data model for the match scheduling engine.

Plain dataclasses shared by every engine module, plus YAML loading of a
tournament file (stations, matches, constraints and run configuration).
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from pathlib import Path

import yaml

from stationplan.errors import ConfigError
from stationplan.intervals import Interval, minutes


# --- Enumerations ---

class Algorithm(str, Enum):
    GREEDY = "greedy"
    BACKTRACKING = "backtracking"
    CONSTRAINT_SATISFACTION = "constraint_satisfaction"
    GENETIC = "genetic"


class SlotStatus(str, Enum):
    AVAILABLE = "available"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ConflictType(str, Enum):
    PLAYER_DOUBLE_BOOKED = "player_double_booked"
    STATION_OVERLAP = "station_overlap"
    INSUFFICIENT_REST = "insufficient_rest"
    AVAILABILITY_VIOLATION = "availability_violation"


class Severity(str, Enum):
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ConstraintType(str, Enum):
    BEFORE = "before"
    AFTER = "after"
    SAME_TIME = "same_time"
    DIFFERENT_TIME = "different_time"
    SAME_STATION = "same_station"
    DIFFERENT_STATION = "different_station"
    TIME_RANGE = "time_range"


class ConstraintPriority(str, Enum):
    SOFT = "soft"
    HARD = "hard"


class GoalType(str, Enum):
    MINIMIZE_TOTAL_TIME = "minimize_total_time"
    MAXIMIZE_STATION_USAGE = "maximize_station_usage"
    MINIMIZE_PLAYER_WAIT = "minimize_player_wait"
    BALANCE_STATION_LOAD = "balance_station_load"
    MINIMIZE_CONFLICTS = "minimize_conflicts"


# --- Data Classes ---

@dataclass
class Station:
    """A physical game station."""
    station_id: str
    name: str = ""
    game_types: list[str] = field(default_factory=list)  # Empty = any game type
    is_active: bool = True
    matches_played: int = 0  # Usage count, only used for load balancing

    def supports(self, game_type: str | None) -> bool:
        """Check whether this station can host the given game type."""
        if not game_type or not self.game_types:
            return True
        return game_type in self.game_types


@dataclass
class Match:
    """A match waiting to be scheduled."""
    match_id: str
    round: int
    side_a: list[str] = field(default_factory=list)
    side_b: list[str] = field(default_factory=list)
    tournament_id: str = ""
    event_name: str | None = None  # Game type tag
    duration: int | None = None    # Overrides the configured match duration

    @property
    def player_ids(self) -> tuple[str, ...]:
        """All players of both sides, in order, without duplicates."""
        return tuple(dict.fromkeys(self.side_a + self.side_b))


@dataclass
class Slot:
    """A station and time assignment, optionally bound to a match."""
    slot_id: str
    tournament_id: str
    start: datetime
    end: datetime
    duration: int  # minutes
    station_id: str
    station_name: str = ""
    match_id: str | None = None
    round: int | None = None
    status: SlotStatus = SlotStatus.SCHEDULED
    buffer_before: int = 0
    buffer_after: int = 0
    player_ids: tuple[str, ...] = ()

    @property
    def interval(self) -> Interval:
        return Interval(self.start, self.end)

    @property
    def is_placeholder(self) -> bool:
        """Slots without a match take part in no conflict checks."""
        return self.match_id is None

    def shift(self, delay_minutes: float):
        """Move the slot in time, keeping its duration."""
        self.start = self.start + minutes(delay_minutes)
        self.end = self.start + minutes(self.duration)

    def copy(self) -> "Slot":
        return replace(self)


@dataclass
class Conflict:
    """A detected scheduling rule violation."""
    conflict_id: str
    type: ConflictType
    severity: Severity
    description: str
    tournament_id: str = ""
    slot_ids: list[str] = field(default_factory=list)
    match_ids: list[str] = field(default_factory=list)
    player_ids: list[str] = field(default_factory=list)
    station_ids: list[str] = field(default_factory=list)
    suggested_resolution: str | None = None
    is_resolved: bool = False
    resolution_action: str | None = None
    detected_at: datetime | None = None

    @property
    def is_blocking(self) -> bool:
        """Unresolved errors and critical conflicts make a schedule unsuccessful."""
        return not self.is_resolved and self.severity != Severity.WARNING

    def resolve(self, action: str):
        """Mark the conflict as resolved. Conflicts are never deleted."""
        self.is_resolved = True
        self.resolution_action = action


@dataclass
class OptimizationGoal:
    """A weighted optimization objective."""
    type: GoalType
    weight: float

    def __post_init__(self):
        self.type = GoalType(self.type)
        if not 0 <= self.weight <= 1:
            raise ConfigError(f"Goal weight for {self.type.value} must be in [0, 1], got {self.weight}")


@dataclass(frozen=True)
class SolverSettings:
    """Tuning knobs for the search strategies."""
    # Genetic algorithm
    population_size: int = 50
    generations: int = 100
    mutation_rate: float = 0.1
    tournament_size: int = 3
    # Backtracking
    max_backtracks: int = 10_000  # Exhaustion cap for depth-first search
    # Constraint satisfaction (CP-SAT)
    timeout_seconds: float = 10.0
    random_seed: int = 0


@dataclass(frozen=True)
class SchedulingConfig:
    """Immutable configuration for one scheduling run."""
    start_time: datetime
    end_time: datetime
    algorithm: Algorithm = Algorithm.GREEDY
    match_duration: int = 30  # minutes
    buffer_time: int = 5      # minutes kept free around a slot on its station
    min_rest_time: int = 0    # minutes between two matches of the same player
    max_stations: int | None = None
    optimization_goals: tuple[OptimizationGoal, ...] = ()
    respect_availability: bool = True
    rest_violation_is_fatal: bool = False
    solver: SolverSettings = SolverSettings()

    def __post_init__(self):
        object.__setattr__(self, "algorithm", Algorithm(self.algorithm))
        object.__setattr__(self, "optimization_goals", tuple(self.optimization_goals))
        if self.end_time <= self.start_time:
            raise ConfigError("Tournament end time must be after its start time")
        if self.match_duration <= 0:
            raise ConfigError("Match duration must be positive")
        if self.buffer_time < 0 or self.min_rest_time < 0:
            raise ConfigError("Buffer and rest times cannot be negative")

    @property
    def window(self) -> Interval:
        return Interval(self.start_time, self.end_time)

    @property
    def window_minutes(self) -> float:
        return self.window.minutes


@dataclass
class Constraint:
    """A declarative rule over one or more matches."""
    type: ConstraintType
    match_ids: list[str]
    priority: ConstraintPriority = ConstraintPriority.SOFT
    value: Interval | None = None  # Used by time_range
    reason: str | None = None

    def __post_init__(self):
        self.type = ConstraintType(self.type)
        self.priority = ConstraintPriority(self.priority)
        if self.type == ConstraintType.TIME_RANGE and self.value is None:
            raise ConfigError("time_range constraints need a value with start and end")

    @property
    def is_hard(self) -> bool:
        return self.priority == ConstraintPriority.HARD

    @property
    def anchor(self) -> str | None:
        """The match an ordering constraint is about (first listed)."""
        return self.match_ids[0] if self.match_ids else None


@dataclass
class PlayerAvailability:
    """When a player can and cannot play."""
    player_id: str
    available_windows: list[Interval] = field(default_factory=list)  # Empty = always
    blackout_periods: list[Interval] = field(default_factory=list)

    def allows(self, span: Interval) -> bool:
        """Check that a span sits inside an available window and outside every blackout."""
        if self.available_windows and not any(w.contains(span) for w in self.available_windows):
            return False
        return not any(b.overlaps(span) for b in self.blackout_periods)


@dataclass
class ScheduleUpdate:
    """A change to an existing schedule, handed back for broadcasting."""
    update_type: str
    slot_ids: list[str]
    match_ids: list[str]
    reason: str
    delay_minutes: float = 0
    previous_starts: list[datetime] = field(default_factory=list)
    new_starts: list[datetime] = field(default_factory=list)
    cascading_updates: list["ScheduleUpdate"] = field(default_factory=list)
    updated_at: datetime | None = None


@dataclass
class ConstraintViolation:
    """A constraint that a placement does not satisfy."""
    constraint: Constraint
    match_id: str
    slot_id: str
    description: str

    @property
    def is_hard(self) -> bool:
        return self.constraint.is_hard


@dataclass
class ScheduleResult:
    """Output of a scheduling or rescheduling run."""
    success: bool
    schedule: list[Slot]
    conflicts: list[Conflict]
    constraint_violations: list[ConstraintViolation] = field(default_factory=list)
    # Metrics
    total_duration: float = 0.0  # minutes
    station_utilization: dict[str, float] = field(default_factory=dict)  # fraction of window
    average_player_wait: float = 0.0  # minutes
    max_player_wait: float = 0.0      # minutes
    # Optimization score
    score: float = 0.0
    score_breakdown: dict[str, float] = field(default_factory=dict)
    # Generation metadata
    algorithm_used: str = Algorithm.GREEDY.value
    generation_time_ms: float = 0.0
    iterations: int = 0
    backtrack_count: int = 0
    updates: list[ScheduleUpdate] = field(default_factory=list)

    @property
    def unresolved_conflicts(self) -> list[Conflict]:
        return [c for c in self.conflicts if not c.is_resolved]

    def summary(self) -> str:
        """Generate a human-readable summary."""
        lines = ["Schedule Report:", ""]

        status = "OK" if self.success else f"generated with {len(self.unresolved_conflicts)} unresolved conflicts"
        lines.append(f"  Status: {status}")
        lines.append(f"  Algorithm: {self.algorithm_used} ({self.generation_time_ms:.0f} ms)")
        if self.backtrack_count:
            lines.append(f"  Backtracks: {self.backtrack_count}")
        lines.append(f"  Matches scheduled: {sum(1 for s in self.schedule if not s.is_placeholder)}")
        lines.append(f"  Total duration: {self.total_duration:.0f} min")
        lines.append(f"  Player wait: avg {self.average_player_wait:.1f} min, max {self.max_player_wait:.0f} min")
        lines.append(f"  Score: {self.score:.1f}")
        lines.append("")

        lines.append("  Station Utilization:")
        for station_id, fraction in self.station_utilization.items():
            lines.append(f"    {station_id:12} {fraction * 100:5.1f}%")
        lines.append("")

        if self.score_breakdown:
            lines.append("  Score Breakdown:")
            for goal, value in self.score_breakdown.items():
                lines.append(f"    {goal:24} {value:6.1f}")
            lines.append("")

        if self.conflicts:
            lines.append("  Conflicts:")
            for c in self.conflicts:
                resolved = " (resolved)" if c.is_resolved else ""
                lines.append(f"    [{c.severity.value:8}] {c.type.value}: {c.description}{resolved}")
            lines.append("")

        if self.constraint_violations:
            lines.append("  Constraint Violations:")
            for v in self.constraint_violations:
                lines.append(f"    [{v.constraint.priority.value:4}] {v.description}")

        return "\n".join(lines)


@dataclass
class TournamentPlan:
    """Everything needed for one scheduling run, as loaded from a file."""
    tournament_id: str
    config: SchedulingConfig
    stations: list[Station]
    matches: list[Match]
    constraints: list[Constraint] = field(default_factory=list)
    availability: list[PlayerAvailability] = field(default_factory=list)


# --- Tournament File Loading ---

def _parse_datetime(value) -> datetime:
    """Accept YAML timestamps (already parsed) or ISO 8601 strings."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return datetime.fromisoformat(str(value))
    except ValueError as e:
        raise ConfigError(f"Invalid timestamp: {value!r}") from e


def _parse_interval(data: dict) -> Interval:
    return Interval(_parse_datetime(data["start"]), _parse_datetime(data["end"]))


def load_tournament(path: Path) -> TournamentPlan:
    """Load and validate a tournament scheduling file from YAML."""
    with open(path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"{path}: invalid YAML: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{path} does not contain a tournament mapping")

    try:
        return _build_plan(data)
    except KeyError as e:
        raise ConfigError(f"{path}: missing required field {e}") from e
    except ConfigError:
        raise
    except ValueError as e:
        raise ConfigError(f"{path}: {e}") from e
    except (TypeError, AttributeError) as e:
        raise ConfigError(f"{path}: malformed tournament file: {e}") from e


def _build_plan(data: dict) -> TournamentPlan:
    tournament_id = data.get("tournament_id", "")

    # Parse run configuration
    run = data["config"]
    goals = [
        OptimizationGoal(type=g["type"], weight=g["weight"])
        for g in run.get("optimization_goals", [])
    ]

    # Parse solver settings (optional)
    solver_data = data.get("solver", {})
    defaults = SolverSettings()
    solver = SolverSettings(
        population_size=solver_data.get("population_size", defaults.population_size),
        generations=solver_data.get("generations", defaults.generations),
        mutation_rate=solver_data.get("mutation_rate", defaults.mutation_rate),
        tournament_size=solver_data.get("tournament_size", defaults.tournament_size),
        max_backtracks=solver_data.get("max_backtracks", defaults.max_backtracks),
        timeout_seconds=solver_data.get("timeout_seconds", defaults.timeout_seconds),
        random_seed=solver_data.get("random_seed", defaults.random_seed),
    )

    config = SchedulingConfig(
        algorithm=run.get("algorithm", Algorithm.GREEDY.value),
        start_time=_parse_datetime(run["start_time"]),
        end_time=_parse_datetime(run["end_time"]),
        match_duration=run.get("match_duration", 30),
        buffer_time=run.get("buffer_time", 5),
        min_rest_time=run.get("min_rest_time", 0),
        max_stations=run.get("max_stations"),
        optimization_goals=tuple(goals),
        respect_availability=run.get("respect_availability", True),
        rest_violation_is_fatal=run.get("rest_violation_is_fatal", False),
        solver=solver,
    )

    # Parse stations
    stations = [
        Station(
            station_id=s["station_id"],
            name=s.get("name", s["station_id"]),
            game_types=list(s.get("game_types", [])),
            is_active=s.get("is_active", True),
        )
        for s in data["stations"]
    ]

    # Parse matches
    matches = [
        Match(
            match_id=str(m["match_id"]),
            round=m.get("round", 1),
            side_a=[str(p) for p in m.get("side_a", [])],
            side_b=[str(p) for p in m.get("side_b", [])],
            tournament_id=m.get("tournament_id", tournament_id),
            event_name=m.get("event_name"),
            duration=m.get("duration"),
        )
        for m in data["matches"]
    ]

    # Parse constraints (optional)
    constraints = []
    for c in data.get("constraints", []):
        value = _parse_interval(c["value"]) if c.get("value") else None
        constraints.append(Constraint(
            type=c["type"],
            match_ids=[str(m) for m in c["match_ids"]],
            priority=c.get("priority", ConstraintPriority.SOFT.value),
            value=value,
            reason=c.get("reason"),
        ))

    # Parse player availability (optional)
    availability = [
        PlayerAvailability(
            player_id=str(a["player_id"]),
            available_windows=[_parse_interval(w) for w in a.get("available_windows", [])],
            blackout_periods=[_parse_interval(w) for w in a.get("blackout_periods", [])],
        )
        for a in data.get("availability", [])
    ]

    return TournamentPlan(
        tournament_id=tournament_id,
        config=config,
        stations=stations,
        matches=matches,
        constraints=constraints,
        availability=availability,
    )

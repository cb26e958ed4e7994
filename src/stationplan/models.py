"""Pydantic models for handing schedule results to persistence and notification collaborators."""

from typing import Optional

from pydantic import BaseModel

from stationplan.schedule import Conflict, ConstraintViolation, ScheduleResult, ScheduleUpdate, Slot


# ---------- Slot Models ----------

class SlotModel(BaseModel):
    """A placed match."""
    slot_id: str
    tournament_id: str
    start_time: str  # ISO 8601 format
    end_time: str    # ISO 8601 format
    duration: int
    station_id: str
    station_name: str = ""
    match_id: Optional[str] = None
    round: Optional[int] = None
    status: str
    buffer_before: int = 0
    buffer_after: int = 0
    player_ids: list[str] = []

    @classmethod
    def from_slot(cls, slot: Slot) -> "SlotModel":
        return cls(
            slot_id=slot.slot_id,
            tournament_id=slot.tournament_id,
            start_time=slot.start.isoformat(),
            end_time=slot.end.isoformat(),
            duration=slot.duration,
            station_id=slot.station_id,
            station_name=slot.station_name,
            match_id=slot.match_id,
            round=slot.round,
            status=slot.status.value,
            buffer_before=slot.buffer_before,
            buffer_after=slot.buffer_after,
            player_ids=list(slot.player_ids),
        )


# ---------- Conflict Models ----------

class ConflictModel(BaseModel):
    """A detected rule violation."""
    conflict_id: str
    type: str
    severity: str
    description: str
    tournament_id: str = ""
    slot_ids: list[str] = []
    match_ids: list[str] = []
    player_ids: list[str] = []
    station_ids: list[str] = []
    suggested_resolution: Optional[str] = None
    is_resolved: bool = False
    resolution_action: Optional[str] = None
    detected_at: Optional[str] = None  # ISO 8601 format

    @classmethod
    def from_conflict(cls, conflict: Conflict) -> "ConflictModel":
        return cls(
            conflict_id=conflict.conflict_id,
            type=conflict.type.value,
            severity=conflict.severity.value,
            description=conflict.description,
            tournament_id=conflict.tournament_id,
            slot_ids=conflict.slot_ids,
            match_ids=conflict.match_ids,
            player_ids=conflict.player_ids,
            station_ids=conflict.station_ids,
            suggested_resolution=conflict.suggested_resolution,
            is_resolved=conflict.is_resolved,
            resolution_action=conflict.resolution_action,
            detected_at=conflict.detected_at.isoformat() if conflict.detected_at else None,
        )


class ViolationModel(BaseModel):
    """A soft constraint the schedule breaks."""
    constraint_type: str
    priority: str
    match_id: str
    slot_id: str
    description: str

    @classmethod
    def from_violation(cls, violation: ConstraintViolation) -> "ViolationModel":
        return cls(
            constraint_type=violation.constraint.type.value,
            priority=violation.constraint.priority.value,
            match_id=violation.match_id,
            slot_id=violation.slot_id,
            description=violation.description,
        )


# ---------- Update Models ----------

class ScheduleUpdateModel(BaseModel):
    """Delay or cascade event for broadcasting to clients."""
    update_type: str
    slot_ids: list[str]
    match_ids: list[str]
    reason: str
    delay_minutes: float = 0
    previous_starts: list[str] = []
    new_starts: list[str] = []
    cascading_updates: list["ScheduleUpdateModel"] = []
    updated_at: Optional[str] = None

    @classmethod
    def from_update(cls, update: ScheduleUpdate) -> "ScheduleUpdateModel":
        return cls(
            update_type=update.update_type,
            slot_ids=update.slot_ids,
            match_ids=update.match_ids,
            reason=update.reason,
            delay_minutes=update.delay_minutes,
            previous_starts=[t.isoformat() for t in update.previous_starts],
            new_starts=[t.isoformat() for t in update.new_starts],
            cascading_updates=[cls.from_update(u) for u in update.cascading_updates],
            updated_at=update.updated_at.isoformat() if update.updated_at else None,
        )


# ---------- Result Models ----------

class ScheduleResultModel(BaseModel):
    """Output of one generation or reschedule run."""
    success: bool
    schedule: list[SlotModel]
    conflicts: list[ConflictModel]
    constraint_violations: list[ViolationModel] = []
    total_duration: float
    station_utilization: dict[str, float]
    average_player_wait: float
    max_player_wait: float
    score: float
    score_breakdown: dict[str, float] = {}
    algorithm_used: str
    generation_time_ms: float
    iterations: int = 0
    backtrack_count: int = 0
    updates: list[ScheduleUpdateModel] = []

    @classmethod
    def from_result(cls, result: ScheduleResult) -> "ScheduleResultModel":
        return cls(
            success=result.success,
            schedule=[SlotModel.from_slot(s) for s in result.schedule],
            conflicts=[ConflictModel.from_conflict(c) for c in result.conflicts],
            constraint_violations=[ViolationModel.from_violation(v) for v in result.constraint_violations],
            total_duration=result.total_duration,
            station_utilization=result.station_utilization,
            average_player_wait=result.average_player_wait,
            max_player_wait=result.max_player_wait,
            score=result.score,
            score_breakdown=result.score_breakdown,
            algorithm_used=result.algorithm_used,
            generation_time_ms=result.generation_time_ms,
            iterations=result.iterations,
            backtrack_count=result.backtrack_count,
            updates=[ScheduleUpdateModel.from_update(u) for u in result.updates],
        )

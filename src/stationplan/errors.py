"""Exceptions raised by the scheduling engine.

Placement failures are never raised; they are reported as Conflict records.
These cover misuse of the engine and invalid input only.
"""


class SchedulingError(Exception):
    """Base class for engine errors."""


class ConfigError(SchedulingError, ValueError):
    """Invalid scheduling configuration or tournament file."""


class StationsNotInitializedError(SchedulingError):
    """A schedule was requested before any active station was registered."""


class SlotNotFoundError(SchedulingError, LookupError):
    """A reschedule referenced a slot that is not in the current schedule."""

    def __init__(self, slot_id: str):
        super().__init__(f"Slot {slot_id} not found")
        self.slot_id = slot_id

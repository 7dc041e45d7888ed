"""Job status and urgency enumerations shared by the lifecycle, quoting and
persistence layers."""

from __future__ import annotations

import enum


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    QUOTED = "quoted"
    APPROVED = "approved"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    CONTRACTOR_PASSED = "contractor_passed"
    NO_CONTRACTORS_AVAILABLE = "no_contractors_available"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.CANCELLED, JobStatus.NO_CONTRACTORS_AVAILABLE}
)


class Urgency(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EMERGENCY = "emergency"

    @classmethod
    def normalize(cls, value: object) -> "Urgency":
        """Map free-form input onto one of the four levels; anything unknown is medium."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            if key in URGENCY_BY_DIGIT:
                return URGENCY_BY_DIGIT[key]
            for member in cls:
                if member.value == key:
                    return member
        return cls.MEDIUM


# Menu offered to customers during intake
URGENCY_BY_DIGIT = {
    "1": Urgency.LOW,
    "2": Urgency.MEDIUM,
    "3": Urgency.HIGH,
    "4": Urgency.EMERGENCY,
}

"""
ScheduledIntent — the core data model.

An intent describes WHEN to hand an opaque payload back to the executor, and
its current state. The payload is never inspected here: the executor decides
what it means, with fresh data, at fire time.

Exactly one of fire_at / recurrence_spec is set:
    ONE_OFF    fire_at=1740481200.0
    RECURRING  recurrence_spec="0 9 * * 1"   (cron)
               recurrence_spec="@every 1800" (interval, seconds)

All timestamps are unix epoch seconds.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum

from tickler.core.errors import ValidationError

DEFAULT_TASK_TYPE = "agent_intent"


class ScheduleKind(str, Enum):
    ONE_OFF = "one_off"
    RECURRING = "recurring"


class FireStatus(str, Enum):
    """Outcome of a single fire attempt."""

    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"
    SKIPPED = "skipped"  # missed while down, dropped by the skip catch-up policy

    @property
    def ok(self) -> bool:
        return self is FireStatus.SUCCESS


def new_intent_id() -> str:
    return uuid.uuid4().hex


@dataclass
class ScheduledIntent:
    """A deferred instruction waiting for its fire time."""

    description: str     # human-facing label, never interpreted
    kind: ScheduleKind
    payload: bytes       # opaque blob for the executor

    fire_at: float | None = None          # ONE_OFF only
    recurrence_spec: str | None = None    # RECURRING only
    task_type: str = DEFAULT_TASK_TYPE
    id: str = field(default_factory=new_intent_id)
    is_active: bool = True
    created_at: float = field(default_factory=time.time)
    next_run_time: float = 0.0            # cached; recomputed after every recurring fire

    # Outcome of the most recent fire, for list/status displays
    last_run_at: float | None = None
    last_status: FireStatus | None = None
    last_result: str | None = None
    fire_count: int = 0

    def validate(self) -> None:
        """Raise ValidationError unless the schedule fields match the kind."""
        if self.kind is ScheduleKind.ONE_OFF:
            if self.fire_at is None or self.recurrence_spec is not None:
                raise ValidationError(
                    "one-off intent needs fire_at and no recurrence_spec",
                    {"id": self.id},
                )
        elif self.kind is ScheduleKind.RECURRING:
            if not self.recurrence_spec or self.fire_at is not None:
                raise ValidationError(
                    "recurring intent needs recurrence_spec and no fire_at",
                    {"id": self.id},
                )
        if self.next_run_time and self.next_run_time < self.created_at - 1:
            raise ValidationError(
                "next_run_time precedes created_at",
                {"id": self.id, "next_run_time": self.next_run_time},
            )

    @property
    def is_recurring(self) -> bool:
        return self.kind is ScheduleKind.RECURRING

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "kind": self.kind.value,
            "fire_at": self.fire_at,
            "recurrence_spec": self.recurrence_spec,
            "task_type": self.task_type,
            "payload": self.payload,
            "is_active": self.is_active,
            "created_at": self.created_at,
            "next_run_time": self.next_run_time,
            "last_run_at": self.last_run_at,
            "last_status": self.last_status.value if self.last_status else None,
            "last_result": self.last_result,
            "fire_count": self.fire_count,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ScheduledIntent":
        payload = d["payload"]
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        return cls(
            id=d["id"],
            description=d["description"],
            kind=ScheduleKind(d["kind"]),
            fire_at=d.get("fire_at"),
            recurrence_spec=d.get("recurrence_spec"),
            task_type=d.get("task_type") or DEFAULT_TASK_TYPE,
            payload=bytes(payload),
            is_active=bool(d["is_active"]),
            created_at=d["created_at"],
            next_run_time=d.get("next_run_time") or 0.0,
            last_run_at=d.get("last_run_at"),
            last_status=FireStatus(d["last_status"]) if d.get("last_status") else None,
            last_result=d.get("last_result"),
            fire_count=d.get("fire_count") or 0,
        )


@dataclass
class FireResult:
    """What happened when an intent fired."""

    status: FireStatus
    scheduled_for: float
    finished_at: float = field(default_factory=time.time)
    summary: str = ""
    error: str | None = None

    @property
    def notes(self) -> str:
        return self.error if self.error else self.summary


@dataclass
class ExecutionRecord:
    """One row of the execution history for an intent."""

    intent_id: str
    scheduled_for: float
    status: FireStatus
    executed_at: float
    notes: str | None = None
    id: int | None = None

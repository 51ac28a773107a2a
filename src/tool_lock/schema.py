from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union
from uuid import uuid4

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
)
from pydantic.alias_generators import to_camel

from tool_lock.utils.time import normalize_time_of_day


class WireModel(BaseModel):
    """Snake_case in Python, camelCase on the wire and on disk."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ── Lock record ──


class LockStatus(str, Enum):
    UNLOCKED = "unlocked"
    LOCKED = "locked"
    GRACE = "grace"


class LockRecord(WireModel):
    """The single persisted lock record. Rewritten on every mutation."""

    status: LockStatus = LockStatus.UNLOCKED
    locked_at: datetime | None = None
    expires_at: datetime | None = None
    bypass_attempts: int = Field(default=0, ge=0)
    grace_expires_at: datetime | None = None
    source_id: str | None = Field(
        default=None, validation_alias=AliasChoices("sourceId", "source_id", "scheduleId")
    )
    hard_lock: bool = False
    pending_handoff_keys: list[str] = Field(default_factory=list)


# ── Challenges ──


class ChallengeType(str, Enum):
    TYPING = "typing"
    COOLDOWN = "cooldown"
    MATH = "math"
    JUSTIFICATION = "justification"


class Challenge(WireModel):
    type: ChallengeType
    # typing: the string to type backwards; math: the problem text
    prompt: str = ""
    answer: str | None = None
    cooldown_seconds: int = 0
    min_words: int | None = None


class PaymentOption(WireModel):
    amount: int
    currency: str = "USD"
    url: str = ""
    has_verification: bool = False


class BypassTicket(WireModel):
    challenge_id: str
    challenges: list[Challenge] = Field(default_factory=list)
    payment_option: PaymentOption | None = None


# ── Schedules & stats ──


class RecurrenceKind(str, Enum):
    DAILY = "daily"
    WEEKDAYS = "weekdays"
    WEEKENDS = "weekends"
    CUSTOM = "custom"


def new_schedule_id() -> str:
    return f"sched-{uuid4().hex[:12]}"


class Schedule(WireModel):
    """A recurring time-of-day window that engages a lock while active."""

    id: str = Field(default_factory=new_schedule_id)
    name: str = ""
    kind: RecurrenceKind = Field(
        default=RecurrenceKind.DAILY,
        alias="type",
        validation_alias=AliasChoices("type", "kind"),
    )
    start_time: str
    end_time: str
    days: list[int] | None = None  # 0=Sunday … 6=Saturday
    enabled: bool = True

    @field_validator("start_time", "end_time")
    @classmethod
    def _normalize_time(cls, value: str) -> str:
        return normalize_time_of_day(value)

    @field_validator("days")
    @classmethod
    def _check_days(cls, value: list[int] | None) -> list[int] | None:
        if value is None:
            return None
        if any(day < 0 or day > 6 for day in value):
            raise ValueError("days must be day numbers 0 (Sunday) to 6 (Saturday)")
        return sorted(set(value))


class DailyStats(WireModel):
    date: str
    bypass_count: int = 0


# ── Requests ──


class StatusRequest(WireModel):
    type: Literal["status"] = "status"


class LockRequest(WireModel):
    type: Literal["lock"] = "lock"
    duration_minutes: float = Field(gt=0)
    hard_lock: bool = False


class UnlockRequest(WireModel):
    type: Literal["unlock"] = "unlock"


class BypassStartRequest(WireModel):
    type: Literal["bypass-start"] = "bypass-start"


class BypassCompleteRequest(WireModel):
    type: Literal["bypass-complete"] = "bypass-complete"
    challenge_id: str = ""
    proof: str = Field(default="", validation_alias=AliasChoices("proof", "answer"))
    payment_method: bool = False
    payment_ref: str | None = Field(
        default=None,
        validation_alias=AliasChoices("paymentRef", "payment_ref", "stripePaymentIntentId"),
    )


class ScheduleListRequest(WireModel):
    type: Literal["schedule-list"] = "schedule-list"


class ScheduleAddRequest(WireModel):
    type: Literal["schedule-add"] = "schedule-add"
    schedule: Schedule


class ScheduleRemoveRequest(WireModel):
    type: Literal["schedule-remove"] = "schedule-remove"
    id: str


class ScheduleToggleRequest(WireModel):
    type: Literal["schedule-toggle"] = "schedule-toggle"
    id: str
    enabled: bool


class ConfigGetRequest(WireModel):
    type: Literal["config-get"] = "config-get"


class ConfigSetRequest(WireModel):
    type: Literal["config-set"] = "config-set"
    key: str
    value: Any = None


class StatsRequest(WireModel):
    type: Literal["stats"] = "stats"
    period: Literal["day", "week", "month"] = "day"


class HandoffAckRequest(WireModel):
    type: Literal["handoff-ack"] = "handoff-ack"


Request = Annotated[
    Union[
        StatusRequest,
        LockRequest,
        UnlockRequest,
        BypassStartRequest,
        BypassCompleteRequest,
        ScheduleListRequest,
        ScheduleAddRequest,
        ScheduleRemoveRequest,
        ScheduleToggleRequest,
        ConfigGetRequest,
        ConfigSetRequest,
        StatsRequest,
        HandoffAckRequest,
    ],
    Field(discriminator="type"),
]

REQUEST_ADAPTER = TypeAdapter(Request)


# ── Responses ──


class StatusResponse(WireModel):
    type: Literal["status"] = "status"
    lock: LockRecord
    config: dict[str, Any] = Field(default_factory=dict)


class LockResponse(WireModel):
    type: Literal["lock"] = "lock"
    ok: bool
    lock: LockRecord
    error: str | None = None


class UnlockResponse(WireModel):
    type: Literal["unlock"] = "unlock"
    ok: bool
    lock: LockRecord
    error: str | None = None


class BypassStartResponse(WireModel):
    type: Literal["bypass-start"] = "bypass-start"
    ok: bool
    challenge_id: str = ""
    challenges: list[Challenge] = Field(default_factory=list)
    error: str | None = None
    payment_option: PaymentOption | None = None


class BypassCompleteResponse(WireModel):
    type: Literal["bypass-complete"] = "bypass-complete"
    ok: bool
    grace_expires_at: datetime | None = None
    error: str | None = None


class ScheduleListResponse(WireModel):
    type: Literal["schedule-list"] = "schedule-list"
    schedules: list[Schedule] = Field(default_factory=list)


class ScheduleAddResponse(WireModel):
    type: Literal["schedule-add"] = "schedule-add"
    ok: bool
    schedule: Schedule | None = None
    error: str | None = None


class ScheduleRemoveResponse(WireModel):
    type: Literal["schedule-remove"] = "schedule-remove"
    ok: bool
    error: str | None = None


class ScheduleToggleResponse(WireModel):
    type: Literal["schedule-toggle"] = "schedule-toggle"
    ok: bool
    error: str | None = None


class ConfigGetResponse(WireModel):
    type: Literal["config-get"] = "config-get"
    config: dict[str, Any] = Field(default_factory=dict)


class ConfigSetResponse(WireModel):
    type: Literal["config-set"] = "config-set"
    ok: bool
    config: dict[str, Any] | None = None
    error: str | None = None


class StatsResponse(WireModel):
    type: Literal["stats"] = "stats"
    days: list[DailyStats] = Field(default_factory=list)


class HandoffAckResponse(WireModel):
    type: Literal["handoff-ack"] = "handoff-ack"
    ok: bool
    keys: list[str] = Field(default_factory=list)
    error: str | None = None


class ErrorResponse(WireModel):
    type: Literal["error"] = "error"
    message: str

import json
from collections.abc import Callable
from datetime import datetime
from typing import Any

from loguru import logger
from pydantic import ValidationError

from tool_lock.engine import LockEngine
from tool_lock.errors import InvalidOperation, PersistenceError, ToolLockError
from tool_lock.schema import (
    REQUEST_ADAPTER,
    BypassCompleteRequest,
    BypassCompleteResponse,
    BypassStartRequest,
    BypassStartResponse,
    ConfigGetRequest,
    ConfigGetResponse,
    ConfigSetRequest,
    ConfigSetResponse,
    ErrorResponse,
    HandoffAckRequest,
    HandoffAckResponse,
    LockRequest,
    LockResponse,
    LockStatus,
    ScheduleAddRequest,
    ScheduleAddResponse,
    ScheduleListRequest,
    ScheduleListResponse,
    ScheduleRemoveRequest,
    ScheduleRemoveResponse,
    ScheduleToggleRequest,
    ScheduleToggleResponse,
    StatsRequest,
    StatsResponse,
    StatusRequest,
    StatusResponse,
    UnlockRequest,
    UnlockResponse,
    WireModel,
)
from tool_lock.settings import ConfigManager
from tool_lock.stores import ScheduleStore, StatsStore
from tool_lock.utils.time import local_now

SCHEDULE_NOT_FOUND = "Schedule not found"


def describe_validation_error(e: ValidationError, payload: dict) -> str:
    first = e.errors()[0]
    if first["type"] == "union_tag_invalid":
        return f"Unknown request type: {payload.get('type')}"
    if first["type"] == "union_tag_not_found":
        return "Request is missing a type"
    location = ".".join(str(part) for part in first["loc"][1:]) or "request"
    return f"Invalid request: {location}: {first['msg']}"


class RequestRouter:
    """Maps one decoded request to one engine or store call and back to a response."""

    def __init__(
        self,
        engine: LockEngine,
        schedules: ScheduleStore,
        stats: StatsStore,
        config: ConfigManager,
        clock: Callable[[], datetime] = local_now,
    ):
        self.engine = engine
        self.schedules = schedules
        self.stats = stats
        self.config = config
        self._clock = clock
        self._handlers: dict[type, Callable[[Any], WireModel]] = {
            StatusRequest: self._status,
            LockRequest: self._lock,
            UnlockRequest: self._unlock,
            BypassStartRequest: self._bypass_start,
            BypassCompleteRequest: self._bypass_complete,
            ScheduleListRequest: self._schedule_list,
            ScheduleAddRequest: self._schedule_add,
            ScheduleRemoveRequest: self._schedule_remove,
            ScheduleToggleRequest: self._schedule_toggle,
            ConfigGetRequest: self._config_get,
            ConfigSetRequest: self._config_set,
            StatsRequest: self._stats,
            HandoffAckRequest: self._handoff_ack,
        }

    def handle_line(self, line: str) -> str:
        """One request line in, one response line out (without the newline)."""
        try:
            payload = json.loads(line)
        except ValueError as e:
            return self._encode(ErrorResponse(message=f"Parse error: {e}"))
        return self._encode(self.handle(payload))

    def handle(self, payload: Any) -> WireModel:
        if not isinstance(payload, dict):
            return ErrorResponse(message="Request must be a JSON object")
        try:
            request = REQUEST_ADAPTER.validate_python(payload)
        except ValidationError as e:
            message = describe_validation_error(e, payload)
            logger.warning(message)
            return ErrorResponse(message=message)

        handler = self._handlers[type(request)]
        try:
            return handler(request)
        except PersistenceError as e:
            logger.critical(f"{request.type} failed to persist: {e}")
            return ErrorResponse(message=f"Persistence failure: {e}")
        except ToolLockError as e:
            return ErrorResponse(message=e.reason)
        except Exception as e:
            logger.exception(f"Handler for {request.type} crashed")
            return ErrorResponse(message=f"Handler error: {e}")

    @staticmethod
    def _encode(response: WireModel) -> str:
        return json.dumps(response.to_wire(), separators=(",", ":"))

    def _require_unlocked(self, what: str):
        status = self.engine.snapshot().status
        if status is LockStatus.LOCKED:
            raise InvalidOperation(f"Cannot change {what} while locked")
        if status is LockStatus.GRACE:
            raise InvalidOperation(f"Cannot change {what} during a grace period")

    # ── handlers ──

    def _status(self, req: StatusRequest) -> StatusResponse:
        return StatusResponse(lock=self.engine.snapshot(), config=self.config.current().public_view())

    def _lock(self, req: LockRequest) -> LockResponse:
        try:
            record = self.engine.lock(req.duration_minutes, hard_lock=req.hard_lock)
        except InvalidOperation as e:
            return LockResponse(ok=False, lock=self.engine.snapshot(), error=e.reason)
        return LockResponse(ok=True, lock=record)

    def _unlock(self, req: UnlockRequest) -> UnlockResponse:
        try:
            record = self.engine.unlock()
        except InvalidOperation as e:
            return UnlockResponse(ok=False, lock=self.engine.snapshot(), error=e.reason)
        return UnlockResponse(ok=True, lock=record)

    def _bypass_start(self, req: BypassStartRequest) -> BypassStartResponse:
        try:
            ticket = self.engine.start_bypass()
        except InvalidOperation as e:
            return BypassStartResponse(ok=False, error=e.reason)
        return BypassStartResponse(
            ok=True,
            challenge_id=ticket.challenge_id,
            challenges=ticket.challenges,
            payment_option=ticket.payment_option,
        )

    def _bypass_complete(self, req: BypassCompleteRequest) -> BypassCompleteResponse:
        try:
            grace_expires_at = self.engine.complete_bypass(
                req.challenge_id,
                req.proof,
                payment_method=req.payment_method,
                payment_ref=req.payment_ref,
            )
        except PersistenceError:
            raise
        except ToolLockError as e:
            return BypassCompleteResponse(ok=False, error=e.reason)
        return BypassCompleteResponse(ok=True, grace_expires_at=grace_expires_at)

    def _schedule_list(self, req: ScheduleListRequest) -> ScheduleListResponse:
        return ScheduleListResponse(schedules=self.schedules.list())

    def _schedule_add(self, req: ScheduleAddRequest) -> ScheduleAddResponse:
        try:
            self._require_unlocked("schedules")
        except InvalidOperation as e:
            return ScheduleAddResponse(ok=False, error=e.reason)
        return ScheduleAddResponse(ok=True, schedule=self.schedules.add(req.schedule))

    def _schedule_remove(self, req: ScheduleRemoveRequest) -> ScheduleRemoveResponse:
        try:
            self._require_unlocked("schedules")
        except InvalidOperation as e:
            return ScheduleRemoveResponse(ok=False, error=e.reason)
        ok = self.schedules.remove(req.id)
        return ScheduleRemoveResponse(ok=ok, error=None if ok else SCHEDULE_NOT_FOUND)

    def _schedule_toggle(self, req: ScheduleToggleRequest) -> ScheduleToggleResponse:
        try:
            self._require_unlocked("schedules")
        except InvalidOperation as e:
            return ScheduleToggleResponse(ok=False, error=e.reason)
        ok = self.schedules.toggle(req.id, req.enabled)
        return ScheduleToggleResponse(ok=ok, error=None if ok else SCHEDULE_NOT_FOUND)

    def _config_get(self, req: ConfigGetRequest) -> ConfigGetResponse:
        return ConfigGetResponse(config=self.config.current().public_view())

    def _config_set(self, req: ConfigSetRequest) -> ConfigSetResponse:
        try:
            self._require_unlocked("settings")
            updated = self.config.update(req.key, req.value)
        except InvalidOperation as e:
            return ConfigSetResponse(ok=False, error=e.reason)
        return ConfigSetResponse(ok=True, config=updated.public_view())

    def _stats(self, req: StatsRequest) -> StatsResponse:
        return StatsResponse(days=self.stats.stats_for(req.period, self._clock().astimezone().date()))

    def _handoff_ack(self, req: HandoffAckRequest) -> HandoffAckResponse:
        try:
            keys = self.engine.acknowledge_handoff()
        except InvalidOperation as e:
            return HandoffAckResponse(ok=False, error=e.reason)
        return HandoffAckResponse(ok=True, keys=keys)

"""
The lock state machine.

``LockEngine`` owns the single lock record, its expiry and grace timers and
the map of in-flight bypass sessions. Every read and every mutation goes
through one re-entrant mutex, and timer callbacks use the same reconcile step
that reads use, so a timer that never fired (sleep, restart) and a timer that
did fire produce the same state.
"""

import random
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import uuid4

from loguru import logger

from tool_lock.challenges import generate_challenges
from tool_lock.errors import (
    ExpiredSession,
    ExternalFailure,
    InvalidOperation,
    PersistenceError,
    ToolLockError,
)
from tool_lock.guards import EnforcementGuard, NullGuard
from tool_lock.payments import PaymentVerifier, build_verifier
from tool_lock.schema import BypassTicket, Challenge, LockRecord, LockStatus, PaymentOption
from tool_lock.settings import Settings
from tool_lock.store import LockRecordStore
from tool_lock.stores import StatsSink
from tool_lock.timers import ThreadTimer, TimerFactory
from tool_lock.utils.notifications import Notifier, NullNotifier
from tool_lock.utils.time import format_clock, utc_now

NOTIFY_TITLE = "tool-lock"
UNLOCK_WHILE_LOCKED = "Cannot unlock directly while locked. Complete a bypass challenge first."
HARD_LOCK_ACTIVE = "Hard lock is active. Bypass is not allowed until the lock expires."
NOT_LOCKED = "Not locked"
BYPASS_DISABLED = "Bypass is disabled: challenge and payment bypass are both turned off"
INVALID_CHALLENGE = "Invalid or expired challenge"
# A timer transition that could not be persisted is tried again after this long
PERSIST_RETRY_SECONDS = 30.0


@dataclass
class PendingChallenge:
    challenges: list[Challenge]
    created_at: datetime


class LockEngine:
    def __init__(
        self,
        store: LockRecordStore,
        config: Callable[[], Settings],
        guard: EnforcementGuard | None = None,
        notifier: Notifier | None = None,
        stats: StatsSink | None = None,
        verifier_factory: Callable[[Settings], PaymentVerifier | None] = build_verifier,
        clock: Callable[[], datetime] = utc_now,
        timer_factory: TimerFactory = ThreadTimer,
        rng: random.Random | None = None,
    ):
        self._store = store
        self._config = config
        self._guard = guard or NullGuard()
        self._notifier = notifier or NullNotifier()
        self._stats = stats
        self._verifier_factory = verifier_factory
        self._clock = clock
        self._rng = rng
        self._mutex = threading.RLock()
        self._expiry_timer = timer_factory("lock-expiry")
        self._grace_timer = timer_factory("grace-end")
        self._pending: dict[str, PendingChallenge] = {}
        self._record = LockRecord()

    # ── reads ──

    def snapshot(self) -> LockRecord:
        """Current record, after applying any transition that is already due."""
        with self._mutex:
            self._reconcile()
            return self._record.model_copy(deep=True)

    # ── lifecycle ──

    def recover(self) -> LockRecord:
        """Loads the persisted record and restores timers and enforcement."""
        with self._mutex:
            self._record = self._store.load()
            transitioned = self._reconcile()
            if self._record.status is LockStatus.LOCKED and not transitioned:
                # Enforcement is not assumed to have survived the restart
                self._install_enforcement()
            self._arm_timers()
            logger.info(f"Recovered lock state: {self._record.status.value}")
            return self._record.model_copy(deep=True)

    def shutdown(self) -> None:
        """Cancels timers and flushes the current record."""
        with self._mutex:
            self._expiry_timer.cancel()
            self._grace_timer.cancel()
            self._store.save(self._record)
        logger.info("Lock engine stopped, record flushed")

    # ── transitions ──

    def lock(
        self, duration_minutes: float, source_id: str | None = None, hard_lock: bool = False
    ) -> LockRecord:
        """Engages a fresh lock from any state. The most recent call wins."""
        if duration_minutes <= 0:
            raise InvalidOperation("Lock duration must be greater than 0 minutes")
        with self._mutex:
            self._engage(timedelta(minutes=duration_minutes), source_id, hard_lock)
            return self._record.model_copy(deep=True)

    def lock_for_schedule(
        self, source_id: str, end_time: datetime, label: str | None = None
    ) -> bool:
        """Locks until ``end_time`` unless a lock of any origin is already active.

        Returns True if a lock was engaged.
        """
        with self._mutex:
            self._reconcile()
            if self._record.status is not LockStatus.UNLOCKED:
                return False
            now = self._clock()
            if end_time <= now:
                return False
            self._engage(end_time - now, source_id, False)

        until = format_clock(end_time)
        if label:
            self._notify(f'Locked by "{label}" until {until}')
        else:
            self._notify(f"Locked until {until}")
        return True

    def unlock(self) -> LockRecord:
        with self._mutex:
            self._reconcile()
            status = self._record.status
            if status is LockStatus.LOCKED:
                logger.warning("Direct unlock rejected while locked")
                raise InvalidOperation(UNLOCK_WHILE_LOCKED)
            if status is LockStatus.GRACE:
                self._release("ended during grace period")
            return self._record.model_copy(deep=True)

    def acknowledge_handoff(self) -> list[str]:
        """Returns and clears the handoff keys left over from the last lock."""
        with self._mutex:
            self._reconcile()
            if self._record.status is not LockStatus.UNLOCKED:
                raise InvalidOperation("Handoff keys can only be collected while unlocked")
            keys = list(self._record.pending_handoff_keys)
            if keys:
                self._commit(self._record.model_copy(update={"pending_handoff_keys": []}))
            return keys

    # ── bypass ──

    def start_bypass(self) -> BypassTicket:
        cfg = self._config()
        with self._mutex:
            self._reconcile()
            self._check_bypassable()
            if not cfg.challenge_bypass_enabled and not cfg.payment_bypass_enabled:
                logger.warning("Bypass requested but both bypass methods are disabled")
                raise InvalidOperation(BYPASS_DISABLED)

            attempt = self._record.bypass_attempts + 1
            self._commit(self._record.model_copy(update={"bypass_attempts": attempt}))

            challenges = []
            if cfg.challenge_bypass_enabled:
                challenges = generate_challenges(attempt, self._rng)
            session_id = f"bypass-{uuid4().hex}"
            self._pending[session_id] = PendingChallenge(challenges, self._clock())

        payment_option = None
        if cfg.payment_bypass_enabled:
            payment_option = PaymentOption(
                amount=cfg.payment_bypass_amount,
                currency=cfg.payment_bypass_currency,
                url=cfg.payment_bypass_url,
                has_verification=cfg.has_payment_verification,
            )
        logger.info(f"Bypass attempt {attempt} started with {len(challenges)} challenge(s)")
        return BypassTicket(
            challenge_id=session_id, challenges=challenges, payment_option=payment_option
        )

    def complete_bypass(
        self,
        challenge_id: str,
        proof: str = "",
        payment_method: bool = False,
        payment_ref: str | None = None,
    ) -> datetime:
        """Moves a locked record into grace. Returns when the grace period ends.

        ``proof`` is accepted but not checked: clients validate each answer
        before completing.
        """
        cfg = self._config()
        if payment_method:
            with self._mutex:
                self._reconcile()
                self._check_bypassable()
            # Network call, made without holding the mutex
            self._verify_payment(cfg, payment_ref)

        with self._mutex:
            self._reconcile()
            if not payment_method and challenge_id not in self._pending:
                logger.warning(f"Bypass completion with unknown session {challenge_id!r}")
                raise ExpiredSession(INVALID_CHALLENGE)
            self._check_bypassable()

            now = self._clock()
            grace_expires_at = now + timedelta(minutes=cfg.grace_minutes)
            self._commit(
                self._record.model_copy(
                    update={"status": LockStatus.GRACE, "grace_expires_at": grace_expires_at}
                )
            )
            self._pending.pop(challenge_id, None)
            self._record_bypass_event(now)
            self._remove_enforcement()
            self._arm_timers()

        method = "payment" if payment_method else "challenge"
        logger.info(f"Bypass completed via {method}, grace until {grace_expires_at.isoformat()}")
        self._notify(f"Bypass accepted. Access until {format_clock(grace_expires_at)}")
        return grace_expires_at

    def _check_bypassable(self):
        if self._record.status is not LockStatus.LOCKED:
            raise InvalidOperation(NOT_LOCKED)
        if self._record.hard_lock:
            logger.warning("Bypass rejected: hard lock active")
            raise InvalidOperation(HARD_LOCK_ACTIVE)

    def _verify_payment(self, cfg: Settings, payment_ref: str | None):
        if not cfg.payment_bypass_enabled:
            raise InvalidOperation("Payment bypass is not enabled")
        verifier = self._verifier_factory(cfg)
        if verifier is None:
            return
        if not payment_ref:
            raise InvalidOperation("A payment reference is required to verify the payment")
        result = verifier.verify(payment_ref)
        if not result.ok:
            logger.warning(f"Payment verification rejected {payment_ref}: {result.reason}")
            raise ExternalFailure(result.reason or "Payment verification failed")

    # ── internals; callers hold the mutex ──

    def _commit(self, record: LockRecord):
        # Disk first: a failed write leaves the in-memory record untouched
        self._store.save(record)
        self._record = record

    def _reconcile(self) -> bool:
        """Applies any expiry or grace-end transition that is due."""
        now = self._clock()
        record = self._record
        if record.status is LockStatus.LOCKED:
            if record.expires_at is None or record.expires_at <= now:
                self._release("lock expired")
                return True
        elif record.status is LockStatus.GRACE:
            if record.grace_expires_at is None or record.grace_expires_at <= now:
                self._end_grace(now)
                return True
        return False

    def _engage(self, duration: timedelta, source_id: str | None, hard_lock: bool):
        now = self._clock()
        record = LockRecord(
            status=LockStatus.LOCKED,
            locked_at=now,
            expires_at=now + duration,
            bypass_attempts=0,
            source_id=source_id,
            hard_lock=hard_lock,
            pending_handoff_keys=list(self._record.pending_handoff_keys),
        )
        self._commit(record)
        self._pending.clear()
        self._install_enforcement()
        self._arm_timers()
        kind = "hard lock" if hard_lock else "lock"
        origin = f" (schedule {source_id})" if source_id else ""
        logger.info(f"Engaged {kind}{origin} until {record.expires_at.isoformat()}")

    def _release(self, reason: str):
        keys = list(self._record.pending_handoff_keys)
        self._commit(LockRecord(pending_handoff_keys=keys))
        self._pending.clear()
        self._expiry_timer.cancel()
        self._grace_timer.cancel()
        self._remove_enforcement()
        logger.info(f"Unlocked: {reason}")
        self._notify("Lock ended. The tool is available again.")

    def _end_grace(self, now: datetime):
        record = self._record
        if record.expires_at is None or record.expires_at <= now:
            self._release("lock expired during grace period")
            return
        self._commit(
            record.model_copy(update={"status": LockStatus.LOCKED, "grace_expires_at": None})
        )
        self._install_enforcement()
        self._arm_timers()
        logger.info(f"Grace period ended, locked again until {record.expires_at.isoformat()}")
        self._notify(f"Grace period ended. Locked again until {format_clock(record.expires_at)}")

    def _arm_timers(self):
        self._expiry_timer.cancel()
        self._grace_timer.cancel()
        record = self._record
        now = self._clock()
        if record.status is LockStatus.LOCKED and record.expires_at:
            delay = (record.expires_at - now).total_seconds()
            self._expiry_timer.arm(delay, self._on_timer)
        elif record.status is LockStatus.GRACE and record.grace_expires_at:
            delay = (record.grace_expires_at - now).total_seconds()
            self._grace_timer.arm(delay, self._on_timer)

    def _on_timer(self):
        with self._mutex:
            try:
                self._reconcile()
            except PersistenceError as e:
                logger.critical(f"Timed transition not persisted, retrying in {PERSIST_RETRY_SECONDS:.0f}s: {e}")
                timer = (
                    self._grace_timer
                    if self._record.status is LockStatus.GRACE
                    else self._expiry_timer
                )
                timer.arm(PERSIST_RETRY_SECONDS, self._on_timer)
                return
            # Also covers a timer that fired early
            self._arm_timers()

    def _install_enforcement(self):
        try:
            keys = self._guard.install_enforcement()
        except Exception:
            logger.exception("Failed to install enforcement")
            return
        known = self._record.pending_handoff_keys
        new_keys = [k for k in keys if k not in known]
        if not new_keys:
            return
        logger.info(f"Interrupted {len(new_keys)} session(s): {', '.join(new_keys)}")
        try:
            self._commit(self._record.model_copy(update={"pending_handoff_keys": [*known, *new_keys]}))
        except PersistenceError as e:
            logger.critical(f"Handoff keys not persisted: {e}")

    def _remove_enforcement(self):
        try:
            self._guard.remove_enforcement()
        except Exception:
            logger.exception("Failed to remove enforcement")

    def _record_bypass_event(self, now: datetime):
        if self._stats is None:
            return
        try:
            self._stats.record_bypass_event(now.astimezone().date())
        except ToolLockError as e:
            logger.error(f"Bypass event not recorded: {e}")

    def _notify(self, body: str):
        try:
            self._notifier.notify(NOTIFY_TITLE, body)
        except Exception as e:
            logger.warning(f"Notification failed: {e}")

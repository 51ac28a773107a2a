import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from loguru import logger

from tool_lock.engine import LockEngine
from tool_lock.schema import RecurrenceKind, Schedule
from tool_lock.settings import Settings
from tool_lock.stores import ScheduleStore
from tool_lock.utils.notifications import Notifier, NullNotifier
from tool_lock.utils.time import local_now

WEEKDAYS = frozenset(range(1, 6))


@dataclass(frozen=True)
class ScheduleWindow:
    active: bool
    end_time: datetime


def day_number(moment: datetime) -> int:
    """0=Sunday … 6=Saturday."""
    return (moment.weekday() + 1) % 7


def at_time_of_day(moment: datetime, hhmm: str) -> datetime:
    hour, minute = (int(part) for part in hhmm.split(":"))
    return moment.replace(hour=hour, minute=minute, second=0, microsecond=0)


def matches_day(schedule: Schedule, moment: datetime, weekend_days: Iterable[int]) -> bool:
    day = day_number(moment)
    if schedule.kind is RecurrenceKind.DAILY:
        return True
    if schedule.kind is RecurrenceKind.WEEKDAYS:
        return day in WEEKDAYS
    if schedule.kind is RecurrenceKind.WEEKENDS:
        return day in set(weekend_days)
    if schedule.kind is RecurrenceKind.CUSTOM:
        return bool(schedule.days) and day in schedule.days
    return False


def check_active(schedule: Schedule, now: datetime, weekend_days: Iterable[int]) -> ScheduleWindow:
    """
    Whether ``now`` falls inside the schedule's window for today.

    The window is half-open, [start, end), compared as zero-padded "HH:MM"
    strings. A window whose end is not after its start (22:00-02:00) is
    therefore never active.
    """
    if not schedule.enabled or not matches_day(schedule, now, weekend_days):
        return ScheduleWindow(False, now)
    current = now.strftime("%H:%M")
    active = schedule.start_time <= current < schedule.end_time
    return ScheduleWindow(active, at_time_of_day(now, schedule.end_time))


def starts_within(
    schedule: Schedule, now: datetime, lead: timedelta, weekend_days: Iterable[int]
) -> bool:
    """True if the schedule is due to start today within ``lead`` from now."""
    if not schedule.enabled or lead <= timedelta(0):
        return False
    if not matches_day(schedule, now, weekend_days):
        return False
    start = at_time_of_day(now, schedule.start_time)
    return now < start <= now + lead


class ScheduleEvaluator:
    """Periodically engages locks for active schedules and warns about upcoming ones."""

    def __init__(
        self,
        engine: LockEngine,
        store: ScheduleStore,
        config: Callable[[], Settings],
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = local_now,
        interval_seconds: float | None = None,
    ):
        self.engine = engine
        self.store = store
        self._config = config
        self._notifier = notifier or NullNotifier()
        self._clock = clock
        self.interval_seconds = interval_seconds
        self._warned: set[tuple[str, str]] = set()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def evaluate(self, now: datetime | None = None) -> list[str]:
        """Runs one tick. Returns the ids of schedules that engaged a lock."""
        now = now or self._clock()
        cfg = self._config()
        lead = timedelta(minutes=cfg.notify_lead_minutes)
        engaged = []

        for schedule in self.store.list():
            window = check_active(schedule, now, cfg.weekend_days)
            if window.active:
                if self.engine.lock_for_schedule(schedule.id, window.end_time, schedule.name or None):
                    engaged.append(schedule.id)
            elif starts_within(schedule, now, lead, cfg.weekend_days):
                self._warn(schedule, now, cfg)

        # Only today's warnings can still matter
        today = now.date().isoformat()
        self._warned = {key for key in self._warned if key[1] == today}
        return engaged

    def _warn(self, schedule: Schedule, now: datetime, cfg: Settings):
        key = (schedule.id, now.date().isoformat())
        if key in self._warned:
            return
        self._warned.add(key)
        summary = cfg.notify_summary.format(minutes=cfg.notify_lead_minutes)
        body = cfg.notify_body.format(
            name=schedule.name or schedule.id, start_time=schedule.start_time
        )
        logger.info(f"Upcoming schedule {schedule.id} at {schedule.start_time}")
        try:
            self._notifier.notify(summary, body)
        except Exception as e:
            logger.warning(f"Notification failed: {e}")

    def start(self):
        """Evaluates immediately, then on every interval in a background thread."""
        if self._thread and self._thread.is_alive():
            logger.warning("ScheduleEvaluator is already running.")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="schedule-evaluator", daemon=True)
        self._thread.start()
        logger.info("Schedule evaluator started")

    def stop(self):
        if not self._thread:
            return
        self._stop_event.set()
        self._thread.join(timeout=2.0)
        self._thread = None
        logger.info("Schedule evaluator stopped")

    def _run(self):
        while not self._stop_event.is_set():
            try:
                self.evaluate()
            except Exception:
                logger.exception("Schedule evaluation tick failed")
            interval = self.interval_seconds or self._config().schedule_interval_seconds
            if self._stop_event.wait(timeout=interval):
                return

import json
import threading
from abc import ABC, abstractmethod
from datetime import date, timedelta
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from tool_lock.errors import PersistenceError
from tool_lock.schema import DailyStats, Schedule, new_schedule_id
from tool_lock.store import atomic_write_text


class ScheduleStore:
    """Manages persistence and retrieval of lock schedules."""

    def __init__(self, path: Path):
        self.schedules_file = path
        self.schedules: list[Schedule] = []
        self._last_schedules_mtime: float | None = None
        self._lock = threading.Lock()
        self._load_schedules()

    def _load_schedules(self):
        if not self.schedules_file.exists():
            self._last_schedules_mtime = None
            self.schedules = []
            return

        current_mtime = self.schedules_file.stat().st_mtime
        if self._last_schedules_mtime == current_mtime:
            # File hasn't changed, no need to reload
            return

        try:
            with open(self.schedules_file) as f:
                data = json.load(f)
            self.schedules = [Schedule.model_validate(s) for s in data]
            self._last_schedules_mtime = current_mtime
        except (OSError, ValueError, ValidationError) as e:
            logger.error(f"Failed to load schedules: {e}")

    def _save_schedules(self):
        payload = json.dumps(
            [s.model_dump(mode="json", by_alias=True) for s in self.schedules], indent=4
        )
        try:
            atomic_write_text(self.schedules_file, payload)
            self._last_schedules_mtime = self.schedules_file.stat().st_mtime
        except OSError as e:
            raise PersistenceError(f"Could not write schedules: {e}") from e

    def list(self) -> list[Schedule]:
        """Current schedules, re-read from disk if the file changed."""
        with self._lock:
            self._load_schedules()
            return [s.model_copy() for s in self.schedules]

    def add(self, schedule: Schedule) -> Schedule:
        """Adds a schedule under a freshly assigned id and saves it."""
        with self._lock:
            self._load_schedules()
            schedule = schedule.model_copy(update={"id": new_schedule_id()})
            self.schedules.append(schedule)
            self._save_schedules()
        logger.info(f"Added schedule {schedule.id} ({schedule.start_time}-{schedule.end_time})")
        return schedule

    def remove(self, schedule_id: str) -> bool:
        with self._lock:
            self._load_schedules()
            remaining = [s for s in self.schedules if s.id != schedule_id]
            if len(remaining) == len(self.schedules):
                return False
            self.schedules = remaining
            self._save_schedules()
        logger.info(f"Removed schedule {schedule_id}")
        return True

    def toggle(self, schedule_id: str, enabled: bool) -> bool:
        with self._lock:
            self._load_schedules()
            for i, s in enumerate(self.schedules):
                if s.id == schedule_id:
                    self.schedules[i] = s.model_copy(update={"enabled": enabled})
                    self._save_schedules()
                    logger.info(f"Schedule {schedule_id} enabled={enabled}")
                    return True
        return False


class StatsSink(ABC):
    @abstractmethod
    def record_bypass_event(self, day: date) -> None: ...


class StatsStore(StatsSink):
    """Per-day bypass counters kept in a small JSON file."""

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()

    def _read(self) -> dict[str, dict]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path) as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load stats from {self.path}: {e}")
            return {}

    def record_bypass_event(self, day: date) -> None:
        with self._lock:
            data = self._read()
            entry = data.setdefault(day.isoformat(), {})
            entry["bypassCount"] = entry.get("bypassCount", 0) + 1
            try:
                atomic_write_text(self.path, json.dumps(data, indent=4, sort_keys=True))
            except OSError as e:
                raise PersistenceError(f"Could not write stats: {e}") from e

    def stats_for_period(self, start: date, end: date) -> list[DailyStats]:
        with self._lock:
            data = self._read()
        days = []
        for key in sorted(data):
            if start.isoformat() <= key <= end.isoformat():
                days.append(DailyStats(date=key, bypass_count=data[key].get("bypassCount", 0)))
        return days

    def stats_for(self, period: str, today: date) -> list[DailyStats]:
        span = {"day": 0, "week": 7, "month": 30}[period]
        return self.stats_for_period(today - timedelta(days=span), today)

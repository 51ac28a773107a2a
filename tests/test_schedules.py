from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from tool_lock.evaluator import ScheduleEvaluator, check_active, day_number
from tool_lock.schema import LockStatus, RecurrenceKind, Schedule
from tool_lock.stores import ScheduleStore

# 2024-01-15 is a Monday
MONDAY = datetime(2024, 1, 15)
DEFAULT_WEEKEND = [0, 6]


def at(day_offset: int, hhmm: str) -> datetime:
    hour, minute = map(int, hhmm.split(":"))
    return (MONDAY + timedelta(days=day_offset)).replace(hour=hour, minute=minute).astimezone()


def test_day_numbers_start_on_sunday():
    assert day_number(at(0, "12:00")) == 1
    assert day_number(at(5, "12:00")) == 6
    assert day_number(at(6, "12:00")) == 0


@pytest.mark.parametrize("day_offset", range(7))
@pytest.mark.parametrize(
    "hhmm, expected",
    [("09:00", True), ("16:59", True), ("17:00", False), ("08:59", False)],
)
def test_daily_window_is_half_open(day_offset, hhmm, expected):
    schedule = Schedule(start_time="09:00", end_time="17:00")
    assert check_active(schedule, at(day_offset, hhmm), DEFAULT_WEEKEND).active is expected


def test_end_time_is_today_at_window_end():
    schedule = Schedule(start_time="09:00", end_time="17:30")
    now = at(0, "10:15").replace(second=42)
    window = check_active(schedule, now, DEFAULT_WEEKEND)
    assert window.end_time == now.replace(hour=17, minute=30, second=0, microsecond=0)


def test_weekends_use_configured_days():
    schedule = Schedule(kind=RecurrenceKind.WEEKENDS, start_time="00:00", end_time="23:59")
    friday, saturday, sunday = at(4, "12:00"), at(5, "12:00"), at(6, "12:00")

    assert check_active(schedule, friday, [5]).active
    assert not check_active(schedule, saturday, [5]).active
    assert not check_active(schedule, sunday, [5]).active


def test_weekdays_are_monday_to_friday():
    schedule = Schedule(kind=RecurrenceKind.WEEKDAYS, start_time="09:00", end_time="17:00")
    assert check_active(schedule, at(0, "10:00"), DEFAULT_WEEKEND).active
    assert check_active(schedule, at(4, "10:00"), DEFAULT_WEEKEND).active
    assert not check_active(schedule, at(5, "10:00"), DEFAULT_WEEKEND).active


def test_custom_needs_explicit_days():
    monday = at(0, "10:00")
    with_days = Schedule(kind="custom", start_time="09:00", end_time="17:00", days=[1, 3])
    without_days = Schedule(kind="custom", start_time="09:00", end_time="17:00")

    assert check_active(with_days, monday, DEFAULT_WEEKEND).active
    assert not check_active(with_days, at(1, "10:00"), DEFAULT_WEEKEND).active
    assert not check_active(without_days, monday, DEFAULT_WEEKEND).active


def test_disabled_schedule_is_never_active():
    schedule = Schedule(start_time="09:00", end_time="17:00", enabled=False)
    now = at(0, "10:00")
    window = check_active(schedule, now, DEFAULT_WEEKEND)
    assert not window.active
    assert window.end_time == now


@pytest.mark.parametrize("hhmm", ["23:00", "01:00", "12:00"])
def test_window_crossing_midnight_never_matches(hhmm):
    schedule = Schedule(start_time="22:00", end_time="02:00")
    assert not check_active(schedule, at(0, hhmm), DEFAULT_WEEKEND).active


def test_times_are_normalized():
    schedule = Schedule(start_time="9am", end_time="5:30pm")
    assert (schedule.start_time, schedule.end_time) == ("09:00", "17:30")


def test_wire_format_uses_type_and_camel_case():
    schedule = Schedule.model_validate(
        {"type": "custom", "startTime": "08:00", "endTime": "09:00", "days": [3, 1, 3]}
    )
    assert schedule.kind is RecurrenceKind.CUSTOM
    assert schedule.days == [1, 3]
    wire = schedule.to_wire()
    assert wire["type"] == "custom"
    assert wire["startTime"] == "08:00"


def test_rejects_bad_day_numbers():
    with pytest.raises(ValidationError):
        Schedule(kind="custom", start_time="08:00", end_time="09:00", days=[7])


class TestScheduleStore:
    def test_persistence(self, tmp_path):
        path = tmp_path / "schedules.json"
        store = ScheduleStore(path)
        added = store.add(Schedule(name="Focus", start_time="8pm", end_time="9pm"))

        assert added.id.startswith("sched-")
        reloaded = ScheduleStore(path).list()
        assert [s.id for s in reloaded] == [added.id]
        assert reloaded[0].start_time == "20:00"

    def test_add_assigns_fresh_id(self, tmp_path):
        store = ScheduleStore(tmp_path / "schedules.json")
        first = store.add(Schedule(id="mine", start_time="08:00", end_time="09:00"))
        second = store.add(Schedule(id="mine", start_time="08:00", end_time="09:00"))
        assert first.id != "mine"
        assert first.id != second.id

    def test_remove(self, tmp_path):
        store = ScheduleStore(tmp_path / "schedules.json")
        s = store.add(Schedule(start_time="8pm", end_time="9pm"))

        assert store.remove(s.id) is True
        assert store.list() == []
        assert store.remove(s.id) is False

    def test_toggle(self, tmp_path):
        store = ScheduleStore(tmp_path / "schedules.json")
        s = store.add(Schedule(start_time="8pm", end_time="9pm"))

        assert store.toggle(s.id, False) is True
        assert store.list()[0].enabled is False
        assert store.toggle("sched-missing", True) is False


class TestEvaluator:
    @pytest.fixture
    def schedules(self, tmp_path):
        return ScheduleStore(tmp_path / "schedules.json")

    @pytest.fixture
    def evaluator(self, engine, schedules, config, notifier):
        return ScheduleEvaluator(engine, schedules, config, notifier=notifier)

    def test_active_schedule_locks_until_window_end(self, evaluator, schedules, engine, clock):
        now = clock.now.astimezone()
        start = (now - timedelta(minutes=30)).strftime("%H:%M")
        end = (now + timedelta(minutes=30)).strftime("%H:%M")
        if end <= start:
            pytest.skip("window would cross local midnight")
        s = schedules.add(Schedule(name="Focus", start_time=start, end_time=end))

        assert evaluator.evaluate(now) == [s.id]
        record = engine.snapshot()
        assert record.status is LockStatus.LOCKED
        assert record.source_id == s.id

        # Already locked: the next tick does not re-engage
        assert evaluator.evaluate(now) == []

    def test_inactive_schedule_does_nothing(self, evaluator, schedules, engine):
        schedules.add(Schedule(start_time="09:00", end_time="10:00"))
        assert evaluator.evaluate(at(0, "11:00")) == []
        assert engine.snapshot().status is LockStatus.UNLOCKED

    def test_warns_once_per_schedule_per_day(self, evaluator, schedules, notifier):
        schedules.add(Schedule(name="Evening", start_time="20:00", end_time="21:00"))

        evaluator.evaluate(at(0, "19:56"))
        evaluator.evaluate(at(0, "19:58"))
        assert len(notifier.messages) == 1
        summary, body = notifier.messages[0]
        assert summary == "Lock in 5 minutes"
        assert "Evening" in body and "20:00" in body

        evaluator.evaluate(at(1, "19:57"))
        assert len(notifier.messages) == 2

    def test_no_warning_outside_lead_window(self, evaluator, schedules, notifier):
        schedules.add(Schedule(start_time="20:00", end_time="21:00"))
        evaluator.evaluate(at(0, "19:30"))
        assert notifier.messages == []

import json
from datetime import date, datetime, timedelta, timezone

import pytest

from tool_lock.errors import InvalidOperation, PersistenceError
from tool_lock.schema import LockRecord, LockStatus
from tool_lock.settings import ConfigManager, Settings
from tool_lock.store import LockRecordStore
from tool_lock.stores import StatsStore


class TestLockRecordStore:
    def test_missing_file_loads_default(self, tmp_path):
        assert LockRecordStore(tmp_path / "state.json").load() == LockRecord()

    def test_round_trip_uses_camel_case(self, tmp_path):
        path = tmp_path / "state.json"
        now = datetime(2024, 1, 15, 12, tzinfo=timezone.utc)
        record = LockRecord(
            status=LockStatus.LOCKED,
            locked_at=now,
            expires_at=now + timedelta(minutes=30),
            source_id="sched-1",
            pending_handoff_keys=["claude:1:/"],
        )
        store = LockRecordStore(path)
        store.save(record)

        on_disk = json.loads(path.read_text())
        assert on_disk["expiresAt"].startswith("2024-01-15T12:30:00")
        assert on_disk["sourceId"] == "sched-1"
        assert store.load() == record

    def test_legacy_schedule_id_field(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"status": "unlocked", "scheduleId": "sched-9"}))
        assert LockRecordStore(path).load().source_id == "sched-9"

    def test_corrupt_file_loads_default(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{ nope")
        assert LockRecordStore(path).load().status is LockStatus.UNLOCKED

    def test_write_failure_raises_persistence_error(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        store = LockRecordStore(blocker / "state.json")
        with pytest.raises(PersistenceError):
            store.save(LockRecord())


class TestStatsStore:
    def test_counts_per_day(self, tmp_path):
        stats = StatsStore(tmp_path / "stats.json")
        stats.record_bypass_event(date(2024, 1, 14))
        stats.record_bypass_event(date(2024, 1, 15))
        stats.record_bypass_event(date(2024, 1, 15))

        days = stats.stats_for_period(date(2024, 1, 1), date(2024, 1, 31))
        assert [(d.date, d.bypass_count) for d in days] == [("2024-01-14", 1), ("2024-01-15", 2)]

    def test_period_bounds(self, tmp_path):
        stats = StatsStore(tmp_path / "stats.json")
        stats.record_bypass_event(date(2024, 1, 1))
        stats.record_bypass_event(date(2024, 1, 15))

        assert [d.date for d in stats.stats_for("day", date(2024, 1, 15))] == ["2024-01-15"]
        assert [d.date for d in stats.stats_for("week", date(2024, 1, 15))] == ["2024-01-15"]
        assert len(stats.stats_for("month", date(2024, 1, 15))) == 2


class TestConfigManager:
    def test_defaults(self, tmp_path):
        cfg = ConfigManager(Settings(data_dir=tmp_path)).current()
        assert cfg.grace_minutes == 5
        assert cfg.weekend_days == [0, 6]
        assert cfg.challenge_bypass_enabled is True
        assert cfg.payment_bypass_enabled is False
        assert cfg.payment_bypass_amount == 500

    def test_reads_config_file(self, tmp_path):
        (tmp_path / "config.json").write_text(json.dumps({"grace_minutes": 12, "weekend_days": [6, 5, 5]}))
        cfg = ConfigManager(Settings(data_dir=tmp_path)).current()
        assert cfg.grace_minutes == 12
        assert cfg.weekend_days == [5, 6]

    def test_unreadable_file_falls_back(self, tmp_path):
        (tmp_path / "config.json").write_text("{")
        assert ConfigManager(Settings(data_dir=tmp_path)).current().grace_minutes == 5

    def test_update_accepts_camel_case(self, tmp_path):
        manager = ConfigManager(Settings(data_dir=tmp_path))
        manager.update("weekendDays", [5])
        assert manager.current().weekend_days == [5]
        assert ConfigManager(Settings(data_dir=tmp_path)).current().weekend_days == [5]

    @pytest.mark.parametrize(
        "key, value",
        [("graceMinutes", 0), ("graceMinutes", 121), ("weekendDays", [7]), ("paymentBypassAmount", 0)],
    )
    def test_update_rejects_invalid_values(self, tmp_path, key, value):
        manager = ConfigManager(Settings(data_dir=tmp_path))
        with pytest.raises(InvalidOperation):
            manager.update(key, value)
        assert not manager.config_path.exists()

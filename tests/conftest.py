import random
from datetime import date, datetime, timedelta, timezone

import pytest

from tool_lock.engine import LockEngine
from tool_lock.guards import EnforcementGuard
from tool_lock.payments import PaymentVerifier, VerificationResult
from tool_lock.settings import Settings
from tool_lock.store import LockRecordStore
from tool_lock.stores import StatsSink
from tool_lock.timers import Timer
from tool_lock.utils.notifications import Notifier

START = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class ManualTimer(Timer):
    """Records what the engine armed; tests fire it by hand."""

    def __init__(self, name: str):
        super().__init__(name)
        self.delay: float | None = None
        self.callback = None

    def arm(self, delay_seconds, callback):
        self.delay = delay_seconds
        self.callback = callback

    def cancel(self):
        self.delay = None
        self.callback = None

    @property
    def armed(self) -> bool:
        return self.callback is not None

    def fire(self):
        callback = self.callback
        self.cancel()
        callback()


class Timers(dict):
    def __call__(self, name: str) -> ManualTimer:
        timer = ManualTimer(name)
        self[name] = timer
        return timer


class RecordingGuard(EnforcementGuard):
    def __init__(self):
        self.installs = 0
        self.removes = 0
        self.keys_to_return: list[str] = []

    def install_enforcement(self) -> list[str]:
        self.installs += 1
        return list(self.keys_to_return)

    def remove_enforcement(self) -> None:
        self.removes += 1


class RecordingNotifier(Notifier):
    def __init__(self):
        self.messages: list[tuple[str, str]] = []

    def notify(self, title: str, body: str) -> None:
        self.messages.append((title, body))


class RecordingStats(StatsSink):
    def __init__(self):
        self.days: list[date] = []

    def record_bypass_event(self, day: date) -> None:
        self.days.append(day)


class FakeVerifier(PaymentVerifier):
    def __init__(self, result: VerificationResult = VerificationResult(True)):
        self.result = result
        self.references: list[str] = []

    def verify(self, reference: str) -> VerificationResult:
        self.references.append(reference)
        return self.result


class ConfigBox:
    """Config provider whose settings a test can swap mid-run."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def __call__(self) -> Settings:
        return self.settings

    def set(self, **updates):
        self.settings = self.settings.model_copy(update=updates)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        data_dir=tmp_path / "data",
        log_dir=tmp_path / "logs",
        socket_path=tmp_path / "tool-lock.sock",
    )


@pytest.fixture
def config(settings) -> ConfigBox:
    return ConfigBox(settings)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timers() -> Timers:
    return Timers()


@pytest.fixture
def guard() -> RecordingGuard:
    return RecordingGuard()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def stats() -> RecordingStats:
    return RecordingStats()


@pytest.fixture
def verifier() -> FakeVerifier:
    return FakeVerifier()


@pytest.fixture
def store(settings) -> LockRecordStore:
    return LockRecordStore(settings.state_file)


@pytest.fixture
def make_engine(store, config, guard, notifier, stats, verifier, clock, timers):
    def factory(**overrides) -> LockEngine:
        kwargs = dict(
            store=store,
            config=config,
            guard=guard,
            notifier=notifier,
            stats=stats,
            verifier_factory=lambda cfg: verifier if cfg.payment_bypass_stripe_key else None,
            clock=clock,
            timer_factory=timers,
            rng=random.Random(1234),
        )
        kwargs.update(overrides)
        return LockEngine(**kwargs)

    return factory


@pytest.fixture
def engine(make_engine) -> LockEngine:
    engine = make_engine()
    engine.recover()
    return engine

import json
import threading
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel, to_snake
from pydantic_settings import BaseSettings, SettingsConfigDict

from tool_lock.errors import InvalidOperation, PersistenceError
from tool_lock.utils.paths import (
    get_default_data_dir,
    get_default_log_dir,
    get_default_socket_path,
)

# Keys that may be changed at runtime through `config-set` and config.json.
SETTABLE_KEYS = (
    "grace_minutes",
    "weekend_days",
    "challenge_bypass_enabled",
    "payment_bypass_enabled",
    "payment_bypass_amount",
    "payment_bypass_currency",
    "payment_bypass_url",
    "payment_bypass_stripe_key",
    "kill_sessions_on_lock",
    "tool_names",
    "notify_lead_minutes",
)
SECRET_KEYS = ("payment_bypass_stripe_key",)


class Settings(BaseSettings):
    """Application-wide settings managed via env/.env and config.json."""

    app_name: str = "tool-lock"
    debug: bool = Field(default=False, description="Master toggle for verbose logging")

    # Paths
    data_dir: Path = Field(default_factory=get_default_data_dir)
    log_dir: Path = Field(default_factory=get_default_log_dir)
    socket_path: Path = Field(default_factory=get_default_socket_path)

    def model_post_init(self, __context):
        self.data_dir = self.data_dir.resolve()
        self.log_dir = self.log_dir.resolve()
        self.socket_path = self.socket_path.expanduser()

    @property
    def state_file(self) -> Path:
        return self.data_dir / "state.json"

    @property
    def schedules_file(self) -> Path:
        return self.data_dir / "schedules.json"

    @property
    def stats_file(self) -> Path:
        return self.data_dir / "stats.json"

    @property
    def config_file(self) -> Path:
        return self.data_dir / "config.json"

    @property
    def pid_file(self) -> Path:
        return self.data_dir / "daemon.pid"

    # Lock behaviour
    grace_minutes: int = Field(default=5, ge=1, le=120)
    weekend_days: list[int] = Field(default_factory=lambda: [0, 6])
    schedule_interval_seconds: float = Field(default=30.0, gt=0)

    # Bypass
    challenge_bypass_enabled: bool = True
    payment_bypass_enabled: bool = False
    payment_bypass_amount: int = Field(default=500, ge=1, description="Cents")
    payment_bypass_currency: str = "USD"
    payment_bypass_url: str = ""
    payment_bypass_stripe_key: str = ""

    # Enforcement
    tool_names: list[str] = Field(default_factory=lambda: ["claude"])
    kill_sessions_on_lock: bool = False

    # Notifications
    notify_lead_minutes: int = Field(default=5, ge=0)
    notify_summary: str = "Lock in {minutes} minutes"
    notify_body: str = 'Schedule "{name}" starts at {start_time}.'

    model_config = SettingsConfigDict(
        env_prefix="TOOL_LOCK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("weekend_days")
    @classmethod
    def _check_weekend_days(cls, value: list[int]) -> list[int]:
        if any(day < 0 or day > 6 for day in value):
            raise ValueError("weekend_days must be day numbers 0 (Sunday) to 6 (Saturday)")
        return sorted(set(value))

    @property
    def has_payment_verification(self) -> bool:
        return bool(self.payment_bypass_stripe_key)

    def settable(self) -> dict[str, Any]:
        return self.model_dump(mode="json", include=set(SETTABLE_KEYS))

    def public_view(self) -> dict[str, Any]:
        """camelCase view of the settable keys with secrets masked, for IPC clients."""
        view = {}
        for key, value in self.settable().items():
            if key in SECRET_KEYS:
                value = "(configured)" if value else ""
            view[to_camel(key)] = value
        return view

    def save(self):
        """Saves the settable keys to config.json in data_dir."""
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, "w") as f:
                json.dump(self.settable(), f, indent=4)
        except OSError as e:
            raise PersistenceError(f"Could not write {self.config_file}: {e}") from e


class ConfigManager:
    """Serves the current Settings, re-reading config.json when it changes on disk."""

    def __init__(self, base: Settings | None = None):
        self._base = base or Settings()
        self._cached: Settings | None = None
        self._last_mtime: float | None = None
        self._lock = threading.Lock()

    @property
    def config_path(self) -> Path:
        return self._base.config_file

    def current(self) -> Settings:
        with self._lock:
            path = self.config_path
            if not path.exists():
                self._last_mtime = None
                self._cached = self._base
                return self._base

            current_mtime = path.stat().st_mtime
            if self._cached is not None and self._last_mtime == current_mtime:
                return self._cached

            try:
                with open(path) as f:
                    config_data = json.load(f)
                self._cached = self._merge(config_data)
                self._last_mtime = current_mtime
            except (OSError, ValueError) as e:
                logger.error(f"Ignoring unreadable config {path}: {e}")
                self._cached = self._base
            return self._cached

    def _merge(self, overrides: dict[str, Any]) -> Settings:
        data = self._base.model_dump()
        data.update({k: v for k, v in overrides.items() if k in SETTABLE_KEYS})
        return Settings(**data)

    def update(self, key: str, value: Any) -> Settings:
        """Validates and persists a single settable key. Accepts camelCase keys."""
        key = to_snake(key)
        if key not in SETTABLE_KEYS:
            raise InvalidOperation(f"Unknown config key: {key}")

        current = self.current()
        try:
            updated = self._merge({**current.settable(), key: value})
        except ValidationError as e:
            reason = e.errors()[0]["msg"]
            raise InvalidOperation(f"Invalid value for {key}: {reason}") from None

        updated.save()
        with self._lock:
            self._cached = updated
            self._last_mtime = self.config_path.stat().st_mtime
        logger.info(f"Config updated: {key}")
        return updated


def load_settings() -> Settings:
    """Loads settings, merging with config.json if it exists."""
    return ConfigManager().current()


# Process-wide defaults for the CLI and logging setup
settings = load_settings()

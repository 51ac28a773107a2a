from abc import ABC, abstractmethod
from collections.abc import Callable

from loguru import logger

from tool_lock.settings import Settings
from tool_lock.utils.processes import find_sessions, terminate_sessions


class EnforcementGuard(ABC):
    """Applies and lifts whatever actually keeps the tool from running."""

    @abstractmethod
    def install_enforcement(self) -> list[str]:
        """Engages enforcement. Returns handoff keys for sessions it interrupted."""

    @abstractmethod
    def remove_enforcement(self) -> None: ...


class NullGuard(EnforcementGuard):
    def install_enforcement(self) -> list[str]:
        return []

    def remove_enforcement(self) -> None:
        pass


class SessionGuard(EnforcementGuard):
    """Ends running tool sessions when a lock engages.

    Only acts when ``kill_sessions_on_lock`` is set; otherwise it just reports
    how many sessions are still running.
    """

    def __init__(self, config: Callable[[], Settings]):
        self._config = config

    def install_enforcement(self) -> list[str]:
        cfg = self._config()
        sessions = find_sessions(cfg.tool_names)
        if not sessions:
            return []
        if not cfg.kill_sessions_on_lock:
            logger.info(f"{len(sessions)} running session(s) left alone (kill_sessions_on_lock=false)")
            return []
        stopped = terminate_sessions(sessions)
        return [s.handoff_key for s in stopped]

    def remove_enforcement(self) -> None:
        logger.debug("Enforcement lifted")

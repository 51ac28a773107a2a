import os
import signal
import threading
from pathlib import Path

from loguru import logger

from tool_lock.engine import LockEngine
from tool_lock.evaluator import ScheduleEvaluator
from tool_lock.errors import PersistenceError, ToolLockError
from tool_lock.guards import SessionGuard
from tool_lock.router import RequestRouter
from tool_lock.server import IPCServer
from tool_lock.settings import ConfigManager
from tool_lock.store import LockRecordStore
from tool_lock.stores import ScheduleStore, StatsStore
from tool_lock.utils.notifications import default_notifier
from tool_lock.utils.processes import pid_alive


class DaemonAlreadyRunning(ToolLockError):
    pass


def read_pid(pid_file: Path) -> int | None:
    try:
        return int(pid_file.read_text().strip())
    except (OSError, ValueError):
        return None


def claim_pid_file(pid_file: Path):
    """Writes our pid, refusing if another live daemon owns the file."""
    existing = read_pid(pid_file)
    if existing and existing != os.getpid() and pid_alive(existing):
        raise DaemonAlreadyRunning(f"Daemon already running with PID {existing}")
    if existing:
        logger.info(f"Removing stale pid file for PID {existing}")
    pid_file.parent.mkdir(parents=True, exist_ok=True)
    pid_file.write_text(str(os.getpid()))


def release_pid_file(pid_file: Path):
    if read_pid(pid_file) == os.getpid():
        pid_file.unlink(missing_ok=True)


def is_daemon_running(pid_file: Path) -> int | None:
    """The daemon's pid if one is alive, else None."""
    pid = read_pid(pid_file)
    if pid and pid_alive(pid):
        return pid
    return None


def run_daemon(config: ConfigManager | None = None, stop_event: threading.Event | None = None):
    """Runs the daemon until SIGTERM/SIGINT or until ``stop_event`` is set."""
    config = config or ConfigManager()
    cfg = config.current()
    stop_event = stop_event or threading.Event()

    claim_pid_file(cfg.pid_file)
    logger.info(f"tool-lock daemon starting (PID {os.getpid()}), data in {cfg.data_dir}")

    notifier = default_notifier(cfg.app_name)
    stats = StatsStore(cfg.stats_file)
    schedules = ScheduleStore(cfg.schedules_file)
    engine = LockEngine(
        LockRecordStore(cfg.state_file),
        config.current,
        guard=SessionGuard(config.current),
        notifier=notifier,
        stats=stats,
    )
    router = RequestRouter(engine, schedules, stats, config)
    evaluator = ScheduleEvaluator(engine, schedules, config.current, notifier=notifier)
    server: IPCServer | None = None

    def _on_signal(signum, _frame):
        logger.info(f"Received {signal.Signals(signum).name}, shutting down")
        stop_event.set()

    if threading.current_thread() is threading.main_thread():
        signal.signal(signal.SIGTERM, _on_signal)
        signal.signal(signal.SIGINT, _on_signal)

    try:
        engine.recover()
        server = IPCServer(cfg.socket_path, router)
        server.start()
        evaluator.start()
        stop_event.wait()
    finally:
        evaluator.stop()
        if server:
            server.stop()
        try:
            engine.shutdown()
        except PersistenceError as e:
            logger.critical(f"Final flush failed, state may be stale after restart: {e}")
        release_pid_file(cfg.pid_file)
        logger.info("tool-lock daemon stopped")

from dataclasses import dataclass

import psutil
from loguru import logger


@dataclass(frozen=True)
class ToolSession:
    name: str
    pid: int
    cwd: str

    @property
    def handoff_key(self) -> str:
        """Opaque token the user can follow up on once the lock ends."""
        return f"{self.name}:{self.pid}:{self.cwd}"


def _matches(proc_info: dict, names: set[str]) -> str | None:
    if proc_info.get("name") in names:
        return proc_info["name"]
    # Node-based CLIs show up as `node /path/to/<tool>`
    cmdline = proc_info.get("cmdline") or []
    for part in cmdline[:2]:
        base = part.rsplit("/", 1)[-1]
        if base in names:
            return base
    return None


def find_sessions(process_names: list[str]) -> list[ToolSession]:
    """Lists running processes whose name or launcher argument matches."""
    names = set(process_names)
    sessions = []
    for proc in psutil.process_iter(["name", "cmdline", "cwd"]):
        try:
            matched = _matches(proc.info, names)
            if matched:
                sessions.append(ToolSession(matched, proc.pid, proc.info.get("cwd") or ""))
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return sessions


def terminate_sessions(sessions: list[ToolSession], timeout: float = 3.0) -> list[ToolSession]:
    """Terminates the given sessions, killing any that outlive the timeout."""
    procs = []
    for session in sessions:
        try:
            proc = psutil.Process(session.pid)
            logger.info(f"Terminating {session.name} (PID: {session.pid})")
            proc.terminate()
            procs.append(proc)
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            logger.warning(f"Could not terminate {session.name} (PID: {session.pid}): {e}")

    _, alive = psutil.wait_procs(procs, timeout=timeout)
    for proc in alive:
        try:
            logger.warning(f"PID {proc.pid} ignored SIGTERM, killing")
            proc.kill()
        except psutil.NoSuchProcess:
            continue

    stopped = {p.pid for p in procs}
    return [s for s in sessions if s.pid in stopped]


def pid_alive(pid: int) -> bool:
    try:
        return psutil.pid_exists(pid) and psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False

import json
import socket
from pathlib import Path
from typing import Any

from tool_lock.errors import ToolLockError


class DaemonNotRunning(ToolLockError):
    """Nothing is listening on the daemon socket."""


def send_request(payload: dict[str, Any], socket_path: Path, timeout: float = 5.0) -> dict[str, Any]:
    """Sends one request and returns the decoded response line."""
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    sock.settimeout(timeout)
    try:
        try:
            sock.connect(str(socket_path))
        except (FileNotFoundError, ConnectionRefusedError) as e:
            raise DaemonNotRunning(f"Daemon is not running (no socket at {socket_path})") from e
        sock.sendall(json.dumps(payload).encode("utf-8") + b"\n")
        with sock.makefile("rb") as stream:
            line = stream.readline()
    finally:
        sock.close()
    if not line:
        raise ToolLockError("Daemon closed the connection without responding")
    return json.loads(line)

import json
import os
import socket
import socketserver
import threading
from pathlib import Path

from loguru import logger

from tool_lock.router import RequestRouter
from tool_lock.schema import ErrorResponse

MAX_LINE_BYTES = 64 * 1024
REQUEST_TOO_LARGE = "Request too large"


class _RequestHandler(socketserver.StreamRequestHandler):
    """Reads newline-delimited JSON requests until the client hangs up."""

    server: "IPCServer"

    def handle(self):
        while True:
            raw = self.rfile.readline(MAX_LINE_BYTES)
            if not raw:
                return
            if len(raw) >= MAX_LINE_BYTES and not raw.endswith(b"\n"):
                logger.warning(f"Dropping request longer than {MAX_LINE_BYTES} bytes")
                self._discard_rest_of_line()
                response = json.dumps(ErrorResponse(message=REQUEST_TOO_LARGE).to_wire())
            else:
                line = raw.decode("utf-8", errors="replace").strip()
                if not line:
                    continue
                response = self.server.router.handle_line(line)
            try:
                self.wfile.write(response.encode("utf-8") + b"\n")
                self.wfile.flush()
            except (BrokenPipeError, ConnectionResetError):
                logger.debug("Client went away before reading the response")
                return

    def _discard_rest_of_line(self):
        while True:
            chunk = self.rfile.readline(MAX_LINE_BYTES)
            if not chunk or chunk.endswith(b"\n"):
                return


class IPCServer(socketserver.ThreadingMixIn, socketserver.UnixStreamServer):
    daemon_threads = True

    def __init__(self, socket_path: Path, router: RequestRouter):
        self.socket_path = socket_path
        self.router = router
        self._thread: threading.Thread | None = None
        socket_path.parent.mkdir(parents=True, exist_ok=True)
        if socket_path.exists() or socket_path.is_symlink():
            # Leftover from a crashed daemon; the pid file check already
            # ruled out a live one
            logger.info(f"Removing stale socket {socket_path}")
            socket_path.unlink()
        super().__init__(str(socket_path), _RequestHandler)
        os.chmod(socket_path, 0o600)

    def start(self):
        self._thread = threading.Thread(
            target=self.serve_forever, name="ipc-server", daemon=True
        )
        self._thread.start()
        logger.info(f"Listening on {self.socket_path}")

    def stop(self):
        self.shutdown()
        self.server_close()
        if self._thread:
            self._thread.join(timeout=2.0)
            self._thread = None
        try:
            self.socket_path.unlink()
        except FileNotFoundError:
            pass
        logger.info("IPC server stopped")


def socket_accepts(socket_path: Path, timeout: float = 1.0) -> bool:
    """True if something is listening on the socket."""
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    sock.settimeout(timeout)
    try:
        sock.connect(str(socket_path))
        return True
    except OSError:
        return False
    finally:
        sock.close()

import os
import tempfile
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from tool_lock.errors import PersistenceError
from tool_lock.schema import LockRecord


def atomic_write_text(path: Path, text: str) -> None:
    """Write via a temp file in the same directory and rename over the target."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


class LockRecordStore:
    """Loads and saves the lock record as JSON."""

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> LockRecord:
        if not self.path.exists():
            return LockRecord()
        try:
            return LockRecord.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.error(f"Failed to load lock record from {self.path}, starting unlocked: {e}")
            return LockRecord()

    def save(self, record: LockRecord) -> None:
        try:
            atomic_write_text(self.path, record.model_dump_json(by_alias=True, indent=2))
        except OSError as e:
            logger.critical(f"Failed to persist lock record to {self.path}: {e}")
            raise PersistenceError(f"Could not write lock record: {e}") from e

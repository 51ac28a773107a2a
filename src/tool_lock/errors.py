class ToolLockError(Exception):
    """Base class for errors surfaced to IPC clients."""

    @property
    def reason(self) -> str:
        return str(self)


class InvalidRequest(ToolLockError):
    """Malformed JSON, unknown request type or bad fields."""


class InvalidOperation(ToolLockError):
    """Well-formed request that the current lock state does not allow."""


class ExpiredSession(InvalidOperation):
    """Unknown or already-consumed bypass challenge id."""


class ExternalFailure(ToolLockError):
    """A collaborator (payment verifier, stats sink) failed or said no."""


class PersistenceError(ToolLockError):
    """The lock record or a store could not be written to disk."""

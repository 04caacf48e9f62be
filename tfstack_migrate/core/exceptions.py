"""Core exceptions for stack migration operations."""


class StackMigrationError(Exception):
    """Base exception for stack migration operations."""


class ConfigurationError(StackMigrationError):
    """Configuration validation or loading failed."""


class PreconditionError(StackMigrationError):
    """A precondition for a mutating lifecycle call was not met."""

    def __init__(self, summary: str, detail: str):
        super().__init__(detail)
        self.summary = summary
        self.detail = detail


class TfeApiError(StackMigrationError):
    """HCP Terraform API request failed."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class RemoteNotFoundError(TfeApiError):
    """Requested remote object does not exist or is not visible to the token."""


class RemoteConflictError(PreconditionError):
    """Remote object is in a state that forbids the requested operation."""


class FingerprintError(StackMigrationError):
    """Directory or migration data could not be hashed."""


class ConversionError(StackMigrationError):
    """Workspace state could not be converted into stack state."""


class RPCHandshakeError(ConversionError):
    """The state conversion process did not complete its plugin handshake."""

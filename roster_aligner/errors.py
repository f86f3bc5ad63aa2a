from typing import Optional


class AlignerError(Exception):
    """Base class for every error raised by the aligner."""


class ConfigError(AlignerError):
    pass


class RosterError(AlignerError):
    """The roster could not be read. Fatal: nothing is reconciled."""


class AuthenticationError(AlignerError):
    """The platform rejected our credentials or scopes. Fatal at any point in a run."""

    def __init__(self, error: str, operation: str = ""):
        self.error = error
        self.operation = operation
        where = f" during {operation}" if operation else ""
        super().__init__(f"Slack authentication or authorization failed{where}: {error}")


class PlatformError(AlignerError):
    """A recoverable failure of a single platform call."""

    def __init__(self, operation: str, error: str):
        self.operation = operation
        self.error = error
        super().__init__(f"{operation} failed: {error}")


class RateLimitedError(PlatformError):
    def __init__(self, operation: str, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(operation, "ratelimited")


class RetriesExhaustedError(PlatformError):
    def __init__(self, operation: str, attempts: int):
        self.attempts = attempts
        super().__init__(operation, f"still rate limited after {attempts} attempts")


class NameConflictError(PlatformError):
    """Group creation raced with an existing group of the same name or handle."""


def describe(e: Exception) -> str:
    """Short failure reason for the run summary."""
    if isinstance(e, (PlatformError, AuthenticationError)):
        return e.error
    return f"{type(e).__name__}: {e}"

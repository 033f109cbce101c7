"""Remote sync exceptions."""


class SyncError(Exception):
    """Base exception for remote sync operations."""


class RemoteError(SyncError):
    """Raised when the remote API rejects a request or cannot be reached.

    ``status`` is the HTTP status code, or None when no response arrived.
    ``errors`` carries the server's field-level messages when it sent any.
    """

    def __init__(self, status: int | None, message: str, errors: dict[str, list[str]] | None = None) -> None:
        self.status = status
        self.message = message
        self.errors = errors or {}
        prefix = f"[{status}] " if status is not None else ""
        super().__init__(f"{prefix}{message}")


class RemoteAuthError(RemoteError):
    """Raised when the remote API answers 401; the auth collaborator has been notified."""

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(401, message)


class RemoteTimeoutError(RemoteError):
    """Raised when a remote call exceeds its time budget."""

    def __init__(self, operation: str, seconds: float) -> None:
        self.operation = operation
        self.seconds = seconds
        super().__init__(None, f"{operation} timed out after {seconds:g}s")


class MalformedResponseError(RemoteError):
    """Raised when a remote payload does not have the expected shape."""

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        super().__init__(None, f"Malformed {operation} response: {detail}")


class WardNotFoundError(RemoteError):
    """Raised when the requested ward does not exist on the server."""

    def __init__(self, ward_number: int) -> None:
        self.ward_number = ward_number
        super().__init__(404, f"Ward {ward_number} not found")

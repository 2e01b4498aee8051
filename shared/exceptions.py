"""
Error taxonomy for the chat memory bridge.

Synchronization and retrieval catch these at their boundary and turn them
into status values; only configuration errors reach the operator.
"""


class VectorMemoryError(Exception):
    """Base exception for all chat memory errors."""

    def __init__(self, message: str, tenant: str | None = None, operation: str | None = None):
        super().__init__(message)
        self.tenant = tenant
        self.operation = operation

    def describe(self) -> str:
        """Returns a one-line description with tenant and operation context."""
        parts = []
        if self.operation:
            parts.append(f"operation={self.operation}")
        if self.tenant:
            parts.append(f"tenant={self.tenant}")
        context = f" ({', '.join(parts)})" if parts else ""
        return f"{type(self).__name__}{context}: {self}"


class ConfigError(VectorMemoryError):
    """
    Bad or missing connection or provider configuration.

    Raised when:
    - A required environment variable is missing
    - A base URL is not a valid http(s) URL
    - A setting is outside its valid range
    """
    pass


class EmbeddingError(VectorMemoryError):
    """
    The embedding provider failed or returned a shape mismatch.
    """

    def __init__(self, message: str, tenant: str | None = None, operation: str | None = None, status_code: int | None = None):
        super().__init__(message, tenant=tenant, operation=operation)
        self.status_code = status_code


class InsertError(VectorMemoryError):
    """A backend insert call failed or the batch could not be embedded consistently."""
    pass


class DimensionMismatchError(InsertError):
    """
    Vector dimension differs from the dimension fixed at first write
    for the physical collection.
    """

    def __init__(self, expected: int, actual: int, tenant: str | None = None):
        super().__init__(
            f"Vector dimension {actual} does not match collection dimension {expected}.",
            tenant=tenant,
            operation="insert",
        )
        self.expected = expected
        self.actual = actual


class QueryError(VectorMemoryError):
    """A backend query call failed."""
    pass


class DeleteError(VectorMemoryError):
    """A backend delete or purge call failed."""
    pass


class BlockedError(VectorMemoryError):
    """
    The synchronization guard could not be acquired within the timeout.

    Transient: the caller should simply try again later.
    """
    pass


class BackendUnavailableError(VectorMemoryError):
    """No backend is active, or a candidate backend failed its health check."""
    pass

"""
Exception hierarchy for the memory core.

Every public operation either returns a well-typed result or raises one
of these. Read paths return None/empty for missing rows; NotFoundError is
reserved for operations that require existence.
"""

from typing import Any, Optional


class HybridMemoryError(Exception):
    """
    Base exception for the memory core.

    Attributes:
        message: Error message
        code: Stable error code
        details: Additional context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code or "HYBRID_MEMORY_ERROR"
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(HybridMemoryError, ValueError):
    """Malformed input: a field constraint was violated."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, "VALIDATION_ERROR", {"field": field})
        self.field = field


class ClosedError(HybridMemoryError, RuntimeError):
    """Operation attempted on a store that has been closed."""

    def __init__(self, message: str, store: Optional[str] = None):
        super().__init__(message, "CLOSED_ERROR", {"store": store})


class DimensionMismatchError(HybridMemoryError, ValueError):
    """Vector length does not match the configured dimension."""

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"Vector dimension mismatch: expected {expected}, got {actual}",
            "DIMENSION_MISMATCH",
            {"expected": expected, "actual": actual},
        )
        self.expected = expected
        self.actual = actual


class NotFoundError(HybridMemoryError, LookupError):
    """A required row does not exist."""

    def __init__(self, message: str, id: Optional[str] = None):
        super().__init__(message, "NOT_FOUND", {"id": id})
        self.id = id

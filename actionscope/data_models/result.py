"""
actionscope/data_models/result.py

Two-variant result wrapper returned by fallible analyzer operations.

Operations never raise to their callers; they return either a success
carrying a value or a failure carrying a human-readable message.
"""

from typing import Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class OperationResult(BaseModel, Generic[T]):
    """Outcome of an analyzer operation."""

    ok: bool = Field(description="Whether the operation completed successfully")
    value: T | None = Field(default=None, description="The operation's output, when ok")
    error: str | None = Field(default=None, description="If ok=False, explains why the operation failed")

    @classmethod
    def success(cls, value: T) -> "OperationResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str) -> "OperationResult[T]":
        return cls(ok=False, error=error)

    def unwrap(self) -> T:
        """Return the value, raising ValueError for a failed result."""
        if not self.ok:
            raise ValueError(self.error or "operation failed")
        return self.value  # type: ignore[return-value]

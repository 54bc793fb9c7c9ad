"""Custom exceptions for core logic."""

from __future__ import annotations

from typing import Any


class BinderError(Exception):
    """Base class for binding engine errors."""


class SchemaError(BinderError):
    """Raised when a data schema is cyclic or malformed."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class ExtractionWarning(UserWarning):
    """Issued when a template contains no recognizable tokens."""


class PersistenceFailure(BinderError):
    """Raised when a persistence collaborator call fails after retries."""

    def __init__(
        self,
        message: str,
        *,
        operation: str,
        params: dict[str, Any] | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.params = dict(params or {})
        self.retryable = retryable


class DuplicateBindingError(BinderError):
    """Raised when a binding already exists for a placeholder."""

    def __init__(self, message: str, *, placeholder: str) -> None:
        super().__init__(message)
        self.placeholder = placeholder


class UnknownBindingError(BinderError):
    """Raised when a binding id is not held by the store."""

    def __init__(self, message: str, *, binding_id: str) -> None:
        super().__init__(message)
        self.binding_id = binding_id


class UnresolvedClick(BinderError):
    """Raised when a sandbox click maps to no known binding."""

    def __init__(self, message: str, *, token: str) -> None:
        super().__init__(message)
        self.token = token


class RenderFallbackExhausted(BinderError):
    """Raised when neither the requested mode nor its fallback has an artifact."""

    def __init__(self, message: str, *, mode: str, attempted: list[str]) -> None:
        super().__init__(message)
        self.mode = mode
        self.attempted = list(attempted)


class MessageValidationError(BinderError):
    """Raised when a bridge message has an unknown type or invalid payload."""

    def __init__(self, message: str, *, message_type: str | None = None) -> None:
        super().__init__(message)
        self.message_type = message_type

from __future__ import annotations


class DomainError(Exception):
    """Expected, user-facing failure rendered as ``{"error": message}``."""

    status_code: int = 400

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class Unauthorized(DomainError):
    status_code = 401


class Forbidden(DomainError):
    status_code = 403


class NotFound(DomainError):
    status_code = 404


class ValidationFailed(DomainError):
    status_code = 400


class PreconditionFailed(DomainError):
    status_code = 422


class InsufficientStock(DomainError):
    status_code = 409


class OutOfStock(InsufficientStock):
    """Raised by the inventory ledger when a single posting would go below zero."""


class Conflict(DomainError):
    status_code = 409

from __future__ import annotations


class GalaError(Exception):
    """Base class for business errors that map onto an HTTP status."""

    status_code = 500

    def __init__(self, message: str, *, details: list | dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class UnauthorizedError(GalaError):
    status_code = 401

    def __init__(self, message: str = 'Authentication required') -> None:
        super().__init__(message)


class ForbiddenError(GalaError, PermissionError):
    status_code = 403


class NotFoundError(GalaError, LookupError):
    status_code = 404


class ConflictError(GalaError):
    status_code = 409


class ValidationFailedError(GalaError, ValueError):
    status_code = 400


class ExternalDependencyError(GalaError, RuntimeError):
    status_code = 502


class ReferenceCodeExhaustedError(ConflictError):
    pass

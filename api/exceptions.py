"""Custom exception classes for structured API error handling."""

from __future__ import annotations


class AppError(Exception):
    """Base application error with an associated HTTP status code."""

    status_code: int = 500

    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(message)


class NotFoundError(AppError):
    status_code = 404


class ValidationError(AppError):
    status_code = 400


class NothingToSettleError(ValidationError):
    """The consignor has no SOLD stock to settle."""


class ConflictError(AppError):
    status_code = 409


class VersionConflictError(ConflictError):
    """A collection was written by someone else since it was read."""


class CloudSyncError(AppError):
    status_code = 502

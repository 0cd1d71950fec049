"""Domain-level exceptions for location sampling, proximity and storage."""

from __future__ import annotations


class NearUError(Exception):
    """Base class for NearU domain errors."""

    reason: str = "unknown"

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(reason or self.reason)
        if reason:
            self.reason = reason


class LocationError(NearUError):
    """Raised or reported by the geolocation sampler."""

    reason = "location_error"


class PositionUnavailable(LocationError):
    reason = "position_unavailable"


class PermissionDenied(LocationError):
    reason = "permission_denied"


class PositionTimeout(LocationError):
    reason = "timeout"


class Unsupported(LocationError):
    reason = "unsupported"


class InvalidLocation(NearUError):
    reason = "invalid_location"


class StorageUnavailable(NearUError):
    reason = "storage_unavailable"


# W3C geolocation error codes reported by position sources.
PERMISSION_DENIED_CODE = 1
POSITION_UNAVAILABLE_CODE = 2
TIMEOUT_CODE = 3


def error_for_code(code: int, message: str | None = None) -> LocationError:
    """Translate a position-source error code into a typed sampler error."""
    if code == PERMISSION_DENIED_CODE:
        error: LocationError = PermissionDenied()
    elif code == TIMEOUT_CODE:
        error = PositionTimeout()
    else:
        error = PositionUnavailable()
    if message:
        error.args = (f"{error.reason}: {message}",)
    return error

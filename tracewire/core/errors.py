"""
Tracewire error taxonomy.

The classification decides what a caller does next:

- CallerContractError: the call itself was invalid; fix the caller, never retry.
- ServerConnectionError: transient; retry on the next harvest cycle.
- UnrecoverableServerError: the payload can never succeed; drop or shrink it.
- CollectorError: the collector answered with an application-level fault.
"""

from __future__ import annotations

from typing import Optional


class TracewireError(Exception):
    """Base class for all tracewire errors."""


# =============================================================================
# Caller contract errors
# =============================================================================

class CallerContractError(TracewireError):
    """An operation was invoked in a state that does not allow it."""


class NotConnectedError(CallerContractError):
    """A data-submission method was called before a successful connect."""

    def __init__(self, method: str):
        self.method = method
        super().__init__(f"Cannot invoke {method} before connecting to the collector")


class ProfilerBusyError(CallerContractError):
    """A profile session is already held by the profiler."""

    def __init__(self, profile_id: int):
        self.profile_id = profile_id
        super().__init__(f"Profile {profile_id} is already running")


class ProfileNotFinishedError(CallerContractError):
    """A profile was submitted before its sampling loop exited."""

    def __init__(self, profile_id: int):
        self.profile_id = profile_id
        super().__init__(f"Profile {profile_id} has not finished sampling")


# =============================================================================
# Server errors
# =============================================================================

class ServerConnectionError(TracewireError):
    """Transient failure talking to the collector."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class UnrecoverableServerError(TracewireError):
    """The collector rejected the payload itself (413, 415)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class CollectorError(TracewireError):
    """Fault reported inside an otherwise successful collector response."""

    def __init__(self, error_type: str, message: str):
        self.error_type = error_type
        self.message = message
        super().__init__(f"{error_type}: {message}")


class SerializationError(TracewireError):
    """A response body could not be decoded by the marshaller."""

from __future__ import annotations


class TrevelinError(Exception):
    """Base class for every failure surfaced to the user as a status string."""


class AuthenticationMissing(TrevelinError):
    pass


class PermissionDenied(TrevelinError):
    pass


class DeviceUnavailable(TrevelinError):
    pass


class ConnectionFailed(TrevelinError):
    pass


class TransportError(TrevelinError):
    pass


class RemoteRequestFailed(TrevelinError):
    pass


def status_text(exc: BaseException) -> str:
    """Render an exception the way the views display it."""
    message = str(exc).strip()
    return f"Error: {message or type(exc).__name__}"

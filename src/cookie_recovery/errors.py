# src/cookie_recovery/errors.py
from typing import Iterable, Optional


class CookieRecoveryError(Exception):
    """Base error for every failure the cookie recovery core reports.

    Carries an ordered list of concrete next actions so the caller can
    render remediation without parsing the message.
    """

    transient = False

    def __init__(self, message: str, remediation: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.message = message
        self.remediation = list(remediation or [])

    def __str__(self) -> str:
        if not self.remediation:
            return self.message
        steps = "\n".join(f"  {i}. {step}" for i, step in enumerate(self.remediation, 1))
        return f"{self.message}\n{steps}"


class Unavailable(CookieRecoveryError):
    """Debug endpoint unreachable or exposing no usable target."""

    transient = True


class MalformedResponse(CookieRecoveryError):
    """Payload from the debug endpoint could not be decoded."""

    transient = True


class ProtocolError(CookieRecoveryError):
    """The browser answered a protocol call with an error payload."""


class Unsupported(CookieRecoveryError):
    """App-Bound (v20) encryption, which this core refuses to touch."""


class DecryptionFailed(CookieRecoveryError):
    pass


class TooShort(DecryptionFailed):
    pass


class DatabaseUnavailable(CookieRecoveryError):
    """Cookie database or Local State missing or unreadable."""


class ProcessError(CookieRecoveryError):
    """Spawning, terminating or waiting on the browser process failed."""


class PlatformUnsupported(CookieRecoveryError):
    """No per-user secret protection facility on this operating system."""


class ExtractionFailed(CookieRecoveryError):
    """Terminal failure of an extraction attempt, with the context it ran in."""

    def __init__(self, message, state, strategy, cause=None, remediation=None):
        super().__init__(message, remediation)
        self.state = state
        self.strategy = strategy
        self.cause = cause


APP_BOUND_REMEDIATION = [
    "Close the browser completely and retry with auto-launch so the browser decrypts its own cookies",
    "Use Firefox, which does not apply App-Bound Encryption",
    "Export the cookies with a browser extension",
    "As an administrator, disable App-Bound Encryption by policy "
    "(ApplicationBoundEncryptionEnabled = 0)",
]

DPAPI_REMEDIATION = [
    "Close the browser completely",
    "Run from the same user account that uses the browser",
    "Check the Windows Event Viewer for DPAPI errors",
]

NO_SECRET_FACILITY_REMEDIATION = [
    "Use Firefox, which stores cookies without OS-bound encryption",
    "Export the cookies with a browser extension",
    "Start the browser with remote debugging enabled and let it hand out decrypted cookies",
]

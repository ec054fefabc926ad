# src/cookie_recovery/models.py
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from cookie_recovery.errors import DecryptionFailed

DEFAULT_SAME_SITE = "Lax"


class BrowserState(Enum):
    NOT_RUNNING = "not_running"
    RUNNING_WITH_DEBUGGING = "running_with_debugging"
    RUNNING_WITHOUT_DEBUGGING = "running_without_debugging"


class ExtractionStrategy(Enum):
    USE_EXISTING_SESSION = "use_existing_session"
    RESTART_WITH_DEBUGGING = "restart_with_debugging"
    LAUNCH_WITH_ORIGINAL_PROFILE = "launch_with_original_profile"
    DIRECT_DATABASE_READ = "direct_database_read"

    @property
    def uses_protocol(self) -> bool:
        return self is not ExtractionStrategy.DIRECT_DATABASE_READ


@dataclass(frozen=True)
class DebugTarget:
    """One entry of the debug port's /json target list."""

    ws_url: Optional[str] = None
    target_type: Optional[str] = None
    url: Optional[str] = None

    @property
    def usable(self) -> bool:
        return bool(self.ws_url) and self.target_type == "page"

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> "DebugTarget":
        return cls(
            ws_url=payload.get("webSocketDebuggerUrl"),
            target_type=payload.get("type"),
            url=payload.get("url"),
        )


@dataclass
class RawCookie:
    """Browser-native cookie record.

    Rows coming from the protocol carry a plaintext ``value``; rows read from
    the on-disk database usually carry ``encrypted_value`` instead.
    """

    name: str
    domain: str
    path: str = "/"
    expires: int = 0
    secure: bool = False
    http_only: bool = False
    same_site: str = DEFAULT_SAME_SITE
    value: str = ""
    encrypted_value: bytes = b""

    @property
    def needs_decryption(self) -> bool:
        return not self.value and bool(self.encrypted_value)


@dataclass(frozen=True)
class DecryptedCookie:
    name: str
    value: str
    domain: str
    path: str
    expires: int
    secure: bool
    http_only: bool
    same_site: str

    def __post_init__(self):
        if not isinstance(self.value, str):
            raise DecryptionFailed(f"Cookie {self.name!r} value is not text")
        try:
            self.value.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise DecryptionFailed(f"Cookie {self.name!r} value is not valid UTF-8: {exc}") from exc

    @classmethod
    def from_raw(cls, raw: RawCookie, value: Optional[str] = None) -> "DecryptedCookie":
        return cls(
            name=raw.name,
            value=raw.value if value is None else value,
            domain=raw.domain,
            path=raw.path,
            expires=raw.expires,
            secure=raw.secure,
            http_only=raw.http_only,
            same_site=raw.same_site or DEFAULT_SAME_SITE,
        )


class EventKind(Enum):
    STATE_DETECTED = "state_detected"
    STRATEGY_SELECTED = "strategy_selected"
    ATTEMPT = "attempt"
    RETRY_SCHEDULED = "retry_scheduled"
    BROWSER_TERMINATING = "browser_terminating"
    BROWSER_LAUNCHED = "browser_launched"
    SETTLING = "settling"
    FALLBACK = "fallback"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class ExtractionEvent:
    """Progress notification handed to the caller's ``on_event`` callback."""

    kind: EventKind
    message: str
    data: Dict[str, Any] = field(default_factory=dict)

# src/cookie_recovery/utils/cdp.py
"""Minimal Chrome DevTools Protocol client for cookie retrieval.

Only what cookie recovery needs: list targets on the debug port, open a
WebSocket to a ``page`` target, send one request at a time and read the
reply carrying the same id. Cookies come back already decrypted by the
browser, which is what makes this path work with App-Bound Encryption.
"""
import itertools
import json
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import httpx
import websocket
from websocket import create_connection

from cookie_recovery.errors import MalformedResponse, ProtocolError, Unavailable
from cookie_recovery.models import DEFAULT_SAME_SITE, DebugTarget, RawCookie

logger = logging.getLogger(__name__)

DEFAULT_DEBUG_PORT = 9222
DEFAULT_TIMEOUT = 5.0


class ProtocolMethodVersion(Enum):
    """Which cookie query to issue.

    STORAGE (``Storage.getCookies``) reads the cookie jar directly, works
    headless without navigation and returns partitioned cookies.
    NETWORK_LEGACY (``Network.getAllCookies``) is deprecated by Chrome and
    needs ``Network.enable`` first; kept for older browsers.
    """

    STORAGE = "storage"
    NETWORK_LEGACY = "network_legacy"

    @property
    def method(self) -> str:
        if self is ProtocolMethodVersion.NETWORK_LEGACY:
            return "Network.getAllCookies"
        return "Storage.getCookies"

    @property
    def enable_method(self) -> Optional[str]:
        if self is ProtocolMethodVersion.NETWORK_LEGACY:
            return "Network.enable"
        return None

    @classmethod
    def from_name(cls, name: str) -> "ProtocolMethodVersion":
        try:
            return cls(name.strip().lower())
        except ValueError:
            choices = ", ".join(version.value for version in cls)
            raise ValueError(f"Unknown protocol method '{name}'. Choose one of: {choices}") from None


def cookie_from_cdp(payload: Dict[str, Any]) -> RawCookie:
    """Convert one ``result.cookies`` entry into a RawCookie."""
    try:
        return RawCookie(
            name=str(payload["name"]),
            value=str(payload["value"]),
            domain=str(payload["domain"]),
            path=str(payload.get("path", "/")),
            expires=int(float(payload.get("expires", -1))),
            secure=bool(payload.get("secure", False)),
            http_only=bool(payload.get("httpOnly", False)),
            same_site=payload.get("sameSite") or DEFAULT_SAME_SITE,
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedResponse(f"Invalid cookie record in CDP response: {exc}") from exc


class CdpSession:
    """One WebSocket connection to a target; one request in flight at a time."""

    def __init__(self, ws, next_id: Callable[[], int]):
        self._ws = ws
        self._next_id = next_id
        self.closed = False

    def __enter__(self) -> "CdpSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self._ws.close()
        except (websocket.WebSocketException, OSError) as exc:
            logger.debug(f"Error closing DevTools websocket: {exc}")

    def call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if self.closed:
            raise Unavailable("DevTools session already closed")

        message_id = self._next_id()
        request = {"id": message_id, "method": method, "params": params or {}}
        logger.debug(f"CDP -> {method} (id={message_id})")
        try:
            self._ws.send(json.dumps(request))
            while True:
                raw = self._ws.recv()
                if not raw:
                    raise Unavailable(f"DevTools connection closed before {method} replied")
                reply = self._decode(raw)
                # Events have no id; stale replies carry an older one.
                if reply.get("id") == message_id:
                    break
        except (websocket.WebSocketException, OSError) as exc:
            raise Unavailable(f"DevTools websocket failed during {method}: {exc}") from exc

        error = reply.get("error")
        if error:
            message = error.get("message", error) if isinstance(error, dict) else error
            raise ProtocolError(f"CDP {method} error: {message}")

        result = reply.get("result")
        if not isinstance(result, dict):
            raise MalformedResponse(f"CDP {method} reply has no result object")
        return result

    @staticmethod
    def _decode(raw) -> Dict[str, Any]:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            reply = json.loads(raw)
        except ValueError as exc:
            raise MalformedResponse(f"Undecodable CDP message: {exc}") from exc
        if not isinstance(reply, dict):
            raise MalformedResponse("CDP message is not a JSON object")
        return reply


class CdpClient:
    """DevTools client bound to one local debug port.

    Request ids come from a counter owned by this instance, so separate
    clients never share state.
    """

    def __init__(
        self,
        port: int = DEFAULT_DEBUG_PORT,
        timeout: float = DEFAULT_TIMEOUT,
        http_get: Callable[..., Any] = httpx.get,
        ws_connect: Callable[..., Any] = create_connection,
    ):
        self.port = port
        self.timeout = timeout
        self._http_get = http_get
        self._ws_connect = ws_connect
        self._ids = itertools.count(1)

    @property
    def base_url(self) -> str:
        return f"http://127.0.0.1:{self.port}"

    def next_id(self) -> int:
        return next(self._ids)

    def discover_targets(self) -> List[DebugTarget]:
        url = f"{self.base_url}/json"
        try:
            response = self._http_get(url, timeout=self.timeout)
        except httpx.HTTPError as exc:
            raise Unavailable(
                f"Browser is not running with --remote-debugging-port={self.port} ({exc})",
                [
                    f"Start the browser with --remote-debugging-port={self.port}",
                    "Or let the extractor launch it with auto-launch enabled",
                ],
            ) from exc

        if response.status_code != 200:
            raise Unavailable(f"DevTools target list returned HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise MalformedResponse(f"Invalid DevTools target list: {exc}") from exc
        if not isinstance(payload, list):
            raise MalformedResponse("DevTools target list is not a JSON array")

        return [DebugTarget.from_json(item) for item in payload if isinstance(item, dict)]

    def select_target(self, targets: List[DebugTarget]) -> DebugTarget:
        for target in targets:
            if target.usable:
                return target
        raise Unavailable(f"No usable 'page' DevTools target among {len(targets)} targets")

    def is_available(self) -> bool:
        """True if the debug port lists at least one target with a connect URL."""
        try:
            targets = self.discover_targets()
        except (Unavailable, MalformedResponse):
            return False
        return any(target.ws_url for target in targets)

    def connect(self, target: DebugTarget) -> CdpSession:
        if not target.usable:
            raise Unavailable("DevTools target has no websocket URL or is not a page")
        try:
            ws = self._ws_connect(target.ws_url, timeout=self.timeout)
        except (websocket.WebSocketException, OSError) as exc:
            raise Unavailable(f"Error connecting to DevTools websocket: {exc}") from exc
        return CdpSession(ws, self.next_id)

    def get_cookies(
        self, version: ProtocolMethodVersion = ProtocolMethodVersion.STORAGE
    ) -> List[RawCookie]:
        """Fetch every cookie the browser holds, via a fresh connection."""
        target = self.select_target(self.discover_targets())
        logger.info("Connecting to DevTools websocket for cookie retrieval")

        with self.connect(target) as session:
            if version.enable_method:
                session.call(version.enable_method)
            result = session.call(version.method)

        cookies = result.get("cookies")
        if not isinstance(cookies, list):
            raise MalformedResponse(f"{version.method} result has no cookies array")

        parsed = [cookie_from_cdp(cookie) for cookie in cookies]
        if parsed:
            logger.info(f"Retrieved {len(parsed)} cookies via {version.method}")
        else:
            logger.warning(f"{version.method} returned no cookies (empty profile?)")
        return parsed

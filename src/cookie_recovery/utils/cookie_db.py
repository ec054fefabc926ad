# src/cookie_recovery/utils/cookie_db.py
import logging
import os
import shutil
import sqlite3
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from cookie_recovery.errors import DatabaseUnavailable, DecryptionFailed
from cookie_recovery.models import DEFAULT_SAME_SITE, DecryptedCookie, RawCookie
from cookie_recovery.utils.cipher import CookieCipher

logger = logging.getLogger(__name__)

# Microseconds between 1601-01-01 (Chrome/Windows epoch) and 1970-01-01
CHROME_EPOCH_OFFSET = 11644473600000000

SAME_SITE_VALUES = {
    -1: DEFAULT_SAME_SITE,  # unspecified
    0: "None",
    1: "Lax",
    2: "Strict",
}

COOKIE_COLUMNS = "host_key, name, value, encrypted_value, path, expires_utc, is_secure, is_httponly"


def chrome_time_to_unix(chrome_time: Optional[int]) -> int:
    if not chrome_time:
        return 0
    return (int(chrome_time) - CHROME_EPOCH_OFFSET) // 1000000


def same_site_from_db(value: Optional[int]) -> str:
    if value is None:
        return DEFAULT_SAME_SITE
    return SAME_SITE_VALUES.get(int(value), DEFAULT_SAME_SITE)


def _as_bytes(value) -> bytes:
    if value is None:
        return b""
    if isinstance(value, memoryview):
        return value.tobytes()
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


def _as_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, (bytes, memoryview)):
        return _as_bytes(value).decode("utf-8", errors="ignore")
    return str(value)


def _connect_read_only(db_path: str) -> sqlite3.Connection:
    readonly_base_uri = Path(db_path).resolve().as_uri()
    readonly_uri_attempts = [
        f"{readonly_base_uri}?mode=ro&immutable=1",
        f"{readonly_base_uri}?mode=ro",
    ]

    last_error = None
    for readonly_uri in readonly_uri_attempts:
        try:
            return sqlite3.connect(readonly_uri, uri=True)
        except sqlite3.OperationalError as sqlite_error:
            last_error = sqlite_error
            logger.warning(f"Read-only SQLite connection failed with URI {readonly_uri}: {sqlite_error}")

    raise last_error if last_error else sqlite3.OperationalError(
        "Unable to open Chromium cookies database in read-only mode"
    )


@contextmanager
def open_cookie_database(db_path: str) -> Iterator[sqlite3.Connection]:
    """Open a Chromium cookie database without touching the browser's copy.

    The file is copied to a temporary location first; when the browser holds
    it locked the original is opened read-only instead.
    """
    if not os.path.exists(db_path):
        raise FileNotFoundError(f"Chromium cookies database not found: {db_path}")

    temp_db_path = None
    connection = None
    try:
        try:
            temp_fd, temp_db_path = tempfile.mkstemp(suffix=".db")
            os.close(temp_fd)
            shutil.copy2(db_path, temp_db_path)
            connection = sqlite3.connect(temp_db_path)
        except OSError as copy_error:
            logger.warning(
                f"Chromium cookies database could not be copied ({copy_error}). Using read-only SQLite connection."
            )
            if temp_db_path and os.path.exists(temp_db_path):
                os.unlink(temp_db_path)
            temp_db_path = None
            connection = _connect_read_only(db_path)
        yield connection
    finally:
        if connection:
            connection.close()
        if temp_db_path:
            try:
                os.unlink(temp_db_path)
            except OSError:
                pass


def read_raw_cookies(db_path: str) -> List[RawCookie]:
    """Read every row of the ``cookies`` table as RawCookie (values still encrypted)."""
    try:
        with open_cookie_database(db_path) as connection:
            cursor = connection.cursor()
            try:
                cursor.execute(f"SELECT {COOKIE_COLUMNS}, samesite FROM cookies")
                has_same_site = True
            except sqlite3.OperationalError:
                # Databases written before SameSite support lack the column.
                cursor.execute(f"SELECT {COOKIE_COLUMNS} FROM cookies")
                has_same_site = False
            rows = cursor.fetchall()
    except (OSError, sqlite3.Error) as exc:
        raise DatabaseUnavailable(
            f"Failed to read Chromium cookies database {db_path}: {exc}",
            ["Close the browser so the database is not locked", "Check the profile name and browser"],
        ) from exc

    cookies = []
    for row in rows:
        host_key, name, value, encrypted_value, path, expires_utc, is_secure, is_httponly = row[:8]
        cookies.append(
            RawCookie(
                name=_as_text(name),
                domain=_as_text(host_key),
                path=_as_text(path) or "/",
                expires=chrome_time_to_unix(expires_utc),
                secure=bool(is_secure),
                http_only=bool(is_httponly),
                same_site=same_site_from_db(row[8]) if has_same_site else DEFAULT_SAME_SITE,
                value=_as_text(value),
                encrypted_value=_as_bytes(encrypted_value),
            )
        )
    logger.debug(f"Read {len(cookies)} cookie rows from {db_path}")
    return cookies


def decrypt_cookies(cookies: List[RawCookie], cipher: Optional[CookieCipher]) -> List[DecryptedCookie]:
    """Convert raw rows into DecryptedCookie, decrypting where needed.

    Rows that fail to decrypt are skipped; if every encrypted row failed the
    whole read fails. App-Bound and missing-platform errors always abort.
    """
    result = []
    failures = 0
    last_error = None
    for raw in cookies:
        if not raw.needs_decryption:
            result.append(DecryptedCookie.from_raw(raw))
            continue
        if cipher is None:
            raise DecryptionFailed(f"Cookie {raw.name!r} is encrypted but no cipher is available")
        try:
            value = cipher.decrypt(raw.encrypted_value)
        except DecryptionFailed as exc:
            failures += 1
            last_error = exc
            logger.warning(f"Failed to decrypt cookie {raw.name} for {raw.domain}: {exc.message}")
            continue
        result.append(DecryptedCookie.from_raw(raw, value=value))

    if failures and not result:
        raise DecryptionFailed(
            f"None of {failures} encrypted cookies could be decrypted: {last_error.message}",
            last_error.remediation,
        ) from last_error
    return result

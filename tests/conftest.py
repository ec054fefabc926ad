import base64
import json
import sqlite3
import sys
from pathlib import Path

import pytest
from Crypto.Cipher import AES

# Add src/ to path so cookie_recovery is importable without installing
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from cookie_recovery.errors import DecryptionFailed  # noqa: E402
from cookie_recovery.utils.platforms import Platform  # noqa: E402
from cookie_recovery.utils.secret_unwrap import SecretUnwrapper  # noqa: E402

MASTER_KEY = bytes(range(32))
WRAPPED_KEY = b"wrapped-master-key"

COOKIES_SCHEMA = """
CREATE TABLE cookies (
    host_key TEXT NOT NULL,
    name TEXT NOT NULL,
    value TEXT NOT NULL,
    encrypted_value BLOB NOT NULL,
    path TEXT NOT NULL,
    expires_utc INTEGER NOT NULL,
    is_secure INTEGER NOT NULL,
    is_httponly INTEGER NOT NULL,
    samesite INTEGER NOT NULL DEFAULT -1
)
"""


class FakeUnwrapper(SecretUnwrapper):
    """Maps known ciphertexts to plaintexts and records every call."""

    name = "fake"

    def __init__(self, mapping=None):
        self.mapping = dict(mapping or {})
        self.calls = []

    def unwrap(self, ciphertext: bytes) -> bytes:
        self.calls.append(bytes(ciphertext))
        try:
            return self.mapping[bytes(ciphertext)]
        except KeyError:
            raise DecryptionFailed("fake unwrap failed") from None


class FakeWebSocket:
    """Replays queued messages for recv() and records what was sent."""

    def __init__(self, replies=None, on_send=None):
        self.replies = list(replies or [])
        self.sent = []
        self.closed = False
        self.on_send = on_send

    def send(self, payload):
        message = json.loads(payload)
        self.sent.append(message)
        if self.on_send:
            self.replies.extend(self.on_send(message))

    def recv(self):
        if not self.replies:
            return ""
        reply = self.replies.pop(0)
        return reply if isinstance(reply, str) else json.dumps(reply)

    def close(self):
        self.closed = True


class FakeResponse:
    def __init__(self, payload=None, status_code=200, text=None):
        self.payload = payload
        self.status_code = status_code
        self.text = text

    def json(self):
        if self.text is not None:
            return json.loads(self.text)
        return self.payload


class FakePlatform(Platform):
    system = "fake"

    def __init__(self, user_data_dir, unwrapper=None, executables=(), process_names=("chrome",)):
        self._user_data_dir = Path(user_data_dir)
        self._unwrapper = unwrapper or FakeUnwrapper()
        self._executables = list(executables)
        self._process_names = tuple(process_names)

    def user_data_dir(self, family):
        return self._user_data_dir

    def executable_candidates(self, family):
        return list(self._executables)

    def secret_unwrapper(self):
        return self._unwrapper

    def process_names(self, family):
        return self._process_names


class FakeProcess:
    """Stands in for a psutil.Process yielded by process_iter(['name'])."""

    def __init__(self, pid, name, stubborn=False):
        self.pid = pid
        self.info = {"name": name}
        self.stubborn = stubborn
        self.terminated = False
        self.killed = False

    @property
    def alive(self):
        if self.killed:
            return False
        return not self.terminated or self.stubborn

    def terminate(self):
        self.terminated = True

    def kill(self):
        self.killed = True


class FakeProcessTable:
    def __init__(self, processes=()):
        self.processes = list(processes)

    def __call__(self, attrs=None):
        return [proc for proc in self.processes if proc.alive]


def encrypt_value(plaintext, key=MASTER_KEY, version=b"v10", nonce=b"\x07" * 12) -> bytes:
    cipher = AES.new(key, AES.MODE_GCM, nonce=nonce)
    ciphertext, tag = cipher.encrypt_and_digest(plaintext.encode("utf-8"))
    return version + nonce + ciphertext + tag


def write_local_state(path: Path, os_crypt=None, profiles=None) -> Path:
    data = {}
    if os_crypt is not None:
        data["os_crypt"] = os_crypt
    if profiles is not None:
        data["profile"] = {"info_cache": profiles}
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def create_cookie_db(path: Path, rows=(), with_same_site=True) -> Path:
    """Rows are dicts with host_key/name and optional value/encrypted_value/etc."""
    path.parent.mkdir(parents=True, exist_ok=True)
    schema = COOKIES_SCHEMA
    if not with_same_site:
        schema = schema.replace(",\n    samesite INTEGER NOT NULL DEFAULT -1", "")
    connection = sqlite3.connect(str(path))
    try:
        connection.execute(schema)
        for row in rows:
            values = [
                row["host_key"],
                row["name"],
                row.get("value", ""),
                row.get("encrypted_value", b""),
                row.get("path", "/"),
                row.get("expires_utc", 0),
                int(row.get("secure", False)),
                int(row.get("http_only", False)),
            ]
            if with_same_site:
                values.append(row.get("samesite", -1))
            placeholders = ",".join("?" for _ in values)
            connection.execute(f"INSERT INTO cookies VALUES ({placeholders})", values)
        connection.commit()
    finally:
        connection.close()
    return path


@pytest.fixture
def master_key():
    return MASTER_KEY


@pytest.fixture
def encrypt():
    """Factory producing v10/v11 AES-256-GCM cookie values."""
    return encrypt_value


@pytest.fixture
def fake_unwrapper():
    return FakeUnwrapper({WRAPPED_KEY: MASTER_KEY})


@pytest.fixture
def local_state_dict():
    return {"os_crypt": {"encrypted_key": base64.b64encode(b"DPAPI" + WRAPPED_KEY).decode("ascii")}}


@pytest.fixture
def profile_tree(tmp_path, local_state_dict):
    """A browser 'User Data' directory with Local State and Default/Network/Cookies.

    Returns (user_data_dir, cookies_db_path); the database is not created.
    """
    user_data = tmp_path / "User Data"
    user_data.mkdir()
    write_local_state(user_data / "Local State", os_crypt=local_state_dict["os_crypt"])
    (user_data / "Default" / "Network").mkdir(parents=True)
    return user_data, user_data / "Default" / "Network" / "Cookies"


@pytest.fixture
def make_cookie_db():
    return create_cookie_db


@pytest.fixture
def make_local_state():
    return write_local_state


@pytest.fixture
def fake_platform_factory():
    return FakePlatform


@pytest.fixture
def fake_ws_factory():
    return FakeWebSocket


@pytest.fixture
def fake_response_factory():
    return FakeResponse


@pytest.fixture
def fake_process_factory():
    return FakeProcess


@pytest.fixture
def process_table_factory():
    return FakeProcessTable


@pytest.fixture
def no_sleep():
    """A sleep replacement that records requested delays."""
    delays = []

    def sleep(seconds):
        delays.append(seconds)

    sleep.delays = delays
    return sleep

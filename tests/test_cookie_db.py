import pytest

from cookie_recovery.errors import DatabaseUnavailable, DecryptionFailed, PlatformUnsupported, Unsupported
from cookie_recovery.models import RawCookie
from cookie_recovery.utils.cipher import CookieCipher
from cookie_recovery.utils.cookie_db import (
    CHROME_EPOCH_OFFSET,
    chrome_time_to_unix,
    decrypt_cookies,
    read_raw_cookies,
    same_site_from_db,
)
from cookie_recovery.utils.secret_unwrap import UnsupportedUnwrapper


def test_chrome_time_to_unix():
    assert chrome_time_to_unix(0) == 0
    assert chrome_time_to_unix(None) == 0
    assert chrome_time_to_unix(CHROME_EPOCH_OFFSET + 1_700_000_000 * 1_000_000) == 1_700_000_000


@pytest.mark.parametrize("value,expected", [(-1, "Lax"), (0, "None"), (1, "Lax"), (2, "Strict"), (7, "Lax"), (None, "Lax")])
def test_same_site_from_db(value, expected):
    assert same_site_from_db(value) == expected


def test_read_raw_cookies(tmp_path, make_cookie_db, encrypt):
    encrypted = encrypt("secret")
    db = make_cookie_db(
        tmp_path / "Cookies",
        rows=[
            {
                "host_key": ".example.com",
                "name": "sid",
                "encrypted_value": encrypted,
                "expires_utc": CHROME_EPOCH_OFFSET + 42_000_000,
                "secure": True,
                "http_only": True,
                "samesite": 2,
            },
            {"host_key": "example.com", "name": "plain", "value": "visible", "path": "/app"},
        ],
    )

    rows = {row.name: row for row in read_raw_cookies(str(db))}

    sid = rows["sid"]
    assert sid.domain == ".example.com"
    assert sid.encrypted_value == encrypted
    assert sid.expires == 42
    assert sid.secure and sid.http_only
    assert sid.same_site == "Strict"
    assert sid.needs_decryption
    assert rows["plain"].value == "visible"
    assert rows["plain"].path == "/app"
    assert not rows["plain"].needs_decryption


def test_read_raw_cookies_without_samesite_column(tmp_path, make_cookie_db):
    db = make_cookie_db(tmp_path / "Cookies", rows=[{"host_key": "a.com", "name": "x", "value": "1"}], with_same_site=False)
    [row] = read_raw_cookies(str(db))
    assert row.same_site == "Lax"


def test_read_raw_cookies_leaves_database_untouched(tmp_path, make_cookie_db):
    db = make_cookie_db(tmp_path / "Cookies", rows=[{"host_key": "a.com", "name": "x", "value": "1"}])
    before = db.read_bytes()
    read_raw_cookies(str(db))
    assert db.read_bytes() == before


def test_read_raw_cookies_missing_file(tmp_path):
    with pytest.raises(DatabaseUnavailable):
        read_raw_cookies(str(tmp_path / "missing"))


def test_read_raw_cookies_not_a_database(tmp_path):
    path = tmp_path / "Cookies"
    path.write_bytes(b"this is not sqlite" * 100)
    with pytest.raises(DatabaseUnavailable):
        read_raw_cookies(str(path))


def test_decrypt_cookies_mixed_rows(master_key, fake_unwrapper, encrypt):
    cipher = CookieCipher(master_key, fake_unwrapper)
    rows = [
        RawCookie(name="enc", domain=".a.com", encrypted_value=encrypt("hidden")),
        RawCookie(name="plain", domain=".a.com", value="shown"),
    ]
    result = decrypt_cookies(rows, cipher)
    assert [(cookie.name, cookie.value) for cookie in result] == [("enc", "hidden"), ("plain", "shown")]


def test_decrypt_cookies_skips_failed_rows(master_key, fake_unwrapper, encrypt):
    cipher = CookieCipher(master_key, fake_unwrapper)
    rows = [
        RawCookie(name="good", domain=".a.com", encrypted_value=encrypt("ok")),
        RawCookie(name="short", domain=".a.com", encrypted_value=b"v10short"),
    ]
    assert [cookie.name for cookie in decrypt_cookies(rows, cipher)] == ["good"]


def test_decrypt_cookies_all_failed(master_key, fake_unwrapper, encrypt):
    cipher = CookieCipher(master_key, fake_unwrapper)
    rows = [RawCookie(name="bad", domain=".a.com", encrypted_value=encrypt("x", key=b"\x01" * 32))]
    with pytest.raises(DecryptionFailed, match="None of 1"):
        decrypt_cookies(rows, cipher)


def test_decrypt_cookies_v20_aborts(master_key, fake_unwrapper):
    cipher = CookieCipher(master_key, fake_unwrapper)
    rows = [RawCookie(name="abe", domain=".a.com", encrypted_value=b"v20" + b"\x00" * 40)]
    with pytest.raises(Unsupported):
        decrypt_cookies(rows, cipher)


def test_decrypt_cookies_without_cipher():
    assert decrypt_cookies([RawCookie(name="p", domain="a.com", value="v")], None)[0].value == "v"
    with pytest.raises(DecryptionFailed):
        decrypt_cookies([RawCookie(name="e", domain="a.com", encrypted_value=b"\x01\x02")], None)


def test_decrypt_cookies_empty_input(master_key, fake_unwrapper):
    assert decrypt_cookies([], CookieCipher(master_key, fake_unwrapper)) == []


def test_platform_without_facility_aborts_on_legacy_key(local_state_dict):
    with pytest.raises(PlatformUnsupported):
        CookieCipher.extract_master_key(local_state_dict, UnsupportedUnwrapper("linux"))

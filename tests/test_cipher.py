import base64

import pytest
from Crypto.Cipher import AES

from cookie_recovery.errors import (
    DatabaseUnavailable,
    DecryptionFailed,
    PlatformUnsupported,
    TooShort,
    Unsupported,
)
from cookie_recovery.utils.cipher import CookieCipher
from cookie_recovery.utils.secret_unwrap import UnsupportedUnwrapper


@pytest.fixture
def cipher(master_key, fake_unwrapper):
    return CookieCipher(master_key, fake_unwrapper)


@pytest.mark.parametrize("version", [b"v10", b"v11"])
def test_round_trip(cipher, encrypt, version):
    value = encrypt("session=abc123; ünïcode", version=version)
    assert cipher.decrypt(value) == "session=abc123; ünïcode"


def test_round_trip_empty_plaintext(cipher, encrypt):
    # 3 + 12 + 0 + 16 bytes: exactly the AEAD minimum
    assert cipher.decrypt(encrypt("")) == ""


@pytest.mark.parametrize("length", [0, 1, 3, 10, 14])
def test_short_buffer_is_too_short(cipher, length):
    with pytest.raises(TooShort):
        cipher.decrypt((b"v10" + b"\x00" * 20)[:length])


def test_twenty_byte_aead_value_is_too_short(cipher):
    value = b"v10" + b"\x01" * 17
    assert len(value) == 20
    with pytest.raises(TooShort):
        cipher.decrypt(value)


@pytest.mark.parametrize("tail", [b"", b"\x00", b"\x00" * 11, b"\xff" * 200])
def test_v20_always_unsupported(cipher, tail):
    with pytest.raises(Unsupported) as exc_info:
        cipher.decrypt(b"v20" + tail)
    assert exc_info.value.remediation


def test_v20_unsupported_without_key(fake_unwrapper):
    with pytest.raises(Unsupported):
        CookieCipher(None, fake_unwrapper).decrypt(b"v20" + b"\x00" * 40)
    assert fake_unwrapper.calls == []


def test_wrong_key_fails_authentication(cipher, encrypt):
    value = encrypt("secret", key=b"\xaa" * 32)
    with pytest.raises(DecryptionFailed) as exc_info:
        cipher.decrypt(value)
    assert not isinstance(exc_info.value, TooShort)
    assert "different browser profile" in str(exc_info.value)


def test_tampered_tag_fails(cipher, encrypt):
    value = bytearray(encrypt("secret"))
    value[-1] ^= 0x01
    with pytest.raises(DecryptionFailed):
        cipher.decrypt(bytes(value))


def test_non_utf8_plaintext_fails(master_key, fake_unwrapper):
    nonce = b"\x02" * 12
    aes = AES.new(master_key, AES.MODE_GCM, nonce=nonce)
    ciphertext, tag = aes.encrypt_and_digest(b"\xff\xfe\xfd")
    with pytest.raises(DecryptionFailed, match="UTF-8"):
        CookieCipher(master_key, fake_unwrapper).decrypt(b"v10" + nonce + ciphertext + tag)


def test_unknown_prefix_falls_back_to_legacy_plaintext(cipher):
    assert cipher.decrypt(b"plain-old-cookie-value") == "plain-old-cookie-value"


def test_legacy_without_key_uses_plaintext(fake_unwrapper):
    assert CookieCipher(None, fake_unwrapper).decrypt(b"abc") == "abc"
    assert fake_unwrapper.calls == []


def test_legacy_unwraps_whole_buffer(fake_unwrapper):
    blob = b"\x01\x00\x00\x00\xd0\x8c\x9d\xdf\x01\x15\xd1\x11"
    fake_unwrapper.mapping[blob] = b"legacy-value"
    assert CookieCipher(None, fake_unwrapper).decrypt(blob) == "legacy-value"
    assert fake_unwrapper.calls == [blob]


def test_legacy_rejects_control_characters_then_fails(fake_unwrapper):
    with pytest.raises(DecryptionFailed):
        CookieCipher(None, fake_unwrapper).decrypt(b"bad\x01value")


def test_legacy_on_platform_without_facility_is_decryption_failed():
    with pytest.raises(DecryptionFailed):
        CookieCipher(None, UnsupportedUnwrapper("linux")).decrypt(b"\x01\x02\x03")


def test_master_key_length_checked(fake_unwrapper):
    with pytest.raises(DecryptionFailed):
        CookieCipher(b"short", fake_unwrapper)


def test_extract_master_key(local_state_dict, fake_unwrapper, master_key):
    assert CookieCipher.extract_master_key(local_state_dict, fake_unwrapper) == master_key
    assert len(fake_unwrapper.calls) == 1
    assert not fake_unwrapper.calls[0].startswith(b"DPAPI")


def test_app_bound_marker_refused_before_unwrap(local_state_dict, fake_unwrapper):
    local_state_dict["os_crypt"]["app_bound_encrypted_key"] = "QVBQQg=="
    with pytest.raises(Unsupported):
        CookieCipher.extract_master_key(local_state_dict, fake_unwrapper)
    assert fake_unwrapper.calls == []


@pytest.mark.parametrize("local_state", [{}, {"os_crypt": {}}, {"os_crypt": "nope"}])
def test_missing_key_means_legacy_mode(local_state, fake_unwrapper):
    assert CookieCipher.extract_master_key(local_state, fake_unwrapper) is None


def test_key_without_dpapi_prefix(fake_unwrapper):
    local_state = {"os_crypt": {"encrypted_key": base64.b64encode(b"XXXXXkey").decode()}}
    with pytest.raises(DecryptionFailed, match="prefix"):
        CookieCipher.extract_master_key(local_state, fake_unwrapper)


def test_invalid_base64_key(fake_unwrapper):
    with pytest.raises(DecryptionFailed, match="Base64"):
        CookieCipher.extract_master_key({"os_crypt": {"encrypted_key": "!!not base64!!"}}, fake_unwrapper)


def test_unwrap_failure_fails_closed(local_state_dict, fake_unwrapper):
    with pytest.raises(DecryptionFailed):
        CookieCipher.extract_master_key(local_state_dict, type(fake_unwrapper)())


def test_unwrap_on_unsupported_platform(local_state_dict):
    with pytest.raises(PlatformUnsupported):
        CookieCipher.extract_master_key(local_state_dict, UnsupportedUnwrapper("linux"))


def test_from_local_state(profile_tree, fake_unwrapper, encrypt):
    user_data, _ = profile_tree
    cipher = CookieCipher.from_local_state(str(user_data / "Local State"), fake_unwrapper)
    assert cipher.has_key
    assert cipher.decrypt(encrypt("hello")) == "hello"
    assert "has_key=True" in repr(cipher)


def test_from_local_state_missing_file(tmp_path, fake_unwrapper):
    with pytest.raises(DatabaseUnavailable):
        CookieCipher.from_local_state(str(tmp_path / "Local State"), fake_unwrapper)


def test_from_local_state_invalid_json(tmp_path, fake_unwrapper):
    path = tmp_path / "Local State"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(DatabaseUnavailable):
        CookieCipher.from_local_state(str(path), fake_unwrapper)


def test_app_bound_profile_never_touches_unwrap(tmp_path, fake_unwrapper, make_local_state):
    path = make_local_state(
        tmp_path / "Local State",
        os_crypt={"encrypted_key": "RFBBUEk=", "app_bound_encrypted_key": "QVBQQg=="},
    )
    with pytest.raises(Unsupported):
        CookieCipher.from_local_state(str(path), fake_unwrapper)
    assert fake_unwrapper.calls == []

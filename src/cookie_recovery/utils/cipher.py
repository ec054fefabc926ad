# src/cookie_recovery/utils/cipher.py
import base64
import binascii
import json
import logging
import os
from typing import Optional

from Crypto.Cipher import AES

from cookie_recovery.errors import (
    APP_BOUND_REMEDIATION,
    DatabaseUnavailable,
    DecryptionFailed,
    PlatformUnsupported,
    TooShort,
    Unsupported,
)
from cookie_recovery.utils.secret_unwrap import SecretUnwrapper

logger = logging.getLogger(__name__)

# Version tags prefixed to encrypted cookie values
ENCRYPTION_PREFIX_V10 = b"v10"
ENCRYPTION_PREFIX_V11 = b"v11"
ENCRYPTION_PREFIX_V20 = b"v20"  # App-Bound Encryption
AEAD_PREFIXES = (ENCRYPTION_PREFIX_V10, ENCRYPTION_PREFIX_V11)

DPAPI_PREFIX = b"DPAPI"
VERSION_PREFIX_LEN = 3
NONCE_LEN = 12
TAG_LEN = 16
MASTER_KEY_LEN = 32
# prefix + nonce, checked before the version is inspected
MIN_VALUE_LEN = VERSION_PREFIX_LEN + NONCE_LEN
MIN_AEAD_PAYLOAD_LEN = NONCE_LEN + TAG_LEN

APP_BOUND_KEY_FIELD = "app_bound_encrypted_key"
ENCRYPTED_KEY_FIELD = "encrypted_key"

ALLOWED_CONTROL_CHARS = {"\n", "\t"}


def _is_clean_text(text: str) -> bool:
    for char in text:
        if char in ALLOWED_CONTROL_CHARS:
            continue
        code = ord(char)
        if code < 0x20 or 0x7F <= code <= 0x9F:
            return False
    return True


class CookieCipher:
    """Decrypts Chromium cookie values for one extraction attempt.

    The master key is unwrapped once from the profile's ``Local State`` and
    lives only as long as this object. Without a key (very old browsers)
    every value goes through the legacy path: plaintext, then a direct
    secret unwrap of the whole value.

    Value layout for the AES-256-GCM versions::

        b"v10" | b"v11"  + 12-byte nonce + ciphertext + 16-byte tag
    """

    def __init__(self, master_key: Optional[bytes], unwrapper: SecretUnwrapper):
        if master_key is not None and len(master_key) != MASTER_KEY_LEN:
            raise DecryptionFailed(
                f"Master key has {len(master_key)} bytes, expected {MASTER_KEY_LEN}"
            )
        self._master_key = master_key
        self._unwrapper = unwrapper

    def __repr__(self) -> str:
        return f"CookieCipher(has_key={self.has_key}, unwrapper={self._unwrapper.name!r})"

    @property
    def has_key(self) -> bool:
        return self._master_key is not None

    @classmethod
    def from_local_state(cls, local_state_path: str, unwrapper: SecretUnwrapper) -> "CookieCipher":
        """Build a cipher from a profile's ``Local State`` file.

        Raises ``Unsupported`` before any unwrap is attempted when the
        profile uses App-Bound Encryption.
        """
        if not os.path.exists(local_state_path):
            raise DatabaseUnavailable(
                f"Local State file not found: {local_state_path}",
                [
                    "Check that the browser is installed and has been run at least once",
                    "Check that the profile belongs to the current user",
                ],
            )
        try:
            with open(local_state_path, "r", encoding="utf-8") as f:
                local_state = json.load(f)
        except (OSError, ValueError) as exc:
            raise DatabaseUnavailable(f"Failed to read Local State {local_state_path}: {exc}") from exc

        master_key = cls.extract_master_key(local_state, unwrapper)
        return cls(master_key, unwrapper)

    @staticmethod
    def extract_master_key(local_state: dict, unwrapper: SecretUnwrapper) -> Optional[bytes]:
        os_crypt = local_state.get("os_crypt") if isinstance(local_state, dict) else None
        if not isinstance(os_crypt, dict):
            logger.info("No os_crypt section in Local State; using legacy cookie decoding")
            return None

        if APP_BOUND_KEY_FIELD in os_crypt:
            logger.warning("App-Bound Encryption detected in Local State; direct decryption refused")
            raise Unsupported(
                "App-Bound Encryption (Chrome 127+) is not supported: "
                "decrypting it requires SYSTEM-level privileges",
                APP_BOUND_REMEDIATION,
            )

        encoded_key = os_crypt.get(ENCRYPTED_KEY_FIELD)
        if not encoded_key:
            logger.info("os_crypt.encrypted_key not found in Local State; using legacy cookie decoding")
            return None

        try:
            encrypted_key = base64.b64decode(encoded_key, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise DecryptionFailed(f"Failed to decode encrypted_key from Base64: {exc}") from exc

        if not encrypted_key.startswith(DPAPI_PREFIX):
            raise DecryptionFailed(
                f"encrypted_key does not have the {DPAPI_PREFIX!r} prefix "
                f"(found {encrypted_key[:len(DPAPI_PREFIX)]!r})"
            )

        master_key = unwrapper.unwrap(encrypted_key[len(DPAPI_PREFIX):])
        if len(master_key) != MASTER_KEY_LEN:
            raise DecryptionFailed(
                f"Unwrapped master key has {len(master_key)} bytes, expected {MASTER_KEY_LEN}"
            )
        logger.debug(f"Master key unwrapped with {unwrapper.name}")
        return master_key

    def decrypt(self, value: bytes) -> str:
        """Decrypt one ``encrypted_value`` into its text value."""
        value = bytes(value)
        # v20 is refused whatever follows the tag, with or without a key.
        if value[:VERSION_PREFIX_LEN] == ENCRYPTION_PREFIX_V20:
            raise Unsupported(
                "v20 (App-Bound Encryption) cookie values are not supported",
                APP_BOUND_REMEDIATION,
            )

        if self._master_key is None:
            return self._decrypt_legacy(value)

        if len(value) < MIN_VALUE_LEN:
            raise TooShort(
                f"Encrypted value too short: {len(value)} bytes (minimum {MIN_VALUE_LEN} expected)"
            )

        version, payload = value[:VERSION_PREFIX_LEN], value[VERSION_PREFIX_LEN:]
        if version in AEAD_PREFIXES:
            return self._decrypt_aes_gcm(payload)

        # Unknown prefix: the whole buffer may be a pre-v10 value.
        return self._decrypt_legacy(value)

    def _decrypt_aes_gcm(self, payload: bytes) -> str:
        if len(payload) < MIN_AEAD_PAYLOAD_LEN:
            raise TooShort(
                f"Encrypted data too short for AES-GCM: {len(payload)} bytes "
                f"(minimum {MIN_AEAD_PAYLOAD_LEN})"
            )

        nonce = payload[:NONCE_LEN]
        ciphertext, tag = payload[NONCE_LEN:-TAG_LEN], payload[-TAG_LEN:]

        cipher = AES.new(self._master_key, AES.MODE_GCM, nonce=nonce)
        try:
            plaintext = cipher.decrypt_and_verify(ciphertext, tag)
        except ValueError as exc:
            raise DecryptionFailed(
                f"AES-GCM decryption failed ({exc})",
                [
                    "The cookie may have been encrypted by a different browser profile",
                    "The cookie database may be corrupted",
                ],
            ) from exc

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionFailed("Decrypted cookie value is not valid UTF-8") from exc

    def _decrypt_legacy(self, value: bytes) -> str:
        try:
            text = value.decode("utf-8")
        except UnicodeDecodeError:
            text = None
        if text is not None and _is_clean_text(text):
            return text

        # Pre-v80 Chromium stored values wrapped directly by the OS.
        try:
            unwrapped = self._unwrapper.unwrap(value)
            return unwrapped.decode("utf-8")
        except (DecryptionFailed, PlatformUnsupported, UnicodeDecodeError) as exc:
            logger.debug(f"Legacy unwrap failed: {exc}")

        raise DecryptionFailed(
            "Could not decrypt cookie value: not plaintext, not v10/v11 encrypted, "
            "and direct secret unwrap failed"
        )

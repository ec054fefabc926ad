# src/cookie_recovery/utils/secret_unwrap.py
import logging
import platform

from cookie_recovery.errors import (
    DPAPI_REMEDIATION,
    NO_SECRET_FACILITY_REMEDIATION,
    DecryptionFailed,
    PlatformUnsupported,
)

if platform.system().lower() == "windows":
    try:
        import win32crypt
        HAS_DPAPI = True
    except ImportError:
        HAS_DPAPI = False
        logging.warning("Windows crypto libraries not available. Install with: pip install pywin32")
else:
    HAS_DPAPI = False

logger = logging.getLogger(__name__)

# CryptUnprotectData flag: never show a UI prompt.
CRYPTPROTECT_UI_FORBIDDEN = 0x01


class SecretUnwrapper:
    """Per-user OS secret protection: ciphertext bytes in, plaintext bytes out.

    Implementations are stateless and never retry; a failure here means the
    wrong user, a corrupted profile or a missing OS facility.
    """

    name = "none"

    def unwrap(self, ciphertext: bytes) -> bytes:
        raise NotImplementedError


class DpapiUnwrapper(SecretUnwrapper):
    """Windows DPAPI through pywin32's CryptUnprotectData."""

    name = "dpapi"

    def unwrap(self, ciphertext: bytes) -> bytes:
        if not HAS_DPAPI:
            raise PlatformUnsupported(
                "DPAPI is unavailable: pywin32 is not installed",
                ["Install pywin32: pip install pywin32"],
            )
        try:
            _description, plaintext = win32crypt.CryptUnprotectData(
                ciphertext, None, None, None, CRYPTPROTECT_UI_FORBIDDEN
            )
        except Exception as exc:
            # pywintypes.error carries the Win32 error code and message.
            raise DecryptionFailed(
                f"DPAPI decryption failed: {exc}. The data may belong to a different "
                "Windows user or the user profile may be corrupted",
                DPAPI_REMEDIATION,
            ) from exc
        return bytes(plaintext)


class UnsupportedUnwrapper(SecretUnwrapper):
    name = "unsupported"

    def __init__(self, system: str = ""):
        self.system = system or platform.system()

    def unwrap(self, ciphertext: bytes) -> bytes:
        raise PlatformUnsupported(
            f"Chromium master-key decryption is not supported on {self.system}: "
            "DPAPI is only available on Windows",
            NO_SECRET_FACILITY_REMEDIATION,
        )

"""
Device-bound encryption for the credential file.

The key is SHA-256 over the machine's hardware UUID plus a versioned salt,
so the same file only decrypts on the machine that wrote it. Blobs are
AES-256-GCM: 12-byte nonce followed by ciphertext and 16-byte tag.

If the hardware UUID cannot be read the key falls back to a constant
identifier. That is a reduced-security mode (the file is then readable
on any machine) and is logged as a warning each time a key is derived.
"""

import hashlib
import logging
import os
import re
import subprocess
import sys

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import CryptoError

log = logging.getLogger(__name__)

KEY_SALT = "ClaudeUsageBar.v1"
FALLBACK_MACHINE_ID = "default"
NONCE_SIZE = 12
TAG_SIZE = 16

_LINUX_ID_FILES = ("/etc/machine-id", "/var/lib/dbus/machine-id")
_IOREG_UUID = re.compile(r'"IOPlatformUUID"\s*=\s*"([^"]+)"')
_REG_GUID = re.compile(r"MachineGuid\s+REG_SZ\s+(\S+)")


# ── machine identifier ────────────────────────────────────────────────────────

def _parse_ioreg(output: str) -> str | None:
    m = _IOREG_UUID.search(output)
    return m.group(1) if m else None


def _parse_reg_query(output: str) -> str | None:
    m = _REG_GUID.search(output)
    return m.group(1) if m else None


def _run(cmd: list[str]) -> str:
    r = subprocess.run(cmd, capture_output=True, text=True, timeout=10)
    return r.stdout if r.returncode == 0 else ""


def machine_identifier() -> str | None:
    """Hardware-bound machine UUID, or None if it cannot be read."""
    try:
        if sys.platform == "darwin":
            return _parse_ioreg(_run(["ioreg", "-rd1", "-c", "IOPlatformExpertDevice"]))
        if sys.platform == "win32":
            return _parse_reg_query(_run([
                "reg", "query", r"HKLM\SOFTWARE\Microsoft\Cryptography",
                "/v", "MachineGuid",
            ]))
        for path in _LINUX_ID_FILES:
            if os.path.exists(path):
                with open(path) as f:
                    ident = f.read().strip()
                if ident:
                    return ident
    except (OSError, subprocess.SubprocessError) as e:
        log.debug("machine identifier lookup failed: %s", e)
    return None


# ── codec ─────────────────────────────────────────────────────────────────────

class SecretCodec:
    def __init__(self, machine_id: str | None = None):
        self._machine_id = machine_id
        self._key: bytes | None = None
        self.reduced_security = False

    def derive_key(self) -> bytes:
        ident = self._machine_id or machine_identifier()
        if not ident:
            log.warning(
                "Hardware UUID unavailable; credential key falls back to a "
                "constant (reduced security: file is not device-bound)"
            )
            self.reduced_security = True
            ident = FALLBACK_MACHINE_ID
        else:
            self.reduced_security = False
        return hashlib.sha256(f"{ident}.{KEY_SALT}".encode()).digest()

    @property
    def key(self) -> bytes:
        if self._key is None:
            self._key = self.derive_key()
        return self._key

    def encrypt(self, plaintext: bytes) -> bytes:
        nonce = os.urandom(NONCE_SIZE)
        try:
            return nonce + AESGCM(self.key).encrypt(nonce, plaintext, None)
        except (ValueError, TypeError, OverflowError) as e:
            raise CryptoError(f"encryption failed: {e}") from e

    def decrypt(self, blob: bytes) -> bytes:
        if len(blob) < NONCE_SIZE + TAG_SIZE:
            raise CryptoError("blob too short")
        nonce, sealed = blob[:NONCE_SIZE], blob[NONCE_SIZE:]
        try:
            return AESGCM(self.key).decrypt(nonce, sealed, None)
        except InvalidTag as e:
            raise CryptoError("authentication tag mismatch (tampered or foreign key)") from e

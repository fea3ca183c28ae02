"""
Snapshot encryption.

    key     = PBKDF2-HMAC-SHA256(passphrase, salt, iterations) → 32 bytes
    payload = base64(nonce[12] ‖ ciphertext ‖ tag[16])   (AES-256-GCM)

The passphrase and key never leave the process. The salt is derived from the
account name so the same passphrase yields the same key on every device.
"""
import base64
import binascii
import hashlib
import logging
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import Tampered

logger = logging.getLogger(__name__)

NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32
DEFAULT_KDF_ITERATIONS = 390_000


def account_salt(account: str) -> bytes:
    """Stable per-account salt."""
    return hashlib.sha256(f"taskboard:{account.strip().casefold()}".encode("utf-8")).digest()[:16]


def derive_key(passphrase: str, salt: bytes, iterations: int = DEFAULT_KDF_ITERATIONS) -> bytes:
    if not passphrase:
        raise ValueError("passphrase must not be empty")
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=KEY_SIZE, salt=salt, iterations=iterations)
    return kdf.derive(passphrase.encode("utf-8"))


@dataclass(frozen=True)
class EncryptedSnapshot:
    """Nonce, ciphertext and authentication tag of one serialized board."""
    nonce: bytes
    ciphertext: bytes
    tag: bytes

    def to_payload(self) -> str:
        return base64.b64encode(self.nonce + self.ciphertext + self.tag).decode("ascii")

    @classmethod
    def from_payload(cls, payload: str) -> "EncryptedSnapshot":
        """Split a remote payload; anything malformed counts as tampering."""
        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError, TypeError) as e:
            raise Tampered(f"payload is not valid base64: {e}")
        if len(raw) < NONCE_SIZE + TAG_SIZE:
            raise Tampered(f"payload too short ({len(raw)} bytes)")
        return cls(
            nonce=raw[:NONCE_SIZE],
            ciphertext=raw[NONCE_SIZE:-TAG_SIZE],
            tag=raw[-TAG_SIZE:],
        )


class SnapshotCipher:
    """AES-GCM over serialized board documents under one session key."""

    def __init__(self, key: bytes):
        if len(key) != KEY_SIZE:
            raise ValueError(f"key must be {KEY_SIZE} bytes, got {len(key)}")
        self._aead = AESGCM(key)

    @classmethod
    def from_passphrase(
        cls, passphrase: str, account: str, iterations: int = DEFAULT_KDF_ITERATIONS
    ) -> "SnapshotCipher":
        return cls(derive_key(passphrase, account_salt(account), iterations))

    def encrypt(self, plaintext: bytes) -> EncryptedSnapshot:
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext, None)
        return EncryptedSnapshot(nonce=nonce, ciphertext=sealed[:-TAG_SIZE], tag=sealed[-TAG_SIZE:])

    def decrypt(self, snapshot: EncryptedSnapshot) -> bytes:
        """Return the plaintext or raise Tampered; never returns unauthenticated data."""
        try:
            return self._aead.decrypt(snapshot.nonce, snapshot.ciphertext + snapshot.tag, None)
        except InvalidTag:
            logger.warning("Snapshot failed authentication (wrong key or tampered payload)")
            raise Tampered("snapshot failed authentication")
        except ValueError as e:
            raise Tampered(f"snapshot could not be decrypted: {e}")

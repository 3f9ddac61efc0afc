"""AES-256-GCM encryption for third-party credentials at rest.

Each value gets its own random salt and IV. The per-value key is derived
from the master key with PBKDF2-HMAC-SHA512 (10 000 iterations).

Storage format is a JSON string with base64 members:
    {"encrypted": ..., "iv": ..., "tag": ..., "salt": ...}
"""

import base64
import binascii
import json
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from shared.exceptions import EncryptionError

IV_LENGTH = 12
SALT_LENGTH = 32
TAG_LENGTH = 16
KDF_ITERATIONS = 10_000


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _unb64(value: str) -> bytes:
    return base64.b64decode(value, validate=True)


class Cipher:
    """Encrypts and decrypts storage strings with one master key."""

    def __init__(self, master_key_hex: str):
        if not master_key_hex:
            raise EncryptionError("Encryption key is not configured (SH_ENCRYPTION_KEY)")
        if len(master_key_hex) != 64:
            raise EncryptionError("Encryption key must be 64 hex characters (32 bytes)")
        try:
            self._master_key = bytes.fromhex(master_key_hex)
        except ValueError as exc:
            raise EncryptionError("Encryption key must be hex encoded") from exc

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA512(),
            length=32,
            salt=salt,
            iterations=KDF_ITERATIONS,
        )
        return kdf.derive(self._master_key)

    def encrypt(self, plaintext: str) -> str:
        if not plaintext:
            raise EncryptionError("Cannot encrypt empty data")

        salt = os.urandom(SALT_LENGTH)
        iv = os.urandom(IV_LENGTH)
        sealed = AESGCM(self._derive_key(salt)).encrypt(iv, plaintext.encode("utf-8"), None)
        # AESGCM appends the tag to the ciphertext; stored separately.
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

        return json.dumps(
            {
                "encrypted": _b64(ciphertext),
                "iv": _b64(iv),
                "tag": _b64(tag),
                "salt": _b64(salt),
            }
        )

    def decrypt(self, stored: str | None) -> str:
        if not stored:
            raise EncryptionError("Cannot decrypt empty encrypted data")

        try:
            payload = json.loads(stored)
            ciphertext = _unb64(payload["encrypted"])
            iv = _unb64(payload["iv"])
            tag = _unb64(payload["tag"])
            salt = _unb64(payload["salt"])
        except (ValueError, KeyError, TypeError, binascii.Error) as exc:
            raise EncryptionError("Invalid encrypted data format") from exc

        try:
            plaintext = AESGCM(self._derive_key(salt)).decrypt(iv, ciphertext + tag, None)
        except InvalidTag as exc:
            raise EncryptionError("Encrypted data failed authentication") from exc
        except ValueError as exc:
            raise EncryptionError("Invalid encrypted data format") from exc
        return plaintext.decode("utf-8")

# SubVault: Vault - Encryption Service
#
# Master passphrase → Encryption key (PBKDF2-SHA256)
# Vault blob sealing (AES-256-GCM)
# No knowledge of vault semantics: bytes in, bytes out.

import base64
import binascii
import os
from typing import Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.backends import default_backend

from .errors import AuthenticationFailed


class EncryptionService:
    """
    Derives keys and seals/unseals the vault blob.

    Flow:
    1. User enters master passphrase
    2. PBKDF2 derives 256-bit key from passphrase + 16-byte salt
    3. AES-256-GCM seals the vault JSON under a fresh 12-byte nonce
    4. Unseal verifies the GCM tag before returning any plaintext

    Any unseal failure (wrong key, tampered or truncated data) surfaces as
    AuthenticationFailed with no detail about which check failed.
    """

    # PBKDF2 parameters. Blobs written by earlier clients use exactly these,
    # so they cannot change without a migration.
    PBKDF2_ITERATIONS = 100_000
    KEY_LENGTH = 32  # 256 bits for AES-256
    SALT_LENGTH = 16  # 128-bit salt
    NONCE_LENGTH = 12  # 96-bit nonce for GCM (recommended)
    TAG_LENGTH = 16

    @staticmethod
    def derive_key(passphrase: str | bytes, salt: bytes) -> bytes:
        """
        Derive encryption key from master passphrase using PBKDF2.

        Deterministic for identical inputs and deliberately slow.

        Args:
            passphrase: User's master passphrase (str is UTF-8 encoded)
            salt: 16-byte random salt (stored with the blob)

        Returns:
            256-bit encryption key
        """
        if len(salt) != EncryptionService.SALT_LENGTH:
            raise ValueError(f"Salt must be {EncryptionService.SALT_LENGTH} bytes")
        if isinstance(passphrase, str):
            passphrase = passphrase.encode('utf-8')

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=EncryptionService.KEY_LENGTH,
            salt=salt,
            iterations=EncryptionService.PBKDF2_ITERATIONS,
            backend=default_backend()
        )

        return kdf.derive(passphrase)

    @staticmethod
    def generate_salt() -> bytes:
        """Generate cryptographically random salt."""
        return os.urandom(EncryptionService.SALT_LENGTH)

    @staticmethod
    def seal(plaintext: bytes, key: bytes) -> Tuple[bytes, bytes]:
        """
        Encrypt plaintext using AES-256-GCM.

        Args:
            plaintext: Serialized vault
            key: 256-bit encryption key (from derive_key)

        Returns:
            Tuple of (iv, ciphertext) where ciphertext carries the GCM tag
        """
        # Fresh nonce for every call (never reused under the same key)
        iv = os.urandom(EncryptionService.NONCE_LENGTH)
        ciphertext = AESGCM(bytes(key)).encrypt(iv, plaintext, None)
        return iv, ciphertext

    @staticmethod
    def unseal(ciphertext: bytes, key: bytes, iv: bytes) -> bytes:
        """
        Verify and decrypt ciphertext using AES-256-GCM.

        Raises:
            AuthenticationFailed: Wrong key, tampered or malformed payload
        """
        if (
            len(key) != EncryptionService.KEY_LENGTH
            or len(iv) != EncryptionService.NONCE_LENGTH
            or len(ciphertext) < EncryptionService.TAG_LENGTH
        ):
            raise AuthenticationFailed()

        try:
            return AESGCM(bytes(key)).decrypt(iv, ciphertext, None)
        except (InvalidTag, ValueError) as e:
            raise AuthenticationFailed() from e

    @staticmethod
    def encode_for_storage(data: bytes) -> str:
        """Encode binary data for the blob JSON (standard base64)."""
        return base64.b64encode(data).decode('ascii')

    @staticmethod
    def decode_from_storage(data: str) -> bytes:
        """
        Decode base64-encoded data from the blob JSON.

        Raises:
            ValueError: If data is not valid base64
        """
        try:
            return base64.b64decode(data.encode('ascii'), validate=True)
        except (binascii.Error, UnicodeEncodeError) as e:
            raise ValueError(f"Invalid base64 data: {e}") from e

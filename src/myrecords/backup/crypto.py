"""
Symmetric encryption for backup payloads.

Backups are encrypted with AES-256-CBC (PKCS#7 padding) under one of two keys:

    - Device key: 256 random bits generated on first use and kept in the
      owner-only secret store. Lets this installation back up and restore
      silently, with no user interaction.
    - Password key: PBKDF2-HMAC-SHA256 over the password with a fresh 256-bit
      salt per backup. Lets anyone who knows the password restore on another
      installation; the salt travels inside the envelope.

The engine knows nothing about backups; it seals and opens opaque bytes.
"""

from __future__ import annotations

import base64
import binascii
import logging
import secrets
import threading

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from myrecords.backup.errors import (
    DecryptionError,
    PasswordRequiredError,
    WrongPasswordError,
)
from myrecords.backup.models import (
    DeviceKeySource,
    EncryptionEnvelope,
    KeySource,
    PasswordKeySource,
)
from myrecords.config.secret_store import SecretStore

logger = logging.getLogger(__name__)

# Security parameters
KEY_LENGTH = 32  # 256 bits
IV_LENGTH = 16  # 128 bits, the AES block size
SALT_LENGTH = 32  # 256 bits
PBKDF2_ITERATIONS = 100_000

DEVICE_KEY_STORAGE_KEY = "backup_device_key"


class CryptoEngine:
    """
    Key derivation plus AES-256-CBC encryption of byte payloads.

    Usage:
        crypto = CryptoEngine(SecretStore(settings.secrets_path))

        envelope = crypto.seal(b"payload")                 # device key
        envelope = crypto.seal(b"payload", password="pw")  # password key

        plaintext = crypto.open(envelope, password="pw")

    The device key is read from the secret store at most once per instance.
    """

    def __init__(self, secret_store: SecretStore) -> None:
        self._secret_store = secret_store
        self._device_key: bytes | None = None
        self._device_key_lock = threading.Lock()

    def derive_device_key(self) -> bytes:
        """
        Return this installation's device key, creating it on first use.

        Raises:
            SecretStoreError: If the secret store cannot be read or written.
        """
        with self._device_key_lock:
            if self._device_key is not None:
                return self._device_key

            stored = self._secret_store.read(DEVICE_KEY_STORAGE_KEY)
            if stored is not None:
                try:
                    key = base64.b64decode(stored, validate=True)
                except (ValueError, binascii.Error) as e:
                    raise DecryptionError("Stored device key is corrupt") from e
                if len(key) != KEY_LENGTH:
                    raise DecryptionError("Stored device key has the wrong length")
            else:
                key = secrets.token_bytes(KEY_LENGTH)
                self._secret_store.write(
                    DEVICE_KEY_STORAGE_KEY, base64.b64encode(key).decode("ascii")
                )
                logger.info("Generated new backup device key")

            self._device_key = key
            return key

    def derive_password_key(self, password: str, salt: bytes) -> bytes:
        """
        Derive a 256-bit key from a password and salt.

        Deterministic: the same (password, salt) pair always yields the same
        key.
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=PBKDF2_ITERATIONS,
        )
        return kdf.derive(password.encode("utf-8"))

    def encrypt(self, plaintext: bytes, key: bytes) -> tuple[bytes, bytes]:
        """
        Encrypt with AES-256-CBC under a fresh random IV.

        Returns:
            Tuple of (ciphertext, iv).
        """
        iv = secrets.token_bytes(IV_LENGTH)

        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext) + padder.finalize()

        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return ciphertext, iv

    def decrypt(self, ciphertext: bytes, key: bytes, iv: bytes) -> bytes:
        """
        Decrypt AES-256-CBC ciphertext.

        Raises:
            DecryptionError: If the IV or ciphertext is malformed or the
                padding is inconsistent (typically a wrong key).
        """
        try:
            decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()

            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError as e:
            raise DecryptionError(f"Decryption failed: {e}") from e

    def seal(self, plaintext: bytes, password: str | None = None) -> EncryptionEnvelope:
        """Encrypt a payload into a new envelope."""
        key_source: KeySource
        if password is not None:
            salt = secrets.token_bytes(SALT_LENGTH)
            key_source = PasswordKeySource(salt=salt)
            key = self.derive_password_key(password, salt)
        else:
            key_source = DeviceKeySource()
            key = self.derive_device_key()

        ciphertext, iv = self.encrypt(plaintext, key)
        return EncryptionEnvelope(ciphertext=ciphertext, iv=iv, key_source=key_source)

    def open(self, envelope: EncryptionEnvelope, password: str | None = None) -> bytes:
        """
        Decrypt an envelope, choosing the key from its key source.

        Raises:
            PasswordRequiredError: If the envelope is password-protected and
                no password was given.
            WrongPasswordError: If the password does not decrypt the envelope.
            DecryptionError: If the device key does not decrypt the envelope.
        """
        source = envelope.key_source
        if isinstance(source, PasswordKeySource):
            if password is None:
                raise PasswordRequiredError("Password required for decryption")
            key = self.derive_password_key(password, source.salt)
            try:
                return self.decrypt(envelope.ciphertext, key, envelope.iv)
            except DecryptionError as e:
                raise WrongPasswordError("Invalid password for this backup") from e

        return self.decrypt(envelope.ciphertext, self.derive_device_key(), envelope.iv)

"""
Tests for the backup crypto engine.

Tests cover:
- Device key creation, persistence and caching
- Password key derivation
- AES-256-CBC encrypt/decrypt
- Envelope sealing and opening for both key sources
- Envelope container parsing
"""

import base64
import shutil
import tempfile
import threading
import unittest
from pathlib import Path
from unittest.mock import patch

from myrecords.backup.crypto import (
    DEVICE_KEY_STORAGE_KEY,
    IV_LENGTH,
    KEY_LENGTH,
    SALT_LENGTH,
    CryptoEngine,
)
from myrecords.backup.errors import (
    DecryptionError,
    InvalidFormatError,
    PasswordRequiredError,
    WrongPasswordError,
)
from myrecords.backup.models import (
    DeviceKeySource,
    EncryptionEnvelope,
    PasswordKeySource,
    is_encrypted_container,
)
from myrecords.config.secret_store import SecretStore


class CryptoTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.mkdtemp()
        self.secrets_path = Path(self.temp_dir) / "secrets.json"
        self.secret_store = SecretStore(self.secrets_path)
        self.crypto = CryptoEngine(self.secret_store)

    def tearDown(self) -> None:
        shutil.rmtree(self.temp_dir, ignore_errors=True)


class TestDeviceKey(CryptoTestCase):
    """Tests for device key management."""

    def test_key_created_on_first_use(self) -> None:
        key = self.crypto.derive_device_key()

        self.assertEqual(len(key), KEY_LENGTH)
        stored = self.secret_store.read(DEVICE_KEY_STORAGE_KEY)
        self.assertEqual(base64.b64decode(stored), key)

    def test_key_stable_across_instances(self) -> None:
        """Test that a new engine on the same secret store sees the same key."""
        first = self.crypto.derive_device_key()
        second = CryptoEngine(SecretStore(self.secrets_path)).derive_device_key()

        self.assertEqual(first, second)

    def test_key_cached_after_first_read(self) -> None:
        self.crypto.derive_device_key()

        with patch.object(self.secret_store, "read") as mock_read:
            self.crypto.derive_device_key()
            mock_read.assert_not_called()

    def test_concurrent_first_use_creates_one_key(self) -> None:
        keys = []

        def derive() -> None:
            keys.append(self.crypto.derive_device_key())

        threads = [threading.Thread(target=derive) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(len(set(keys)), 1)

    def test_corrupt_stored_key(self) -> None:
        self.secret_store.write(DEVICE_KEY_STORAGE_KEY, "not base64!")

        with self.assertRaises(DecryptionError):
            self.crypto.derive_device_key()

    def test_wrong_length_stored_key(self) -> None:
        self.secret_store.write(
            DEVICE_KEY_STORAGE_KEY, base64.b64encode(b"short").decode("ascii")
        )

        with self.assertRaises(DecryptionError):
            self.crypto.derive_device_key()


class TestPasswordKey(CryptoTestCase):
    """Tests for password key derivation."""

    def test_deterministic(self) -> None:
        salt = b"\x01" * SALT_LENGTH

        first = self.crypto.derive_password_key("correct horse", salt)
        second = self.crypto.derive_password_key("correct horse", salt)

        self.assertEqual(first, second)
        self.assertEqual(len(first), KEY_LENGTH)

    def test_salt_and_password_matter(self) -> None:
        salt = b"\x01" * SALT_LENGTH
        key = self.crypto.derive_password_key("password", salt)

        self.assertNotEqual(key, self.crypto.derive_password_key("password", b"\x02" * SALT_LENGTH))
        self.assertNotEqual(key, self.crypto.derive_password_key("Password", salt))


class TestCipher(CryptoTestCase):
    """Tests for raw encryption and decryption."""

    def test_encrypt_decrypt(self) -> None:
        key = b"k" * KEY_LENGTH

        ciphertext, iv = self.crypto.encrypt(b"folders and records", key)

        self.assertEqual(len(iv), IV_LENGTH)
        self.assertEqual(len(ciphertext) % 16, 0)
        self.assertEqual(self.crypto.decrypt(ciphertext, key, iv), b"folders and records")

    def test_fresh_iv_each_time(self) -> None:
        key = b"k" * KEY_LENGTH

        first = self.crypto.encrypt(b"same", key)
        second = self.crypto.encrypt(b"same", key)

        self.assertNotEqual(first[1], second[1])
        self.assertNotEqual(first[0], second[0])

    def test_malformed_ciphertext(self) -> None:
        with self.assertRaises(DecryptionError):
            self.crypto.decrypt(b"not a block multiple", b"k" * KEY_LENGTH, b"i" * IV_LENGTH)

    def test_malformed_iv(self) -> None:
        with self.assertRaises(DecryptionError):
            self.crypto.decrypt(b"x" * 16, b"k" * KEY_LENGTH, b"short")


class TestEnvelope(CryptoTestCase):
    """Tests for sealing and opening envelopes."""

    def test_device_key_round_trip(self) -> None:
        envelope = self.crypto.seal(b'{"folders": []}')

        self.assertIsInstance(envelope.key_source, DeviceKeySource)
        self.assertFalse(envelope.is_password_protected)
        self.assertEqual(self.crypto.open(envelope), b'{"folders": []}')

    def test_password_round_trip(self) -> None:
        envelope = self.crypto.seal(b"secret payload", password="hunter2")

        self.assertIsInstance(envelope.key_source, PasswordKeySource)
        self.assertEqual(len(envelope.key_source.salt), SALT_LENGTH)
        self.assertEqual(self.crypto.open(envelope, password="hunter2"), b"secret payload")

    def test_password_envelope_opens_on_other_installation(self) -> None:
        """Test that only the password is needed, not the device key."""
        envelope = self.crypto.seal(b"portable", password="hunter2")

        other_store = SecretStore(Path(self.temp_dir) / "other" / "secrets.json")
        other = CryptoEngine(other_store)

        self.assertEqual(other.open(envelope, password="hunter2"), b"portable")

    def test_password_required(self) -> None:
        envelope = self.crypto.seal(b"payload", password="hunter2")

        with self.assertRaises(PasswordRequiredError):
            self.crypto.open(envelope)

    def test_wrong_password(self) -> None:
        envelope = self.crypto.seal(b"payload" * 10, password="hunter2")

        try:
            plaintext = self.crypto.open(envelope, password="wrong")
        except WrongPasswordError:
            return
        self.assertNotEqual(plaintext, b"payload" * 10)

    def test_wrong_password_padding_failure(self) -> None:
        """Test that a padding failure on the password path is reported as a wrong password."""
        envelope = self.crypto.seal(b"payload", password="hunter2")

        with patch.object(self.crypto, "decrypt", side_effect=DecryptionError("bad padding")):
            with self.assertRaises(WrongPasswordError):
                self.crypto.open(envelope, password="wrong")

    def test_other_device_key_fails(self) -> None:
        envelope = self.crypto.seal(b"x" * 64)
        other = CryptoEngine(SecretStore(Path(self.temp_dir) / "other" / "secrets.json"))

        # A foreign key almost always breaks the padding; if it does not, the
        # plaintext is still not the original.
        try:
            plaintext = other.open(envelope)
        except DecryptionError:
            return
        self.assertNotEqual(plaintext, b"x" * 64)


class TestEnvelopeContainer(unittest.TestCase):
    """Tests for the on-disk container form of envelopes."""

    def test_device_container(self) -> None:
        envelope = EncryptionEnvelope(ciphertext=b"c" * 32, iv=b"i" * 16, key_source=DeviceKeySource())

        container = envelope.to_container()

        self.assertIsNone(container["salt"])
        self.assertFalse(container["is_password_protected"])
        self.assertTrue(is_encrypted_container(container))
        self.assertEqual(EncryptionEnvelope.from_container(container), envelope)

    def test_password_container(self) -> None:
        envelope = EncryptionEnvelope(
            ciphertext=b"c" * 32,
            iv=b"i" * 16,
            key_source=PasswordKeySource(salt=b"s" * 32),
        )

        container = envelope.to_container()

        self.assertTrue(container["is_password_protected"])
        self.assertEqual(base64.b64decode(container["salt"]), b"s" * 32)
        self.assertEqual(EncryptionEnvelope.from_container(container), envelope)

    def test_protected_without_salt(self) -> None:
        container = {
            "encrypted_data": base64.b64encode(b"c" * 16).decode(),
            "iv": base64.b64encode(b"i" * 16).decode(),
            "salt": None,
            "is_password_protected": True,
        }

        with self.assertRaises(InvalidFormatError):
            EncryptionEnvelope.from_container(container)

    def test_bad_base64(self) -> None:
        container = {"encrypted_data": "%%%", "iv": "%%%", "is_password_protected": False}

        with self.assertRaises(InvalidFormatError):
            EncryptionEnvelope.from_container(container)

    def test_non_boolean_flag(self) -> None:
        container = {"encrypted_data": "", "iv": "", "is_password_protected": "yes"}

        with self.assertRaises(InvalidFormatError):
            EncryptionEnvelope.from_container(container)

    def test_plain_manifest_is_not_encrypted(self) -> None:
        self.assertFalse(is_encrypted_container({"folders": [], "records": []}))
        self.assertFalse(is_encrypted_container({"encrypted_data": "abc"}))


if __name__ == "__main__":
    unittest.main()

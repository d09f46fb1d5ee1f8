"""
Cryptographic operations for connection passwords.

Each password is sealed on its own: a fresh salt feeds PBKDF2-HMAC-SHA256 to
derive an AES-256 key, and a fresh nonce is used for AES-GCM. The result is
stored as ``enc:`` + base64(salt + nonce + ciphertext + tag), so saving the
same password twice never produces the same text.

LEGAL NOTICE:
This module handles encryption/decryption of credentials. It must only be used
to protect connection profiles on devices you own or administer.
"""

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from . import config
from .errors import DecryptError, EncryptionDisabledError


def is_encrypted(value: str) -> bool:
    """Prefix test only; a malformed envelope still counts as encrypted."""
    return bool(value) and value.startswith(config.ENCRYPTED_PREFIX)


def is_reference(value: str) -> bool:
    """True if *value* points into an external vault (op://...)."""
    return bool(value) and value.startswith(config.REFERENCE_SCHEME)


class CryptoProvider:
    """Encrypts and decrypts single password values under a master password."""

    # Constants
    SALT_SIZE = config.SALT_SIZE
    KEY_SIZE = config.KEY_SIZE
    NONCE_SIZE = config.NONCE_SIZE
    TAG_SIZE = config.TAG_SIZE
    PBKDF2_ITERATIONS = config.PBKDF2_ITERATIONS

    def __init__(self, master_password: str):
        """
        Initialize the provider.

        Args:
            master_password: The master password; an empty value disables
                encryption entirely.
        """
        self.backend = default_backend()
        self._master_password = master_password or ""

    @property
    def enabled(self) -> bool:
        return self._master_password != ""

    def __repr__(self) -> str:
        return f"CryptoProvider(enabled={self.enabled})"

    def generate_salt(self) -> bytes:
        """Generate a cryptographically secure random salt."""
        return os.urandom(self.SALT_SIZE)

    def derive_key(self, salt: bytes) -> bytes:
        """
        Derive the AES key for *salt* from the master password.

        Args:
            salt: Random salt stored with the envelope

        Returns:
            32-byte encryption key
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=self.KEY_SIZE,
            salt=salt,
            iterations=self.PBKDF2_ITERATIONS,
            backend=self.backend
        )
        return kdf.derive(self._master_password.encode('utf-8'))

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a password using AES-256-GCM.

        Args:
            plaintext: The password to protect

        Returns:
            The ``enc:`` envelope, or an empty string for an empty password

        Raises:
            EncryptionDisabledError: If no master password is set
        """
        self._require_enabled()
        if plaintext == "":
            return ""

        salt = self.generate_salt()
        key = self.derive_key(salt)
        nonce = os.urandom(self.NONCE_SIZE)
        cipher = Cipher(
            algorithms.AES(key),
            modes.GCM(nonce),
            backend=self.backend
        )
        encryptor = cipher.encryptor()
        ciphertext = encryptor.update(plaintext.encode('utf-8')) + encryptor.finalize()

        payload = salt + nonce + ciphertext + encryptor.tag
        return config.ENCRYPTED_PREFIX + base64.b64encode(payload).decode('ascii')

    def decrypt(self, envelope: str) -> str:
        """
        Decrypt an ``enc:`` envelope.

        Args:
            envelope: Value produced by :meth:`encrypt`

        Returns:
            The decrypted password

        Raises:
            EncryptionDisabledError: If no master password is set
            DecryptError: If the value is not an envelope, is truncated or
                corrupted, or the master password is wrong
        """
        self._require_enabled()
        if envelope == "":
            return ""
        if not is_encrypted(envelope):
            raise DecryptError("value is not encrypted")

        encoded = envelope[len(config.ENCRYPTED_PREFIX):]
        try:
            payload = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptError(f"failed to decode encrypted value: {e}") from e

        header = self.SALT_SIZE + self.NONCE_SIZE
        if len(payload) < header + self.TAG_SIZE:
            raise DecryptError("encrypted value too short")

        salt = payload[:self.SALT_SIZE]
        nonce = payload[self.SALT_SIZE:header]
        ciphertext = payload[header:-self.TAG_SIZE]
        tag = payload[-self.TAG_SIZE:]

        key = self.derive_key(salt)
        cipher = Cipher(
            algorithms.AES(key),
            modes.GCM(nonce, tag),
            backend=self.backend
        )
        decryptor = cipher.decryptor()
        try:
            plaintext = decryptor.update(ciphertext) + decryptor.finalize()
        except InvalidTag as e:
            raise DecryptError("failed to decrypt (wrong master password or corrupted data)") from e

        try:
            return plaintext.decode('utf-8')
        except UnicodeDecodeError as e:
            raise DecryptError("decrypted value is not valid text") from e

    def decrypt_if_needed(self, value: str) -> str:
        """Decrypt *value* if it is an envelope, otherwise return it unchanged."""
        if not is_encrypted(value):
            return value
        return self.decrypt(value)

    def is_encrypted(self, value: str) -> bool:
        return is_encrypted(value)

    def should_encrypt(self, value: str) -> bool:
        """
        Whether *value* needs sealing before it is written.

        Empty values, existing envelopes and vault references are never
        encrypted.
        """
        if not self.enabled or not value:
            return False
        return not is_encrypted(value) and not is_reference(value)

    def _require_enabled(self) -> None:
        if not self.enabled:
            raise EncryptionDisabledError("encryption is not enabled (no master password set)")

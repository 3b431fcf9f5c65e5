"""
Secret Encryption

DESIGN DECISION: The cipher is a capability handed to the storage layer
through its constructor. Nothing in this module reads global config;
`FernetCipher.from_settings` is a convenience for the app factory only.
"""

from abc import ABC, abstractmethod
from typing import Optional, Union

from cryptography.fernet import Fernet, InvalidToken

from keypool.config import EncryptionSettings


class CipherError(Exception):
    """Base exception for encryption errors."""
    pass


class DecryptionError(CipherError):
    """Ciphertext could not be decrypted with the configured key."""
    pass


class SecretCipher(ABC):
    """Symmetric encryption for provider secrets at rest."""

    @abstractmethod
    def encrypt(self, plaintext: str) -> str:
        """Encrypt a secret, returning an ASCII token."""
        pass

    @abstractmethod
    def decrypt(self, token: str) -> str:
        """
        Decrypt a token produced by encrypt.

        Raises:
            DecryptionError: If the token is malformed or the key is wrong
        """
        pass


class FernetCipher(SecretCipher):
    """Fernet (AES-128-CBC + HMAC-SHA256) implementation."""

    def __init__(self, key: Union[str, bytes]):
        if not key:
            raise CipherError(
                "Encryption key is not set. Generate one with: "
                "from cryptography.fernet import Fernet; Fernet.generate_key().decode()"
            )
        try:
            self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        except (ValueError, TypeError) as e:
            raise CipherError(f"Invalid Fernet key: {e}") from e

    @classmethod
    def from_settings(cls, settings: Optional[EncryptionSettings] = None) -> "FernetCipher":
        settings = settings or EncryptionSettings()
        return cls(settings.encryption_key)

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as e:
            raise DecryptionError("Failed to decrypt stored secret") from e

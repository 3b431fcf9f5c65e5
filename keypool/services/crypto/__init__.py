"""At-rest encryption for provider secrets."""

from keypool.services.crypto.fernet_cipher import (
    CipherError,
    DecryptionError,
    FernetCipher,
    SecretCipher,
)

__all__ = [
    "CipherError",
    "DecryptionError",
    "FernetCipher",
    "SecretCipher",
]

"""Fernet symmetric encryption for storing credentials."""

from cryptography.fernet import Fernet, InvalidToken

from spreadlab.errors import SpreadLabError


class SecretStoreError(SpreadLabError):
    """Encryption key missing or ciphertext not decryptable."""


class FernetSecretStore:
    def __init__(self, key: str | bytes):
        if not key:
            raise SecretStoreError(
                "SL_ENCRYPTION_KEY not set. Generate one with: "
                "python -c \"from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\""
            )
        self._fernet = Fernet(key.encode() if isinstance(key, str) else key)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string and return base64-encoded ciphertext."""
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a base64-encoded ciphertext and return plaintext."""
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken as e:
            raise SecretStoreError("Stored secret cannot be decrypted with the current key") from e

"""Encryption of cloud account credentials at rest."""

from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

from cloudsweep.core.config import settings
from cloudsweep.core.exceptions import CredentialsInvalidError


class CredentialEncryption:
    """Handles encryption and decryption of cloud credentials."""

    def __init__(self, key: str) -> None:
        """
        Initialize Fernet cipher.

        Args:
            key: URL-safe base64 Fernet key
        """
        self.cipher = Fernet(key.encode())

    def encrypt(self, data: bytes | str) -> bytes:
        """
        Encrypt sensitive data.

        Args:
            data: Plain credentials (bytes or text)

        Returns:
            Encrypted token as bytes
        """
        if isinstance(data, str):
            data = data.encode()
        return self.cipher.encrypt(data)

    def decrypt(self, encrypted_data: bytes) -> bytes:
        """
        Decrypt encrypted data.

        Args:
            encrypted_data: Fernet token

        Returns:
            Decrypted credentials as opaque bytes

        Raises:
            CredentialsInvalidError: If the token cannot be decrypted with the current key
        """
        try:
            return self.cipher.decrypt(encrypted_data)
        except InvalidToken as e:
            raise CredentialsInvalidError(
                "stored credentials cannot be decrypted with the configured ENCRYPTION_KEY"
            ) from e


@lru_cache(maxsize=1)
def get_credential_encryption() -> CredentialEncryption:
    """
    Return the process-wide encryption helper.

    Raises:
        RuntimeError: If ENCRYPTION_KEY is not configured
    """
    if not settings.ENCRYPTION_KEY:
        raise RuntimeError("ENCRYPTION_KEY is not set; cloud credentials cannot be decrypted")
    return CredentialEncryption(settings.ENCRYPTION_KEY)

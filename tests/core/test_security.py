"""Tests for credential encryption."""

from unittest.mock import patch

import pytest
from cryptography.fernet import Fernet

from cloudsweep.core.exceptions import CredentialsInvalidError
from cloudsweep.core.security import CredentialEncryption, get_credential_encryption


class TestCredentialEncryption:
    """Test Fernet encryption of cloud credentials."""

    def test_encrypt_decrypt(self):
        """Test that encrypted credentials decrypt to the original bytes."""
        encryption = CredentialEncryption(Fernet.generate_key().decode())
        secret = b'{"access_key_id": "AKIA", "secret_access_key": "s3cr3t"}'

        token = encryption.encrypt(secret)

        assert token != secret
        assert encryption.decrypt(token) == secret

    def test_encrypt_accepts_text(self):
        """Test that text input is encoded before encryption."""
        encryption = CredentialEncryption(Fernet.generate_key().decode())

        assert encryption.decrypt(encryption.encrypt("plain text")) == b"plain text"

    def test_decrypt_with_wrong_key(self):
        """Test that a token from another key is reported as invalid credentials."""
        token = CredentialEncryption(Fernet.generate_key().decode()).encrypt(b"secret")
        other = CredentialEncryption(Fernet.generate_key().decode())

        with pytest.raises(CredentialsInvalidError, match="ENCRYPTION_KEY"):
            other.decrypt(token)

    def test_get_credential_encryption_without_key(self):
        """Test that a missing ENCRYPTION_KEY is a configuration error."""
        get_credential_encryption.cache_clear()
        try:
            with patch("cloudsweep.core.security.settings.ENCRYPTION_KEY", ""):
                with pytest.raises(RuntimeError, match="ENCRYPTION_KEY is not set"):
                    get_credential_encryption()
        finally:
            get_credential_encryption.cache_clear()

    def test_get_credential_encryption_is_cached(self):
        """Test that the process-wide helper is built once."""
        assert get_credential_encryption() is get_credential_encryption()

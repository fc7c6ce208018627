"""
Encryption helpers
Used to store upstream bearer tokens encrypted at rest
"""
import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken


class CredentialCryptoError(Exception):
    """Raised when a token cannot be encrypted or decrypted"""


class TokenCrypto:
    """
    Token encryption/decryption with Fernet symmetric encryption
    """

    def __init__(self, key: Optional[str] = None):
        """
        Args:
            key: Fernet key, read from CREDENTIAL_ENCRYPTION_KEY when omitted
        """
        self._key = key or os.environ.get('CREDENTIAL_ENCRYPTION_KEY')
        self._fernet = None

        if self._key:
            self._fernet = Fernet(self._key.encode() if isinstance(self._key, str) else self._key)

    @property
    def is_configured(self) -> bool:
        """Whether an encryption key is available"""
        return self._fernet is not None

    def encrypt(self, plaintext: str) -> str:
        if not plaintext:
            return ''
        if not self._fernet:
            raise CredentialCryptoError('CREDENTIAL_ENCRYPTION_KEY is not configured')
        return self._fernet.encrypt(plaintext.encode('utf-8')).decode('utf-8')

    def decrypt(self, ciphertext: str) -> str:
        if not ciphertext:
            return ''
        if not self._fernet:
            raise CredentialCryptoError('CREDENTIAL_ENCRYPTION_KEY is not configured')
        try:
            return self._fernet.decrypt(ciphertext.encode('utf-8')).decode('utf-8')
        except InvalidToken as e:
            raise CredentialCryptoError('Stored token cannot be decrypted with the current key') from e

    @staticmethod
    def generate_key() -> str:
        """Generate a new Fernet key"""
        return Fernet.generate_key().decode('utf-8')


# Global instance
_crypto_instance: Optional[TokenCrypto] = None


def get_crypto() -> TokenCrypto:
    """Return the process-wide crypto helper"""
    global _crypto_instance
    if _crypto_instance is None:
        _crypto_instance = TokenCrypto()
    return _crypto_instance


def reset_crypto(key: Optional[str] = None) -> TokenCrypto:
    """Rebuild the global helper, e.g. after the key was configured"""
    global _crypto_instance
    _crypto_instance = TokenCrypto(key)
    return _crypto_instance

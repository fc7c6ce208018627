"""
Credential provider

Hands bearer tokens to the upstream client. Tokens come from the
credentials table (encrypted) and fall back to YOUTUBE_API_TOKEN from the
configuration. Obtaining or refreshing tokens happens outside this service.
"""
import threading
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Credential
from ..utils.crypto import CredentialCryptoError
from ..utils.logger import get_logger

logger = get_logger('credentials')


class CredentialProvider:
    """Resolves credential references to bearer tokens.

    Example:
        >>> provider = CredentialProvider(fallback_token=config.YOUTUBE_API_TOKEN)
        >>> provider.save('default', 'ya29....')
        >>> provider.get_token('default')
        >>> provider.invalidate('default', 'HTTP 401')
    """

    def __init__(self, fallback_token: str = ''):
        self.fallback_token = fallback_token or ''
        # Keyed by ciphertext, so a replaced token never hits a stale entry
        self._decrypted: Dict[str, str] = {}
        self._rejected_fallback = set()
        self._lock = threading.Lock()

    def get_token(self, credential_ref: str) -> str:
        """Return the token for a credential, or '' when none is usable.

        The credential row is read on every call, so a token replaced by
        another process (``flask add-credential``) is used on the next request.
        """
        credential = Credential.query.filter_by(name=credential_ref).populate_existing().first()
        if credential is None:
            with self._lock:
                if credential_ref in self._rejected_fallback:
                    return ''
            return self.fallback_token

        if not credential.is_valid:
            return ''

        ciphertext = credential.encrypted_token
        with self._lock:
            cached = self._decrypted.get(ciphertext)
        if cached:
            return cached

        try:
            token = credential.get_token()
        except CredentialCryptoError as e:
            logger.error(f"Cannot decrypt credential '{credential_ref}': {e}")
            return ''

        if token:
            with self._lock:
                self._decrypted[ciphertext] = token
        return token

    def invalidate(self, credential_ref: str, message: Optional[str] = None) -> None:
        """Stop handing out a rejected credential until it is saved again."""
        credential = Credential.query.filter_by(name=credential_ref).first()
        if credential is None:
            with self._lock:
                self._rejected_fallback.add(credential_ref)
            logger.warning(f"Fallback token rejected for '{credential_ref}'")
            return

        try:
            credential.mark_invalid(message)
            db.session.commit()
            logger.warning(f"Credential '{credential_ref}' marked invalid: {message}")
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Failed to mark credential '{credential_ref}' invalid: {e}")

    def save(self, credential_ref: str, token: str) -> Credential:
        """Store (or replace) a credential's token, re-validating it."""
        credential = Credential.query.filter_by(name=credential_ref).first()
        if credential is None:
            credential = Credential(name=credential_ref)
            db.session.add(credential)
        credential.set_token(token)
        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

        with self._lock:
            self._rejected_fallback.discard(credential_ref)
        logger.info(f"Credential '{credential_ref}' saved")
        return credential

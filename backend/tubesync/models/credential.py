"""
Credential model
Bearer tokens for the upstream API, stored encrypted
"""
from datetime import datetime
from ..extensions import db
from .channel import _iso


class Credential(db.Model):
    """
    Upstream API credential

    The token is only reachable through get_token()/set_token(), which
    encrypt with the configured Fernet key. Re-authentication happens out
    of band; sync only marks a credential invalid when upstream rejects it.
    """
    __tablename__ = 'credentials'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    name = db.Column(db.String(64), unique=True, nullable=False, index=True)
    encrypted_token = db.Column(db.Text, nullable=False)

    is_valid = db.Column(db.Boolean, default=True)
    invalidated_at = db.Column(db.DateTime)
    last_error = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def get_token(self) -> str:
        from ..utils.crypto import get_crypto
        return get_crypto().decrypt(self.encrypted_token)

    def set_token(self, token: str) -> None:
        from ..utils.crypto import get_crypto
        self.encrypted_token = get_crypto().encrypt(token)
        self.is_valid = True
        self.invalidated_at = None
        self.last_error = None

    def mark_invalid(self, message: str = None) -> None:
        self.is_valid = False
        self.invalidated_at = datetime.utcnow()
        self.last_error = message

    def to_dict(self):
        """Serialize without the token"""
        return {
            'name': self.name,
            'is_valid': self.is_valid,
            'invalidated_at': _iso(self.invalidated_at),
            'last_error': self.last_error,
            'created_at': _iso(self.created_at),
        }

    def __repr__(self):
        return f'<Credential {self.name}>'

"""
Utilities
"""
from .responses import success_response, ApiResponse
from .validators import validate_channel_id, validate_sync_kind, parse_bool
from .crypto import TokenCrypto
from .logger import setup_logger, get_logger

__all__ = [
    'success_response',
    'ApiResponse',
    'validate_channel_id',
    'validate_sync_kind',
    'parse_bool',
    'TokenCrypto',
    'setup_logger',
    'get_logger',
]

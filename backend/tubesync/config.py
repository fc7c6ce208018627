"""
Application configuration

Every setting can be overridden from the environment (or a .env file).
"""
import os
import secrets

from dotenv import load_dotenv

load_dotenv()

# Absolute path of the backend directory
BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, default))


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, default))


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Base configuration"""

    # ==================== Security ====================
    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_hex(32)

    # Fernet key used to encrypt stored upstream bearer tokens
    CREDENTIAL_ENCRYPTION_KEY = os.environ.get('CREDENTIAL_ENCRYPTION_KEY')

    # API key protecting the sync trigger endpoints (unset = open, dev mode)
    API_KEY = os.environ.get('API_KEY')

    # ==================== Database ====================
    DATABASE_URL = os.environ.get('DATABASE_URL')
    if DATABASE_URL:
        SQLALCHEMY_DATABASE_URI = DATABASE_URL
    else:
        SQLALCHEMY_DATABASE_URI = f'sqlite:///{os.path.join(BASE_DIR, "tubesync.db")}'

    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # ==================== CORS ====================
    CORS_ORIGINS = os.environ.get(
        'CORS_ORIGINS',
        'http://localhost:5173,http://127.0.0.1:5173'
    ).split(',')

    # ==================== Logging ====================
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FILE = os.environ.get('LOG_FILE')

    # ==================== Upstream API ====================
    YOUTUBE_API_BASE_URL = os.environ.get(
        'YOUTUBE_API_BASE_URL', 'https://www.googleapis.com/youtube/v3'
    )
    # Fallback bearer token when no stored credential matches
    YOUTUBE_API_TOKEN = os.environ.get('YOUTUBE_API_TOKEN', '')
    DEFAULT_CREDENTIAL = os.environ.get('DEFAULT_CREDENTIAL', 'default')
    HTTP_TIMEOUT = _env_float('HTTP_TIMEOUT', 15.0)

    # ==================== Quota (token bucket, per credential) ====================
    QUOTA_CAPACITY = _env_int('QUOTA_CAPACITY', 10)
    QUOTA_REFILL_PER_SECOND = _env_float('QUOTA_REFILL_PER_SECOND', 2.0)
    # How long a call may wait for a token before QuotaExceeded
    QUOTA_WAIT_TIMEOUT = _env_float('QUOTA_WAIT_TIMEOUT', 30.0)

    # ==================== Response cache ====================
    CACHE_TTL_SECONDS = _env_float('CACHE_TTL_SECONDS', 3600.0)

    # ==================== Client retry ====================
    CLIENT_MAX_ATTEMPTS = _env_int('CLIENT_MAX_ATTEMPTS', 4)
    CLIENT_BACKOFF_BASE = _env_float('CLIENT_BACKOFF_BASE', 1.0)
    CLIENT_BACKOFF_CAP = _env_float('CLIENT_BACKOFF_CAP', 30.0)
    BACKOFF_JITTER = _env_float('BACKOFF_JITTER', 0.2)

    # ==================== Job queue ====================
    WORKER_POOL_SIZE = _env_int('WORKER_POOL_SIZE', 3)
    WORKER_POLL_INTERVAL = _env_float('WORKER_POLL_INTERVAL', 1.0)
    JOB_MAX_ATTEMPTS = _env_int('JOB_MAX_ATTEMPTS', 3)
    JOB_BACKOFF_BASE = _env_float('JOB_BACKOFF_BASE', 30.0)
    JOB_BACKOFF_CAP = _env_float('JOB_BACKOFF_CAP', 1800.0)
    # Running jobs without a heartbeat for this long are considered stale
    JOB_HEARTBEAT_TIMEOUT = _env_int('JOB_HEARTBEAT_TIMEOUT', 300)
    # Overall deadline of a single channel sync (0 = none)
    SYNC_DEADLINE_SECONDS = _env_float('SYNC_DEADLINE_SECONDS', 1800.0)
    START_WORKERS = _env_bool('START_WORKERS', False)

    # ==================== Scheduler ====================
    PERIODIC_SYNC_INTERVAL = _env_float('PERIODIC_SYNC_INTERVAL', 6 * 3600.0)
    SCHEDULER_TICK_SECONDS = _env_float('SCHEDULER_TICK_SECONDS', 60.0)

    @classmethod
    def get_cors_config(cls):
        """Return CORS configuration"""
        return {
            "origins": cls.CORS_ORIGINS,
            "methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            "allow_headers": ["Content-Type", "X-API-Key", "Authorization"],
            "supports_credentials": True,
        }


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    LOG_LEVEL = 'DEBUG'


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    LOG_LEVEL = 'WARNING'

    @classmethod
    def validate(cls):
        """Return a list of missing production settings"""
        errors = []

        if not os.environ.get('SECRET_KEY'):
            errors.append('SECRET_KEY is not set')

        if not os.environ.get('CREDENTIAL_ENCRYPTION_KEY'):
            errors.append('CREDENTIAL_ENCRYPTION_KEY is not set (credentials cannot be stored)')

        if not os.environ.get('API_KEY'):
            errors.append('API_KEY is not set (sync endpoints are unauthenticated)')

        return errors


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    API_KEY = None
    START_WORKERS = False
    QUOTA_CAPACITY = 1000
    QUOTA_WAIT_TIMEOUT = 0.0
    CLIENT_BACKOFF_BASE = 0.0
    CLIENT_BACKOFF_CAP = 0.0
    SYNC_DEADLINE_SECONDS = 0.0


# Configuration map
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}


def get_config():
    """Pick the configuration class from FLASK_ENV"""
    env = os.environ.get('FLASK_ENV', 'development')
    return config.get(env, config['default'])

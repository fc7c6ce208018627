"""
Application entry point
TubeSync - channel sync backend

Usage:
    python run.py              # API only
    python run.py --workers    # API plus worker pool and scheduler

Configuration:
    - put overrides in a .env file next to this script
    - see tubesync/config.py for the available variables
"""
import sys
import os

# Add the backend directory to the path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from tubesync import create_app
from tubesync.config import get_config
from tubesync.utils.crypto import get_crypto
from tubesync.utils.logger import get_logger

config_class = get_config()

app = create_app(config_class)
logger = get_logger('run')

if __name__ == '__main__':
    env = os.environ.get('FLASK_ENV', 'development')
    if env == 'production':
        for problem in config_class.validate():
            logger.warning(f"Config: {problem}")

    services = app.extensions['tubesync']
    if '--workers' in sys.argv and not services.queue.is_running:
        services.start()

    logger.info(f"Environment: {env}")
    logger.info(f"Database: {app.config['SQLALCHEMY_DATABASE_URI']}")
    logger.info(f"CORS origins: {', '.join(config_class.CORS_ORIGINS)}")
    logger.info(f"Workers: {'running' if services.queue.is_running else 'off'}")

    if not get_crypto().is_configured:
        logger.warning("CREDENTIAL_ENCRYPTION_KEY not set, credentials cannot be stored")
    if not app.config.get('API_KEY'):
        logger.warning("API_KEY not set, sync endpoints are unauthenticated")

    try:
        app.run(host='0.0.0.0', port=8000, debug=(env == 'development'), use_reloader=False)
    finally:
        services.stop(timeout=30)

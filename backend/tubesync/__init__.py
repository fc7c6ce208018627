"""
Flask Application Factory

This module creates and configures the Flask application.
"""
import time
from flask import Flask, g, request, jsonify
from flask_cors import CORS

from .config import get_config
from .extensions import db, migrate
from .api import sync_bp, jobs_bp, channels_bp
from .services import init_services
from .services.sync.errors import SyncError
from .utils.logger import setup_logger, get_logger

# HTTP status per sync error kind
SYNC_ERROR_STATUS = {
    'sync_in_progress': 409,
    'not_found': 404,
    'quota_exceeded': 429,
    'upstream_unavailable': 503,
    'credential_invalid': 502,
    'upstream_rejected': 502,
    'timeout': 504,
}


def create_app(config_class=None):
    """Create and configure Flask application.

    Args:
        config_class: Configuration class to use. If None, auto-detect from environment.

    Returns:
        Configured Flask application instance
    """
    if config_class is None:
        config_class = get_config()

    app = Flask(__name__)
    app.config.from_object(config_class)

    setup_logger(
        log_level=app.config.get('LOG_LEVEL', 'INFO'),
        log_file=app.config.get('LOG_FILE')
    )

    logger = get_logger('app')

    cors_config = config_class.get_cors_config()
    CORS(app, resources={r"/api/*": cors_config})

    db.init_app(app)

    # Schema changes go through 'flask db upgrade'
    migrate.init_app(app, db)

    services = init_services(app)

    _register_blueprints(app)

    with app.app_context():
        _cleanup_stale_jobs(app, logger)

    _register_error_handlers(app)
    _register_request_hooks(app)
    _register_health_check(app)

    if app.config.get('START_WORKERS'):
        services.start()

    db_uri = app.config.get('SQLALCHEMY_DATABASE_URI', '')
    logger.info(f"Application initialized, database: {db_uri}")

    return app


def _register_blueprints(app):
    app.register_blueprint(sync_bp, url_prefix='/api')
    app.register_blueprint(jobs_bp, url_prefix='/api')
    app.register_blueprint(channels_bp, url_prefix='/api')


def _cleanup_stale_jobs(app, logger):
    """Recover jobs left running by a previous process."""
    try:
        queue = app.extensions['tubesync'].queue
        cleaned = queue.cleanup_stale_jobs(app.config.get('JOB_HEARTBEAT_TIMEOUT', 300))
        if cleaned > 0:
            logger.info(f"Recovered {cleaned} stale sync jobs on startup")
    except Exception as e:
        # Tables may not exist yet before the first 'flask db upgrade'
        logger.warning(f"Failed to cleanup stale jobs: {e}")
        db.session.rollback()


def _register_error_handlers(app):
    """Register global error handlers."""
    from .utils.responses import ApiResponse

    @app.errorhandler(SyncError)
    def sync_error(error):
        status = SYNC_ERROR_STATUS.get(error.kind, 500)
        return ApiResponse.error(error.message, status, error.kind.upper(), details=error.to_dict())

    @app.errorhandler(400)
    def bad_request(error):
        msg = str(error.description) if hasattr(error, 'description') else 'Bad request'
        return ApiResponse.error(msg, 400, 'BAD_REQUEST')

    @app.errorhandler(404)
    def not_found(error):
        msg = str(error.description) if hasattr(error, 'description') else 'Resource not found'
        return ApiResponse.not_found(msg)

    @app.errorhandler(405)
    def method_not_allowed(error):
        return ApiResponse.error('Method not allowed', 405, 'METHOD_NOT_ALLOWED')

    @app.errorhandler(500)
    def internal_error(error):
        logger = get_logger('error')
        logger.exception(error)
        return ApiResponse.server_error('Internal server error')


def _register_request_hooks(app):
    """Register request timing hooks."""

    @app.before_request
    def before_request():
        g.start_time = time.time()

    @app.after_request
    def after_request(response):
        if hasattr(g, 'start_time'):
            duration = (time.time() - g.start_time) * 1000
            if duration > 1000:
                logger = get_logger('slow_request')
                logger.warning(f"Slow request: {request.method} {request.path} took {duration:.2f}ms")
        return response


def _register_health_check(app):

    @app.route('/api/health')
    def health_check():
        """Health check endpoint for container orchestration."""
        services = app.extensions['tubesync']
        return jsonify({
            'status': 'healthy',
            'service': 'tubesync',
            'workers_running': services.queue.is_running,
            'scheduler_running': services.scheduler.is_running,
            'in_flight': services.coordinator.registry.running(),
        })

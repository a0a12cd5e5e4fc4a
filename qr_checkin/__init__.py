# __init__.py
"""
Application factory for the QR check-in station.
This module creates and configures the Flask application using the application factory pattern.
"""

import os
import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler

from flask import Flask, jsonify
from dotenv import load_dotenv
from werkzeug.exceptions import HTTPException

from qr_checkin.config import config_by_name
from qr_checkin.extensions import init_extensions, check_in_service


def setup_logging(app):
    """
    Configure structured logging for the application.

    Args:
        app: Flask application instance
    """
    log_dir = app.config.get('LOG_FOLDER') or os.path.join(app.root_path, 'logs')
    os.makedirs(log_dir, exist_ok=True)

    log_format = logging.Formatter(
        '%(asctime)s %(levelname)s %(name)s %(threadName)s : %(message)s'
    )

    # File handler with rotation
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'app.log'),
        maxBytes=1024 * 1024 * 10,  # 10MB
        backupCount=5
    )
    file_handler.setFormatter(log_format)
    file_handler.setLevel(logging.INFO)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(log_format)
    console_handler.setLevel(logging.DEBUG if app.debug else logging.INFO)

    app.logger.setLevel(logging.DEBUG if app.debug else logging.INFO)
    app.logger.addHandler(file_handler)
    app.logger.addHandler(console_handler)

    # Service loggers share the application handlers
    for name in ('reconciliation_service', 'ledger', 'check_in_policy', 'identity_service',
                 'payload_codec', 'storage', 'check_in', 'attendee'):
        service_logger = logging.getLogger(name)
        service_logger.setLevel(logging.DEBUG if app.debug else logging.INFO)
        service_logger.addHandler(file_handler)
        service_logger.addHandler(console_handler)

    # Suppress excessive SQLAlchemy logging
    sa_logger = logging.getLogger('sqlalchemy.engine')
    sa_logger.setLevel(logging.WARNING)
    sa_logger.propagate = False


def register_blueprints(app):
    """
    Register all application blueprints.

    Args:
        app: Flask application instance
    """
    try:
        # Import blueprints here to avoid circular imports
        from .controllers.check_in import check_in_bp
        from .controllers.attendee import attendee_bp

        app.register_blueprint(check_in_bp, url_prefix='/check-in')
        app.register_blueprint(attendee_bp, url_prefix='/attendee')

        app.logger.info("All blueprints registered successfully")

    except ImportError as e:
        app.logger.error(f"Failed to import blueprint: {str(e)}")
        raise


def register_error_handlers(app):
    """
    Register global error handlers.

    Args:
        app: Flask application instance
    """

    @app.errorhandler(404)
    def handle_404(e):
        return jsonify({'success': False, 'error': 'Resource not found', 'error_code': 'not_found'}), 404

    @app.errorhandler(405)
    def handle_405(e):
        return jsonify({'success': False, 'error': 'Method not allowed', 'error_code': 'method_not_allowed'}), 405

    @app.errorhandler(Exception)
    def handle_exception(e):
        if isinstance(e, HTTPException):
            return jsonify({'success': False, 'error': e.description, 'error_code': e.name.lower()}), e.code

        app.logger.error(f"Unhandled exception: {str(e)}", exc_info=True)
        return jsonify({
            'success': False,
            'error': 'An unexpected error occurred',
            'message': str(e) if app.debug else 'Internal server error',
            'error_code': 'server_error'
        }), 500


def register_shell_context(app):
    """
    Register shell context for flask shell command.

    Args:
        app: Flask application instance
    """

    @app.shell_context_processor
    def make_shell_context():
        from qr_checkin.extensions import db
        from qr_checkin.models import StoredValue
        return {
            'db': db,
            'StoredValue': StoredValue,
            'check_in_service': check_in_service
        }


def register_health_checks(app):
    """
    Register health check endpoints.

    Args:
        app: Flask application instance
    """

    @app.route('/health')
    def health_check():
        """Basic health check endpoint."""
        from qr_checkin.extensions import check_database_health
        from qr_checkin.services.storage import storage_mode

        healthy, message = check_database_health()
        return jsonify({
            'status': 'ok' if healthy else 'degraded',
            'database': message,
            'storage': storage_mode(check_in_service.store),
            'timestamp': datetime.now().isoformat(),
            'version': app.config.get('VERSION', '1.0.0')
        })


def create_app(config_name=None):
    """
    Application factory function.

    Args:
        config_name (str): Configuration name ('development', 'production', 'testing')

    Returns:
        Flask: Configured Flask application instance
    """
    # Load environment variables
    load_dotenv()

    app = Flask(__name__)

    # Load configuration
    config_name = config_name or os.environ.get('FLASK_ENV', 'development')
    config_class = config_by_name[config_name]
    if hasattr(config_class, 'validate'):
        config_class.validate()
    app.config.from_object(config_class)

    # Setup logging first
    if not app.testing:
        setup_logging(app)
    app.logger.info(f"Starting application with config: {config_name}")

    if not app.config.get('CHECKIN_ORGANIZER_PIN'):
        app.logger.warning("CHECKIN_ORGANIZER_PIN is not set; the organizer lock cannot be opened")

    init_extensions(app)

    # Register components
    register_blueprints(app)
    register_error_handlers(app)
    register_shell_context(app)
    register_health_checks(app)

    # Register CLI commands
    from .cli import register_cli_commands
    register_cli_commands(app)

    app.logger.info("Application factory completed successfully")

    return app

# extensions.py
"""
Flask extensions initialization.
Extensions are created here without an app and bound in the application factory.
"""

import logging

from flask import current_app
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from sqlalchemy import text

from qr_checkin.services.reconciliation_service import ReconciliationEngine

# Initialize extensions without app binding
db = SQLAlchemy()
migrate = Migrate()
check_in_service = ReconciliationEngine()

logger = logging.getLogger(__name__)


def check_database_health():
    """
    Check if the database connection is healthy.
    Requires an active Flask application context.

    Returns:
        tuple: (bool, str) indicating health status and message
    """
    try:
        if not current_app:
            return False, "No application context available"

        connection = db.engine.connect()
        try:
            with connection.begin():
                connection.execute(text("SELECT 1")).fetchone()
            return True, "Database connection is healthy"
        finally:
            connection.close()

    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False, f"Database connection failed: {str(e)}"


def init_extensions(app):
    """
    Initialize all extensions in order.

    Args:
        app: Flask application instance
    """
    # Step 1: Database first, the key-value store depends on it
    db.init_app(app)
    migrate.init_app(app, db)

    # Step 2: Create the key-value table so the station can persist from the first request
    with app.app_context():
        from qr_checkin.models import StoredValue  # noqa: F401
        try:
            db.create_all()
        except Exception as e:
            # The store degrades to memory on its first failed call
            app.logger.error(f"Could not create tables, check-in data will not persist: {e}")

    # Step 3: Check-in engine reads its configuration
    check_in_service.init_app(app)

    app.logger.info("Extensions initialized successfully in correct order")

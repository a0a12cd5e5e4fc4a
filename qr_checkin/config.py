import os
from datetime import timedelta
from dotenv import load_dotenv

load_dotenv()


def _clamp_debounce(value, low=1200, high=1500):
    """Burst-scan window in milliseconds, kept inside the supported range."""
    try:
        value = int(value)
    except (TypeError, ValueError):
        return high
    return max(low, min(high, value))


class Config:
    """Base configuration class with all settings as static attributes."""

    # Core configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'your-secret-key-here'
    DEBUG = os.environ.get('FLASK_DEBUG', 'false').lower() == 'true'
    VERSION = '1.0.0'

    # Session settings: lock and mode live in the signed session cookie
    PERMANENT_SESSION_LIFETIME = timedelta(hours=12)
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # Database configuration
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///checkin.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,  # Check connection health before use
    }

    # Directory configuration
    BASE_DIR = os.path.dirname(os.path.abspath(__file__))
    LOG_FOLDER = os.path.join(BASE_DIR, 'logs')

    # Site settings
    SITE_NAME = os.environ.get('SITE_NAME', 'QR Check-in')

    # Check-in settings
    CHECKIN_ORGANIZER_PIN = os.environ.get('CHECKIN_ORGANIZER_PIN', '')
    CHECKIN_DEBOUNCE_MS = _clamp_debounce(os.environ.get('CHECKIN_DEBOUNCE_MS', 1500))
    CHECKIN_DEDUP_KEY = os.environ.get('CHECKIN_DEDUP_KEY', 'name')  # name, device_id
    CHECKIN_SCAN_FALLBACK = os.environ.get('CHECKIN_SCAN_FALLBACK', 'name')  # name, device_id
    CHECKIN_STORAGE = os.environ.get('CHECKIN_STORAGE', 'database')  # database, memory
    CHECKIN_STORAGE_PREFIX = os.environ.get('CHECKIN_STORAGE_PREFIX', 'qratt:')
    RECENT_SCANS_LIMIT = 10


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    SQLALCHEMY_ECHO = os.environ.get('SQL_DEBUG', 'false').lower() == 'true'


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    SESSION_COOKIE_SECURE = True

    @classmethod
    def validate(cls):
        """Refuse to start without the secrets production needs."""
        if not os.environ.get('SECRET_KEY'):
            raise ValueError("SECRET_KEY environment variable must be set in production")
        if not os.environ.get('CHECKIN_ORGANIZER_PIN'):
            raise ValueError("CHECKIN_ORGANIZER_PIN environment variable must be set in production")


class TestingConfig(Config):
    """Testing configuration."""
    TESTING = True
    SECRET_KEY = 'testing-secret-key'
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Override for testing
    CHECKIN_ORGANIZER_PIN = '2468'
    CHECKIN_DEBOUNCE_MS = 1500
    CHECKIN_DEDUP_KEY = 'name'
    CHECKIN_SCAN_FALLBACK = 'name'
    CHECKIN_STORAGE = 'database'


# Configuration dictionary
config_by_name = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig
}

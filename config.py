"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '1') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')
    TESTING = False

    # Session Configuration (Production-safe defaults)
    SESSION_COOKIE_SECURE = os.getenv('SESSION_COOKIE_SECURE', 'false').lower() == 'true'
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv('SESSION_COOKIE_SAMESITE', 'Lax')
    PERMANENT_SESSION_LIFETIME = 86400  # 24 hours

    # CSRF tokens are sent by the frontend in the X-CSRFToken header
    WTF_CSRF_ENABLED = os.getenv('WTF_CSRF_ENABLED', 'true').lower() == 'true'
    WTF_CSRF_HEADERS = ['X-CSRFToken', 'X-CSRF-Token']

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'rentals')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'rentals')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'rentals')

        DATABASE_URL = (
            f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'

    # Billing defaults (per-staff settings override these)
    DEFAULT_GST_RATE = os.getenv('DEFAULT_GST_RATE', '5.00')
    INVOICE_PREFIX = os.getenv('INVOICE_PREFIX', 'GLAORD')
    CUSTOMER_NUMBER_PREFIX = os.getenv('CUSTOMER_NUMBER_PREFIX', 'GLA')

    # Orders can only be cancelled this soon after being booked
    ORDER_CANCEL_WINDOW_MINUTES = int(os.getenv('ORDER_CANCEL_WINDOW_MINUTES', '5'))
    # Active orders can only be fully edited this soon after the rental starts
    ORDER_EDIT_WINDOW_MINUTES = int(os.getenv('ORDER_EDIT_WINDOW_MINUTES', '10'))

    # Pagination
    ORDERS_PAGE_SIZE = int(os.getenv('ORDERS_PAGE_SIZE', '20'))
    CUSTOMERS_PAGE_SIZE = int(os.getenv('CUSTOMERS_PAGE_SIZE', '20'))
    RECENT_ORDERS_LIMIT = int(os.getenv('RECENT_ORDERS_LIMIT', '8'))

    # Redis Cache Configuration
    # Shared cache layer for dashboard and calendar reads
    REDIS_URL = os.getenv('REDIS_URL', 'redis://redis:6379/0')
    CACHE_ENABLED = os.getenv('CACHE_ENABLED', 'true').lower() == 'true'
    CACHE_DEFAULT_TTL = int(os.getenv('CACHE_DEFAULT_TTL', '60'))  # seconds
    CACHE_DASHBOARD_TTL = int(os.getenv('CACHE_DASHBOARD_TTL', '60'))
    CACHE_CALENDAR_TTL = int(os.getenv('CACHE_CALENDAR_TTL', '300'))
    CACHE_KEY_PREFIX = os.getenv('CACHE_KEY_PREFIX', 'rentals')


class TestingConfig(Config):
    """Configuration used by the test suite (in-memory SQLite, no Redis)."""

    TESTING = True
    DEBUG = False
    ENV = 'testing'
    WTF_CSRF_ENABLED = False
    SQLALCHEMY_DATABASE_URI = os.getenv('TEST_DATABASE_URL', 'sqlite://')
    SQLALCHEMY_ECHO = False
    CACHE_ENABLED = False

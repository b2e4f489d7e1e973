# config.py
"""
Configuration settings for the Flask application.
Handles database connections, sign-in, quote providers and environment-specific settings.
"""

import os
from datetime import timedelta


def _split_env(name):
    raw = os.environ.get(name, '')
    return [item.strip().rstrip('/') for item in raw.split(',') if item.strip()]


class Config:
    """Base configuration"""

    # Flask settings
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # Database settings
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///tradeboard.db'

    # Fix for Heroku/Railway postgres:// vs postgresql://
    if SQLALCHEMY_DATABASE_URI and SQLALCHEMY_DATABASE_URI.startswith('postgres://'):
        SQLALCHEMY_DATABASE_URI = SQLALCHEMY_DATABASE_URI.replace('postgres://', 'postgresql://', 1)

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
        'pool_recycle': 300,
    }

    # OIDC sign-in (Logto or any OpenID Connect issuer)
    BASE_URL = (os.environ.get('BASE_URL') or 'http://localhost:5000').rstrip('/')
    OIDC_ENDPOINT = (os.environ.get('OIDC_ENDPOINT') or os.environ.get('LOGTO_ENDPOINT') or '').rstrip('/')
    OIDC_CLIENT_ID = os.environ.get('OIDC_CLIENT_ID') or os.environ.get('LOGTO_APP_ID')
    OIDC_CLIENT_SECRET = os.environ.get('OIDC_CLIENT_SECRET') or os.environ.get('LOGTO_APP_SECRET')
    OIDC_SCOPES = os.environ.get('OIDC_SCOPES', 'openid email profile')

    # Quote providers
    FINNHUB_API_KEY = os.environ.get('FINNHUB_API_KEY')
    PROVIDER_TIMEOUT = 10  # seconds
    PROVIDER_MAX_RETRIES = 3
    PROVIDER_RETRY_DELAY = 1  # seconds, multiplied by attempt
    QUOTE_CACHE_TTL = 300  # 5 minutes
    QUOTE_CACHE_SIZE = 500

    # Exchange rates (base currency is EUR)
    EXCHANGE_RATE_TTL = 3600  # 1 hour
    EXCHANGE_RATE_TIMEOUT = 8  # seconds per source
    FALLBACK_USD_PER_EUR = 1.08

    # Request security
    ALLOWED_ORIGINS = _split_env('ALLOWED_ORIGINS')
    CSRF_ORIGIN_CHECK = True
    RATELIMIT_STORAGE_URI = 'memory://'
    RATELIMIT_STRATEGY = 'fixed-window'
    RATELIMIT_HEADERS_ENABLED = True

    # Scheduler settings
    SCHEDULER_ENABLED = os.environ.get('SCHEDULER_ENABLED', 'false').lower() == 'true'
    SNAPSHOT_INTERVAL_MINUTES = int(os.environ.get('SNAPSHOT_INTERVAL_MINUTES', 60))
    CRON_SECRET = os.environ.get('CRON_SECRET')

    # Session settings
    PERMANENT_SESSION_LIFETIME = timedelta(days=7)
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    TESTING = False


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False
    SESSION_COOKIE_SECURE = True


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    WTF_CSRF_ENABLED = False
    RATELIMIT_ENABLED = False
    SCHEDULER_ENABLED = False
    FINNHUB_API_KEY = 'test-finnhub-key'
    CRON_SECRET = 'test-cron-secret'
    OIDC_ENDPOINT = 'https://auth.example.com'
    OIDC_CLIENT_ID = 'test-client'
    OIDC_CLIENT_SECRET = 'test-secret'
    BASE_URL = 'http://localhost'
    PROVIDER_RETRY_DELAY = 0


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}


def get_config(config_name=None):
    """Get configuration by name, falling back to the FLASK_ENV environment variable"""
    env = config_name or os.environ.get('FLASK_ENV', 'development')
    return config.get(env, config['default'])

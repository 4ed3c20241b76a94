import os
from datetime import timedelta


def _int_env(name, default):
    value = os.environ.get(name)
    return int(value) if value else default


class Config:
    """Flask application configuration."""

    # Security
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'

    # Internal bearer credentials
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY') or SECRET_KEY
    JWT_ALGORITHM = 'HS256'
    JWT_EXPIRATION = timedelta(hours=_int_env('JWT_EXPIRATION_HOURS', 24))

    # External identity provider
    GOOGLE_CLIENT_ID = os.environ.get('GOOGLE_CLIENT_ID')
    IDENTITY_PROVIDER_TIMEOUT = 5  # seconds

    # Database
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'postgresql://localhost/booking_core'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    DATA_STORE_TIMEOUT_MS = _int_env('DATA_STORE_TIMEOUT_MS', 5000)
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
        'pool_recycle': 300,
        'pool_timeout': DATA_STORE_TIMEOUT_MS / 1000,
        'connect_args': {'options': f'-c statement_timeout={DATA_STORE_TIMEOUT_MS}'},
    }

    # Celery
    CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL') or 'redis://localhost:6379/0'
    CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND') or 'redis://localhost:6379/0'
    CELERY_TASK_SERIALIZER = 'json'
    CELERY_RESULT_SERIALIZER = 'json'
    CELERY_ACCEPT_CONTENT = ['json']
    CELERY_TIMEZONE = 'UTC'
    CELERY_ENABLE_UTC = True
    CELERY_TASK_ALWAYS_EAGER = False
    CELERY_TASK_EAGER_PROPAGATES = False

    # Appointment lifecycle
    PRE_CONFIRMATION_WINDOW = timedelta(hours=24)
    CANCELLATION_CREDIT_WINDOW = timedelta(hours=24)
    APPOINTMENTS_PER_PAGE = 25
    MAX_PER_PAGE = 100

    # Background job retries
    SCHEDULER_MAX_RETRIES = _int_env('SCHEDULER_MAX_RETRIES', 5)
    SCHEDULER_RETRY_BACKOFF = 30  # seconds, doubled on every attempt
    NOTIFICATION_MAX_RETRIES = 3

    # Rate limiting
    RATELIMIT_ENABLED = True
    RATELIMIT_STORAGE_URI = os.environ.get('RATELIMIT_STORAGE_URI') or 'memory://'
    LOGIN_RATE_LIMIT = '5 per minute'

    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'

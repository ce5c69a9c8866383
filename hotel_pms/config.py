# Configuration for the Hotel PMS backend
import os
import secrets
from dataclasses import dataclass

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_bool(name, default):
    return os.environ.get(name, default).lower() == 'true'


def database_url():
    """Read DATABASE_URL and point postgres URLs at the psycopg3 driver"""
    url = os.environ.get('DATABASE_URL')
    if url:
        # Fix for SQLAlchemy compatibility with psycopg3
        if url.startswith('postgres://'):
            url = url.replace('postgres://', 'postgresql+psycopg://', 1)
        elif url.startswith('postgresql://'):
            url = url.replace('postgresql://', 'postgresql+psycopg://', 1)
    return url or 'sqlite:///hotel.db'


class Config:
    # ============================================
    # DATABASE
    # ============================================
    SQLALCHEMY_DATABASE_URI = database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
        'pool_recycle': 300,
    }

    # ============================================
    # SECURITY
    # ============================================
    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_hex(32)
    JWT_ALGORITHM = 'HS256'
    JWT_EXPIRATION_HOURS = int(os.environ.get('JWT_EXPIRATION_HOURS', 24))
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')

    # ============================================
    # HOTEL TIME POLICY
    # ============================================
    APP_TIMEZONE = os.environ.get('APP_TIMEZONE', 'Europe/Rome')
    DEFAULT_CHECKIN_HOUR = int(os.environ.get('DEFAULT_CHECKIN_HOUR', 14))
    DEFAULT_CHECKOUT_HOUR = int(os.environ.get('DEFAULT_CHECKOUT_HOUR', 10))
    # Scheduler drift that is still treated as "on time"
    CRON_TOLERANCE_SECONDS = int(os.environ.get('CRON_TOLERANCE_SECONDS', 59))

    # ============================================
    # BACKGROUND JOBS
    # ============================================
    START_SCHEDULER = _env_bool('START_SCHEDULER', 'true')
    STATUS_TICK_INTERVAL = int(os.environ.get('STATUS_TICK_INTERVAL', 60))
    OVERDUE_CHECK_INTERVAL = int(os.environ.get('OVERDUE_CHECK_INTERVAL', 24 * 60 * 60))

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SECRET_KEY = 'test-secret-key-that-is-long-enough-for-hs256'
    APP_TIMEZONE = 'Europe/Rome'
    DEFAULT_CHECKIN_HOUR = 14
    DEFAULT_CHECKOUT_HOUR = 10
    START_SCHEDULER = False


@dataclass(frozen=True)
class StatusPolicy:
    """Read-only time policy handed to the status engine.

    Built once from the Flask config so the engine never reads globals.
    """
    timezone: str = 'Europe/Rome'
    default_check_in_hour: int = 14
    default_check_out_hour: int = 10
    tolerance_seconds: int = 59

    @classmethod
    def from_mapping(cls, config):
        return cls(
            timezone=config.get('APP_TIMEZONE', cls.timezone),
            default_check_in_hour=config.get('DEFAULT_CHECKIN_HOUR', cls.default_check_in_hour),
            default_check_out_hour=config.get('DEFAULT_CHECKOUT_HOUR', cls.default_check_out_hour),
            tolerance_seconds=config.get('CRON_TOLERANCE_SECONDS', cls.tolerance_seconds),
        )

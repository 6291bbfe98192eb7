"""
Configuration settings for the subscription engine.
"""

import os
from pathlib import Path

from dotenv import load_dotenv


class Config:
    """Configuration settings, read from the environment."""

    # Database settings
    DATABASE_URL = 'sqlite:///subscription_engine.db'

    # Scan settings
    SCAN_BATCH_SIZE = 200
    WORKER_POOL_SIZE = os.cpu_count() or 4
    PATTERN_CACHE_TTL = 24 * 60 * 60.0
    SIGNAL_TABLE_PATH = None

    # Storage retry settings
    STORAGE_MAX_RETRIES = 4
    BACKOFF_BASE_DELAY = 0.5
    BACKOFF_MAX_DELAY = 300.0

    # Unsubscribe settings
    UNSUBSCRIBE_CONCURRENCY = 5
    REQUEST_TIMEOUT = 10.0
    RATE_LIMIT_DELAY = 1.0
    USER_AGENT = 'SubscriptionEngine/0.7 (+unsubscribe)'

    # Outbound mail for mailto unsubscribe
    SMTP_HOST = 'smtp.gmail.com'
    SMTP_PORT = 587
    SMTP_ADDRESS = None
    SMTP_PASSWORD = None

    LOG_LEVEL = 'INFO'

    @classmethod
    def reload(cls):
        """Re-read every setting from the environment."""
        cls.DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///subscription_engine.db')

        cls.SCAN_BATCH_SIZE = int(os.getenv('SCAN_BATCH_SIZE', '200'))
        cls.WORKER_POOL_SIZE = int(os.getenv('WORKER_POOL_SIZE', str(os.cpu_count() or 4)))
        cls.PATTERN_CACHE_TTL = float(os.getenv('PATTERN_CACHE_TTL', str(24 * 60 * 60)))
        cls.SIGNAL_TABLE_PATH = os.getenv('SIGNAL_TABLE_PATH')

        cls.STORAGE_MAX_RETRIES = int(os.getenv('STORAGE_MAX_RETRIES', '4'))
        cls.BACKOFF_BASE_DELAY = float(os.getenv('BACKOFF_BASE_DELAY', '0.5'))
        cls.BACKOFF_MAX_DELAY = float(os.getenv('BACKOFF_MAX_DELAY', '300'))

        cls.UNSUBSCRIBE_CONCURRENCY = int(os.getenv('UNSUBSCRIBE_CONCURRENCY', '5'))
        cls.REQUEST_TIMEOUT = float(os.getenv('REQUEST_TIMEOUT', '10'))
        cls.RATE_LIMIT_DELAY = float(os.getenv('RATE_LIMIT_DELAY', '1.0'))
        cls.USER_AGENT = os.getenv('USER_AGENT', 'SubscriptionEngine/0.7 (+unsubscribe)')

        cls.SMTP_HOST = os.getenv('SMTP_HOST', 'smtp.gmail.com')
        cls.SMTP_PORT = int(os.getenv('SMTP_PORT', '587'))
        cls.SMTP_ADDRESS = os.getenv('SMTP_ADDRESS')
        cls.SMTP_PASSWORD = os.getenv('SMTP_PASSWORD')

        cls.LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    @classmethod
    def get_data_dir(cls) -> Path:
        """Get the data directory for storing database and logs."""
        data_dir = Path(os.getenv('DATA_DIR', Path.cwd() / 'data'))
        data_dir.mkdir(parents=True, exist_ok=True)
        return data_dir

    @classmethod
    def get_database_path(cls) -> str:
        """Get the full database URL, resolving relative SQLite paths into the data dir."""
        if cls.DATABASE_URL.startswith('sqlite:///') and ':memory:' not in cls.DATABASE_URL:
            db_file = cls.DATABASE_URL[10:]
            if not os.path.isabs(db_file):
                db_path = cls.get_data_dir() / db_file
                return f"sqlite:///{db_path}"
        return cls.DATABASE_URL


Config.reload()


def load_config_from_env_file(env_file: str = '.env'):
    """Load configuration from environment file."""
    env_path = Path(env_file)
    if env_path.exists():
        load_dotenv(env_path)
        Config.reload()

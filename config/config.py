import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_float(name, default):
    try:
        return float(os.environ.get(name, default))
    except (TypeError, ValueError):
        return float(default)


def _env_int(name, default):
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return int(default)


class Config:
    # Basic Flask configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'

    # Logging configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'
    LOG_FILE = os.environ.get('LOG_FILE') or 'anime_console.log'

    # SocketIO configuration
    SOCKETIO_ASYNC_MODE = os.environ.get('SOCKETIO_ASYNC_MODE') or 'threading'
    CORS_ALLOWED_ORIGINS = os.environ.get('CORS_ALLOWED_ORIGINS') or '*'

    # Anime pipeline backend (ingestion, torrent scans, downloads, scheduled jobs)
    PIPELINE_SETTINGS = {
        'base_url': os.environ.get('PIPELINE_BASE_URL') or 'http://localhost:3000',
        'timeout': _env_float('PIPELINE_REQUEST_TIMEOUT', 15),
        'verify_ssl': os.environ.get('PIPELINE_VERIFY_SSL', 'true').lower() == 'true',
    }

    # Operation tracking
    TRACKING_SETTINGS = {
        'enabled': os.environ.get('TRACKING_ENABLED', 'true').lower() == 'true',
        'poll_interval': _env_float('OPERATION_POLL_INTERVAL', 2.0),         # Seconds between status polls
        'list_refresh_interval': _env_float('TASK_LIST_REFRESH_INTERVAL', 300),  # Background tasks table (5 minutes)
        'task_list_limit': _env_int('TASK_LIST_LIMIT', 20),
        'quarter_tasks_refresh_interval': _env_float('QUARTER_TASKS_REFRESH_INTERVAL', 5),  # Seasons table task map
        'quarter_tasks_limit': _env_int('QUARTER_TASKS_LIMIT', 100),
        'max_attempts': _env_int('TRACKING_MAX_ATTEMPTS', 5),                # Consecutive failures before giving up
        'backoff_strategy': os.environ.get('TRACKING_BACKOFF_STRATEGY') or 'exponential',
        'max_backoff': _env_float('TRACKING_MAX_BACKOFF', 60),               # Upper bound for retry delay
        'clear_on_terminal': os.environ.get('TRACKING_CLEAR_ON_TERMINAL', 'false').lower() == 'true',
        'quarter_long_poll_ms': _env_int('QUARTER_LONG_POLL_MS', 1000),      # Server-side wait per quarter poll
        'shutdown_timeout': _env_float('TRACKING_SHUTDOWN_TIMEOUT', 5),
    }

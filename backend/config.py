"""
Configuration Module for the AI DJ API
Handles logging setup, environment-driven DJ settings and Flask app initialization
"""

import os
import logging
from dataclasses import dataclass

from utils.helpers import safe_int


def configure_logging(level=logging.INFO):
    """
    Configure application logging with standard format

    Returns:
        Logger instance for the config module
    """
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    return logging.getLogger(__name__)


@dataclass
class DJSettings:
    """AI DJ knobs read from the environment"""
    timeout_seconds: int = 10
    batch_size: int = 5
    max_attempts: int = 3
    cooldown_seconds: int = 30
    analysis_timeout_seconds: int = 5


def load_dj_settings(environ=None) -> DJSettings:
    """
    Read AI_DJ_* variables, clamping each to a sane range.

    Args:
        environ: Mapping to read from (default: os.environ)
    """
    env = os.environ if environ is None else environ
    return DJSettings(
        timeout_seconds=safe_int(env.get('AI_DJ_TIMEOUT_SECONDS'), 10, minimum=1, maximum=120),
        batch_size=safe_int(env.get('AI_DJ_BATCH_SIZE'), 5, minimum=1, maximum=10),
        max_attempts=safe_int(env.get('AI_DJ_MAX_ATTEMPTS'), 3, minimum=1, maximum=10),
        cooldown_seconds=safe_int(env.get('AI_DJ_COOLDOWN_SECONDS'), 30, minimum=0, maximum=3600),
        analysis_timeout_seconds=safe_int(env.get('AI_DJ_ANALYSIS_TIMEOUT_SECONDS'), 5,
                                          minimum=1, maximum=120),
    )


def init_app_config(app):
    """
    Initialize Flask app configuration

    This sets up:
    - Custom JSON provider for datetime formatting
    - DJ settings under app.config['DJ_SETTINGS']

    Args:
        app: Flask application instance
    """
    from utils.json_provider import CustomJSONProvider
    app.json = CustomJSONProvider(app)
    app.config.setdefault('DJ_SETTINGS', load_dj_settings())


def set_db_pooling_mode():
    """
    Set database pooling mode environment variable

    This MUST be called before the first database access so that
    db_utils hands out pooled connections.
    """
    os.environ['DB_USE_POOLING'] = 'true'

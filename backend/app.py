"""
AI DJ API Backend
A Flask API serving contextual music recommendations from the user's library
"""

from flask import Flask, request
from flask_cors import CORS
import atexit
import logging
import os

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Configuration
from config import configure_logging, init_app_config, set_db_pooling_mode

# Set pooling mode BEFORE the first database access
set_db_pooling_mode()

import db_utils as db_tools
from routes import register_blueprints

logger = configure_logging()


def create_app(dj_settings=None):
    """
    Build the Flask app with every blueprint registered

    Args:
        dj_settings: Optional DJSettings overriding the environment
    """
    app = Flask(__name__)
    CORS(app)
    if dj_settings is not None:
        app.config['DJ_SETTINGS'] = dj_settings
    init_app_config(app)
    register_blueprints(app)

    # Request/response logging
    @app.before_request
    def log_request():
        """Log incoming requests"""
        logger.info(f"{request.method} {request.path}")

    @app.after_request
    def log_response(response):
        """Log response status"""
        logger.info(f"{request.method} {request.path} - {response.status_code}")
        return response

    return app


app = create_app()

logger.info(f"Ollama URL: {os.environ.get('OLLAMA_URL', 'http://localhost:11434')}")
logger.info(f"Navidrome configured: {bool(os.environ.get('NAVIDROME_URL'))}")
logger.info(f"Flask app initialized in PID {os.getpid()}")


def cleanup_connections():
    """Close the connection pool on shutdown"""
    logger.info("Shutting down connection pool...")
    db_tools.close_connection_pool()
    logger.info("Connection pool closed")

atexit.register(cleanup_connections)


if __name__ == '__main__':
    # Running directly with 'python app.py' (not gunicorn)
    logger.info("Starting Flask application directly (not gunicorn)...")
    logger.info("Database connection pool will initialize on first request")

    db_tools.start_keepalive_thread()

    try:
        app.run(debug=True, host='0.0.0.0', port=int(os.environ.get('PORT', 5001)))
    finally:
        logger.info("Shutting down...")
        db_tools.stop_keepalive_thread()
        db_tools.close_connection_pool()
        logger.info("Shutdown complete")

"""Flask web app for the User Story Quality Assistant."""

import os
import logging
from typing import Dict, Any, Optional

from dotenv import load_dotenv
from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from .api.routes import register_routes
from .services import StoryWorkflowService
from .utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    "ANALYZE_RATE_LIMIT": "20 per hour",
    "RATELIMIT_STORAGE_URI": "memory://",
    "RATELIMIT_ENABLED": True,
    "JSON_SORT_KEYS": False,
}


def configure_logging() -> None:
    """Configure root logging (DEBUG in development, INFO otherwise)."""
    logging.basicConfig(
        level=logging.INFO if os.getenv('FLASK_ENV') != 'development' else logging.DEBUG,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def create_app(
    workflow_service: Optional[StoryWorkflowService] = None,
    config: Optional[Dict[str, Any]] = None
) -> Flask:
    """
    Build the Flask application.

    Args:
        workflow_service: Service to serve requests with (a default one if None)
        config: Flask config overrides (e.g. TESTING, RATELIMIT_ENABLED)

    Returns:
        Configured Flask app
    """
    load_dotenv()
    configure_logging()

    app = Flask(__name__)
    app.config.update(DEFAULT_CONFIG)
    app.config["ANALYZE_RATE_LIMIT"] = os.getenv("ANALYZE_RATE_LIMIT", DEFAULT_CONFIG["ANALYZE_RATE_LIMIT"])
    app.config["RATELIMIT_STORAGE_URI"] = os.getenv("RATE_LIMIT_STORAGE_URI", DEFAULT_CONFIG["RATELIMIT_STORAGE_URI"])
    if config:
        app.config.update(config)

    CORS(app)

    limiter = Limiter(
        key_func=get_remote_address,
        app=app,
        default_limits=["200 per day", "50 per hour"],
        storage_uri=app.config["RATELIMIT_STORAGE_URI"],
        headers_enabled=True
    )
    # Decorated views only hold a weak reference to the limiter
    app.extensions["rate_limiter"] = limiter

    app.extensions["workflow_service"] = workflow_service or StoryWorkflowService()

    register_error_handlers(app, debug=os.getenv('FLASK_ENV') == 'development')
    register_routes(app, limiter)

    logger.info("User Story Quality API initialized")
    return app


def main() -> None:
    """Run the development server."""
    app = create_app()
    port = int(os.getenv("PORT", "5000"))
    app.run(host="0.0.0.0", port=port, debug=os.getenv('FLASK_ENV') == 'development')


if __name__ == "__main__":
    main()

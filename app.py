# app.py
"""
Main Flask application entry point.
Initializes app, database, auth, routes, and the optional scheduler.
"""

import logging
import os

from dotenv import load_dotenv
from flask import Flask

from auth import init_auth
from config import get_config
from extensions import csrf, limiter
from models import db
from portfolio_manager import PortfolioManager
from scheduler import start_scheduler

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)


def configure_logging(app):
    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logging.getLogger().setLevel(level)


def create_app(config_name=None):
    """Application factory pattern"""

    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    app.config.from_object(get_config(config_name))
    configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)
    init_auth(app)

    # Initialize portfolio manager
    app.portfolio_manager = PortfolioManager(app)

    with app.app_context():
        db.create_all()

    # Register blueprints
    from routes.views import views_bp
    from routes.auth import auth_bp
    from routes.api import api_bp

    # JSON API is protected by the origin check instead of form tokens
    csrf.exempt(api_bp)

    app.register_blueprint(views_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(api_bp, url_prefix='/api')

    app.scheduler = start_scheduler(app) if app.config.get('SCHEDULER_ENABLED') else None

    logger.info(
        f"Tradeboard initialized (env={config_name}, "
        f"providers={[p.name for p in app.portfolio_manager.quote_service.providers]}, "
        f"scheduler={'on' if app.scheduler else 'off'})"
    )

    return app


if __name__ == '__main__':
    app = create_app()

    port = int(os.environ.get('PORT', 5000))

    app.run(
        host='0.0.0.0',
        port=port,
        debug=app.config['DEBUG']
    )

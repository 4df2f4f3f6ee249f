"""
Application factory for the consultation messenger.
"""

import os
import logging

from dotenv import load_dotenv
from flask import Flask, request

load_dotenv()

from config import config
from models import db
from blueprints.api_routes import api_bp
from blueprints.main_routes import main_bp
from utils.database import init_db
from utils.environment import EnvironmentConfig
from utils.error_handlers import register_error_handlers
from utils.realtime import MessageBroker

logger = logging.getLogger(__name__)


def configure_logging(app):
    """Configure root logging once, with a file handler when LOG_FILE is set"""
    handlers = [logging.StreamHandler()]
    log_file = app.config.get('LOG_FILE')
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, app.config.get('LOG_LEVEL', 'INFO')),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def create_app(config_name='default'):
    """Create and configure a Flask application"""
    config_class = config.get(config_name, config['default'])

    template_dir = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'templates')
    app = Flask(__name__, template_folder=template_dir)
    app.config.from_object(config_class)

    configure_logging(app)

    db.init_app(app)
    app.extensions['message_broker'] = MessageBroker()

    app.register_blueprint(main_bp)
    app.register_blueprint(api_bp, url_prefix='/api')
    register_error_handlers(app)

    @app.before_request
    def log_request_info():
        logger.debug('Request: %s %s', request.method, request.path)

    with app.app_context():
        init_db()

    is_valid, missing_vars = EnvironmentConfig().validate_environment()
    if not is_valid:
        logger.warning(
            f"Running without {', '.join(missing_vars)}: translation passes text through "
            "unchanged and summaries are unavailable"
        )

    logger.info(f"Application created with '{config_name}' configuration")
    return app

# failure_analytics/__init__.py
import atexit
import logging

from flask import Flask, jsonify
from flask_cors import CORS

from .config import config_by_name
from .database import DATABASE_TYPE, close_pool, get_database_info, init_db
from .monitoring import check_database_health, configure_logging, register_request_context
from .services import build_services

logger = logging.getLogger(__name__)


def create_app(config_name='default', database_path=None):
    """Create and configure an instance of the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])
    if database_path:
        app.config['DATABASE_PATH'] = database_path

    configure_logging(app)

    # Initialize database
    if app.config.get('INIT_DB'):
        init_db(app.config.get('DATABASE_PATH'))
    if DATABASE_TYPE == 'postgresql':
        atexit.register(close_pool)

    # Enable CORS
    CORS(app, resources={r"/api/*": {"origins": app.config.get('CORS_ORIGINS', '*')}})

    app.extensions['failure_analytics'] = build_services(app.config.get('DATABASE_PATH'))
    register_request_context(app)

    from .api import api_blueprint, register_error_handlers
    app.register_blueprint(api_blueprint, url_prefix='/api')
    register_error_handlers(app)

    @app.route("/health")
    def health_check():
        database = check_database_health(app.config.get('DATABASE_PATH'))
        database['info'] = get_database_info(app.config.get('DATABASE_PATH'))
        status_code = 200 if database['status'] == 'healthy' else 503
        return jsonify({'status': database['status'], 'database': database}), status_code

    logger.info(f"Failure analytics app created ({config_name}, {DATABASE_TYPE})")
    return app

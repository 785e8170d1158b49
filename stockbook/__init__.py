# Stockbook: batch-based inventory and sales tracking as a Flask JSON API.
# create_app() builds and configures the application; the models, store and
# services live in the sibling modules.

import logging
import os

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from .auth import load_current_user, register_auth_routes
from .errors import StockbookError
from .logging_config import configure_logging, get_logger
from .models import Product, Sale, StockBatch, User, db
from .views import register_routes

__all__ = ['create_app', 'db', 'User', 'Product', 'StockBatch', 'Sale']

log = get_logger('app')


# ==================== APPLICATION FACTORY ====================

def create_app(test_config=None):
    """
    Application factory function that creates and configures the Flask application.

    Args:
        test_config (dict, optional): Configuration dictionary for testing.
                                      If provided, overrides default config settings.

    Returns:
        Flask: Configured Flask application instance ready to run.
    """
    app = Flask(__name__, instance_relative_config=True)

    # ==================== APPLICATION CONFIGURATION ====================
    # SQLite database lives in the instance folder unless STOCKBOOK_DATABASE_URL is set
    db_path = os.path.join(app.instance_path, 'stockbook.db')
    app.config.from_mapping(
        SECRET_KEY=os.environ.get('STOCKBOOK_SECRET', 'dev-secret'),  # Signs the session cookie
        SQLALCHEMY_DATABASE_URI=os.environ.get('STOCKBOOK_DATABASE_URL', f'sqlite:///{db_path}'),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,  # Disable modification tracking for performance
        LOG_LEVEL=os.environ.get('STOCKBOOK_LOG_LEVEL', 'INFO'),
        MAX_CONTENT_LENGTH=5 * 1024 * 1024,  # CSV upload cap, 5 MB
        DEFAULT_PAGE_SIZE=10,  # Rows per page when no limit is given
        MAX_PAGE_SIZE=100,  # Larger limits are clamped to this
        CURRENCY=os.environ.get('STOCKBOOK_CURRENCY', 'PKR'),  # Shown in the weekly narrative
        CLOCK=None,  # callable returning naive-UTC now; None means the wall clock
    )

    # Override config with test settings if provided
    if test_config:
        app.config.update(test_config)

    configure_logging(logging.getLevelName(str(app.config['LOG_LEVEL']).upper()))

    if app.config['SQLALCHEMY_DATABASE_URI'].startswith(f'sqlite:///{app.instance_path}'):
        os.makedirs(app.instance_path, exist_ok=True)

    db.init_app(app)

    # ==================== DATABASE INITIALIZATION ====================
    with app.app_context():
        db.create_all()

    # ==================== AUTHENTICATION & SESSION MANAGEMENT ====================
    app.before_request(load_current_user)

    # ==================== ERROR HANDLERS ====================

    @app.errorhandler(StockbookError)
    def handle_stockbook_error(exc):
        if exc.http_status >= 500:
            log.error('%s: %s %s', exc.code, exc.message,
                      {k: v for k, v in vars(exc).items() if k != 'message'})
        return jsonify(exc.to_dict()), exc.http_status

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        code = (exc.name or 'error').upper().replace(' ', '_')
        return jsonify({'error': code, 'message': exc.description}), exc.code

    register_auth_routes(app)
    register_routes(app)

    log.info('stockbook app created (testing=%s)', app.testing)
    return app

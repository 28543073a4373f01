"""
Pricing Rule Sync
Flask application factory
"""
import os
import re
import logging
from flask import Flask
from flask_cors import CORS

from .extensions import db, migrate
from .config import get_config, validate_config
from .utils.cache import init_cache
from .utils.errors import pricing_error_response
from .utils.exceptions import PricingError
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def create_app(config_name: str = None) -> Flask:
    """
    Application factory for creating Flask app instances.

    Args:
        config_name: Configuration environment (development, production, testing)

    Returns:
        Configured Flask application
    """
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    # Setup logging before anything else
    setup_logging()
    validate_config(config_name)

    app = Flask(__name__)
    app.config.from_object(get_config(config_name))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Initialize caching (Redis with graceful fallback)
    init_cache(app)

    # Configure CORS - allow the embedded admin and local frontend
    cors_origins = [
        'http://localhost:5173',
        'http://127.0.0.1:5173',
        'https://admin.shopify.com',
        re.compile(r'https://.*\.myshopify\.com'),
    ]
    CORS(app, origins=cors_origins, supports_credentials=True,
         allow_headers=['Content-Type', 'Authorization', 'X-Shop-Domain'])

    # Register blueprints
    register_blueprints(app)

    # Register error handlers
    register_error_handlers(app)

    # Health check endpoint
    @app.route('/health')
    def health_check():
        return {'status': 'healthy', 'service': 'pricing-rule-sync'}

    logger.info('Pricing rule sync app created (%s)', config_name)
    return app


def register_blueprints(app: Flask) -> None:
    """Register all API blueprints."""
    from .api.pricing_rules import pricing_rules_bp
    from .api.catalog import catalog_bp
    from .api.discounts import discounts_bp
    from .api.proxy import proxy_bp

    app.register_blueprint(pricing_rules_bp, url_prefix='/api')
    app.register_blueprint(catalog_bp, url_prefix='/api/catalog')
    app.register_blueprint(discounts_bp, url_prefix='/api/discounts')
    app.register_blueprint(proxy_bp, url_prefix='/api')


def register_error_handlers(app: Flask) -> None:
    """Register error handlers."""

    @app.errorhandler(PricingError)
    def pricing_error(error):
        return pricing_error_response(error)

    @app.errorhandler(400)
    def bad_request(error):
        return {'error': {'message': str(error), 'code': 'INVALID_REQUEST'}}, 400

    @app.errorhandler(404)
    def not_found(error):
        return {'error': {'message': str(error), 'code': 'NOT_FOUND'}}, 404

    @app.errorhandler(500)
    def internal_error(error):
        return {'error': {'message': 'Internal server error', 'code': 'INTERNAL_ERROR'}}, 500

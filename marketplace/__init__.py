from flask import Flask, jsonify
from flask_migrate import Migrate
from flask_login import LoginManager
from marketplace.extensions import db
from marketplace.config import Config
from marketplace.errors import MarketplaceError
import logging

logger = logging.getLogger(__name__)

migrate = Migrate()
login_manager = LoginManager()


def _configure_logging(app):
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(app.config['LOG_FILE']),
            logging.StreamHandler()
        ]
    )


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)
    _configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    from marketplace.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Not logged in'}), 401

    @app.errorhandler(MarketplaceError)
    def handle_marketplace_error(e):
        logger.info(
            "Request rejected (%s): %s", e.code, e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(500)
    def handle_internal_error(e):
        logger.error(
            "Unhandled error: %s",
            getattr(e, 'original_exception', e),
            exc_info=getattr(e, 'original_exception', None))
        return jsonify({'error': 'Internal server error'}), 500

    # Register blueprints
    from marketplace.blueprints import (
        boosts,
        checkout,
        designs,
        orders,
        payments,
        quotes,
        returns,
        shipments,
    )

    app.register_blueprint(quotes.bp, url_prefix='/api')
    app.register_blueprint(designs.bp, url_prefix='/api')
    app.register_blueprint(checkout.bp, url_prefix='/api')
    app.register_blueprint(orders.bp, url_prefix='/api')
    app.register_blueprint(payments.bp, url_prefix='/api')
    app.register_blueprint(returns.bp, url_prefix='/api')
    app.register_blueprint(shipments.bp, url_prefix='/api')
    app.register_blueprint(boosts.bp, url_prefix='/api')

    # Note: Database tables are managed via Flask-Migrate
    # Use 'flask db upgrade' to create/update tables

    logger.info("Marketplace application initialized")
    return app

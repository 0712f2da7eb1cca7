import logging
import os
from flask import Flask, jsonify
from stokvel.extensions import db, login_manager
from stokvel.errors import StokvelError
from config import Config


def configure_logging(app):
    logging.basicConfig(
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )
    logging.getLogger('stokvel').setLevel(app.config['LOG_LEVEL'])


def register_error_handlers(app):
    @app.errorhandler(StokvelError)
    def handle_stokvel_error(error):
        return jsonify(error.to_dict()), error.status_code

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'success': False, 'message': 'Authentication required'}), 401


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    login_manager.init_app(app)

    # User loader for Flask-Login
    from stokvel.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    register_error_handlers(app)

    # Register blueprints
    from stokvel.routes.auth import auth_bp
    from stokvel.routes.groups import groups_bp
    from stokvel.routes.contributions import contributions_bp
    from stokvel.routes.loans import loans_bp
    from stokvel.routes.admin import admin_bp
    from stokvel.routes.notifications import notifications_bp
    from stokvel.routes.payments import payments_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(groups_bp)
    app.register_blueprint(contributions_bp)
    app.register_blueprint(loans_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(payments_bp)

    uri = app.config['SQLALCHEMY_DATABASE_URI']
    if uri.startswith('sqlite:///'):
        os.makedirs(os.path.dirname(uri[len('sqlite:///'):]) or '.', exist_ok=True)

    with app.app_context():
        db.create_all()
        app.logger.info("Database tables ready")

    return app

import logging

from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_wtf.csrf import CSRFProtect
from sqlalchemy import event
from sqlalchemy.engine import Engine

# Initialize extensions
db = SQLAlchemy()
csrf = CSRFProtect()

logger = logging.getLogger(__name__)


# Enable foreign key constraints for SQLite
@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite"""
    if 'sqlite' in str(type(dbapi_conn)).lower():
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_app(config_name=None):
    from crm.config import config, get_config_name

    app = Flask(__name__)
    app.config.from_object(config[config_name or get_config_name()])

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
    )
    app.logger.setLevel(app.config['LOG_LEVEL'])

    # Initialize extensions
    db.init_app(app)
    csrf.init_app(app)

    # Fail at startup rather than at the first priced measurement
    from crm.pricing_config import load_pricing_table
    load_pricing_table(app.config['PRICING_TABLE_PATH'])

    register_error_handlers(app)

    # Register blueprints
    from crm.routes.main import bp as main_bp
    from crm.routes.jobs import bp as jobs_bp
    from crm.routes.estimates import bp as estimates_bp
    from crm.routes.analytics import bp as analytics_bp
    from crm.routes.pricing import bp as pricing_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(jobs_bp, url_prefix='/jobs')
    app.register_blueprint(estimates_bp, url_prefix='/estimates')
    app.register_blueprint(analytics_bp, url_prefix='/analytics')
    app.register_blueprint(pricing_bp, url_prefix='/pricing')

    # Create tables
    with app.app_context():
        from crm import models  # noqa: F401
        db.create_all()

    return app


def register_error_handlers(app):
    from crm.errors import CRMError

    @app.errorhandler(CRMError)
    def handle_crm_error(error):
        db.session.rollback()
        if error.status_code >= 500:
            app.logger.error("%s: %s", error.code, error.message)
        else:
            app.logger.info("%s: %s", error.code, error.message)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'success': False, 'error': 'Not Found', 'code': 'NOT_FOUND'}), 404

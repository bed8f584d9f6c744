# backend/app/__init__.py
#   Flask application factory for the PostureLab capture backend.
import logging


def create_app(config_overrides: dict = None):
    """
    Build the Flask app.

    config_overrides is applied last, so tests can inject REDIS_CLIENT,
    DRAFT_STORE, BLOB_STORAGE, RECORD_STORE or TARGET_DIRECTORY fakes.
    """
    from flasgger import Swagger
    from flask import Flask
    from flask_jwt_extended import JWTManager

    from .config.settings import settings
    from .database import init_db
    from .middleware.request_id import register_request_id_middleware
    from .PostureLab.CaptureAPI.CaptureRoutes import capture_bp
    from .routes.health_routes import health_bp

    app = Flask(__name__)
    app.config.update(settings.flask_config())
    if config_overrides:
        app.config.update(config_overrides)

    logging.basicConfig(level=logging.INFO)
    app.logger.setLevel(logging.INFO)

    JWTManager(app)
    Swagger(app, template={
        "info": {"title": "PostureLab Capture API", "version": "1.0"},
        "securityDefinitions": {
            "BearerAuth": {"type": "apiKey", "name": "Authorization", "in": "header"},
        },
    })
    init_db(app, create_tables=app.config.get("AUTO_CREATE_TABLES", True))
    register_request_id_middleware(app)

    app.register_blueprint(health_bp)
    app.register_blueprint(capture_bp)
    return app

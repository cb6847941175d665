"""
Application factory for the TAGit asset allocation API.

Usage::

    from app import create_app
    app = create_app()           # Uses FLASK_ENV to pick config.
    app = create_app("testing")  # Explicit config for tests.
"""

import logging
import os

from flask import Flask
from werkzeug.exceptions import HTTPException

from .config import config_by_name
from .exceptions import ServiceError
from .extensions import db, login_manager, migrate

logger = logging.getLogger(__name__)


def create_app(config_name: str | None = None) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        config_name: One of 'development', 'testing', or 'production'.
                     Defaults to the FLASK_ENV environment variable,
                     falling back to 'development'.

    Returns:
        A fully configured Flask application instance.
    """
    # Resolve the configuration class.
    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")
    config_class = config_by_name.get(config_name)
    if config_class is None:
        raise ValueError(
            f"Unknown config '{config_name}'. "
            f"Valid options: {list(config_by_name.keys())}"
        )

    app = Flask(__name__)
    app.config.from_object(config_class)

    # Refuse to start production with insecure or missing settings.
    if config_name == "production":
        config_class.validate_production_secrets(app.config)

    # -- Configure logging -------------------------------------------------
    _configure_logging(app)

    # -- Initialize extensions ---------------------------------------------
    _register_extensions(app)

    # -- Register blueprints -----------------------------------------------
    _register_blueprints(app)

    # -- Register error handlers -------------------------------------------
    _register_error_handlers(app)

    # -- Register custom CLI commands --------------------------------------
    _register_cli_commands(app)

    return app


def _register_extensions(app: Flask) -> None:
    """Bind all Flask extensions to the application instance."""
    # pylint: disable=import-outside-toplevel
    from .services.auth_service import load_user_from_request
    from .services.notification_service import init_dispatcher
    from .tasks import celery_init_app

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    # Bearer tokens only: no session cookie identifies a user.
    login_manager.request_loader(load_user_from_request)

    init_dispatcher(app)

    # Configures the worker side only; no task runs in this process.
    celery_init_app(app)


def _register_blueprints(app: Flask) -> None:
    """
    Import and register each blueprint with its URL prefix.

    Blueprints are imported inside this function to avoid circular
    imports — models and services can safely import ``db`` from
    extensions at module level.
    """
    # pylint: disable=import-outside-toplevel

    # Main blueprint: health check at /health.
    from .blueprints.main import bp as main_bp

    app.register_blueprint(main_bp)

    # Auth: current user, user directory and push tokens.
    from .blueprints.auth import bp as auth_bp

    app.register_blueprint(auth_bp, url_prefix="/api/v1/auth")

    # Allocations: lifecycle and approval workflow.
    from .blueprints.allocations import bp as allocations_bp

    app.register_blueprint(allocations_bp, url_prefix="/api/v1/allocation")

    # Assets: the catalog.
    from .blueprints.assets import bp as assets_bp

    app.register_blueprint(assets_bp, url_prefix="/api/v1/asset")

    # Purchases.
    from .blueprints.purchases import bp as purchases_bp

    app.register_blueprint(purchases_bp, url_prefix="/api/v1/purchase")


def _register_error_handlers(app: Flask) -> None:
    """Render service errors and HTTP errors as JSON envelopes."""
    # pylint: disable=import-outside-toplevel
    from .responses import failure

    @app.errorhandler(ServiceError)
    def service_error(error: ServiceError):
        """Domain errors raised by the service layer."""
        db.session.rollback()
        logger.info("%s: %s", type(error).__name__, error.message)
        return failure(error.message, error.status_code)

    @app.errorhandler(HTTPException)
    def http_error(error: HTTPException):
        """400/401/403/404/405 and friends."""
        return failure(error.description or error.name, error.code or 500)

    @app.errorhandler(500)
    def internal_error(error):  # pylint: disable=unused-argument
        """Handle 500 Internal Server Error."""
        db.session.rollback()
        return failure("Internal server error", 500)

    @login_manager.unauthorized_handler
    def unauthorized():
        return failure("Not authorized to access this route", 401)


def _register_cli_commands(app: Flask) -> None:
    """Register custom Flask CLI commands (e.g., flask db-check)."""
    from .cli import register_commands  # pylint: disable=import-outside-toplevel

    register_commands(app)


def _configure_logging(app: Flask) -> None:
    """
    Set the root log level from ``LOG_LEVEL``.

    SQLAlchemy's engine logger is kept at WARNING unless SQL echo is
    explicitly wanted.
    """
    log_level = app.config.get("LOG_LEVEL", "INFO")
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    if not app.config.get("SQLALCHEMY_ECHO"):
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

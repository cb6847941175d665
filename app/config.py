"""
Application configuration classes.

Each class represents a deployment environment. The factory function
``create_app`` in ``app/__init__.py`` selects the appropriate config
based on the FLASK_ENV environment variable.

Secrets (signing key, Firebase service account, SMTP credentials) are
read from the environment so they never appear in source control.
Missing push or mail credentials do not stop the application: the
corresponding transport starts disabled and every send is reported as
a failure by the notification dispatcher.
"""

import logging
import os

# Module-level logger for startup warnings emitted by config classes.
_logger = logging.getLogger(__name__)

# =========================================================================
# Sentinel for detecting unset SECRET_KEY in production.
# =========================================================================
_DEFAULT_SECRET_KEY = "dev-secret-change-me"


def _env_flag(name: str, default: str) -> bool:
    """Read a boolean flag from the environment ("true"/"false")."""
    return os.environ.get(name, default).lower() == "true"


class BaseConfig:
    """
    Shared configuration values inherited by all environments.
    """

    # -- Flask core --------------------------------------------------------
    SECRET_KEY: str = os.environ.get("SECRET_KEY", _DEFAULT_SECRET_KEY)

    # Sort keys off so API responses keep model field order.
    JSON_SORT_KEYS: bool = False

    # -- SQLAlchemy --------------------------------------------------------
    SQLALCHEMY_DATABASE_URI: str = os.environ.get(
        "DATABASE_URL", "sqlite:///tagit-dev.db"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS: bool = False

    # Echo SQL statements to the log for debugging (override per env).
    SQLALCHEMY_ECHO: bool = False

    # -- Bearer tokens -----------------------------------------------------
    # Lifetime of a signed access token, in seconds.
    ACCESS_TOKEN_MAX_AGE: int = int(
        os.environ.get("ACCESS_TOKEN_MAX_AGE", str(60 * 60 * 24))
    )

    # -- Push notifications (Firebase Cloud Messaging) ---------------------
    # Full service-account JSON document, as downloaded from the Firebase
    # console.  Leave unset to run with push disabled.
    FIREBASE_SERVICE_ACCOUNT_JSON: str = os.environ.get(
        "FIREBASE_SERVICE_ACCOUNT_JSON", ""
    )

    # -- Email (SMTP) ------------------------------------------------------
    MAIL_SERVER: str = os.environ.get("MAIL_SERVER", "")
    MAIL_PORT: int = int(os.environ.get("MAIL_PORT", "587"))
    MAIL_USE_TLS: bool = _env_flag("MAIL_USE_TLS", "true")
    MAIL_USE_SSL: bool = _env_flag("MAIL_USE_SSL", "false")
    MAIL_USERNAME: str = os.environ.get("MAIL_USERNAME", "")
    MAIL_PASSWORD: str = os.environ.get("MAIL_PASSWORD", "")
    MAIL_DEFAULT_SENDER: str = os.environ.get("MAIL_DEFAULT_SENDER", "")
    MAIL_TIMEOUT: int = int(os.environ.get("MAIL_TIMEOUT", "10"))

    # Maximum concurrent SMTP sessions during an email fan-out.
    MAIL_MAX_CONCURRENT_SENDS: int = int(
        os.environ.get("MAIL_MAX_CONCURRENT_SENDS", "5")
    )

    # Product name used in notification titles and email subjects.
    NOTIFICATION_BRAND: str = os.environ.get("NOTIFICATION_BRAND", "TAGit")

    # -- Background worker (Celery) ----------------------------------------
    # Read by celery_init_app(); the worker and beat run as separate
    # processes (see celery_worker.py).
    CELERY: dict = {
        "broker_url": os.environ.get("CELERY_BROKER_URL", "redis://localhost:6379/0"),
        "result_backend": os.environ.get(
            "CELERY_RESULT_BACKEND", "redis://localhost:6379/0"
        ),
        "accept_content": ["json"],
        "task_serializer": "json",
        "result_serializer": "json",
        "timezone": "UTC",
        "task_ignore_result": True,
    }

    # -- Allocation expiry sweep -------------------------------------------
    # Puts the sweep on the beat schedule; it never runs in the web process.
    EXPIRY_SWEEP_ENABLED: bool = _env_flag("EXPIRY_SWEEP_ENABLED", "true")
    EXPIRY_SWEEP_INTERVAL_SECONDS: int = int(
        os.environ.get("EXPIRY_SWEEP_INTERVAL_SECONDS", "600")
    )

    # -- Logging -----------------------------------------------------------
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")

    # =====================================================================
    # Production validation helpers
    # =====================================================================

    @classmethod
    def validate_production_secrets(cls, app_config: dict) -> None:
        """
        Verify that all required secrets are set for production.

        Called by ``create_app()`` when ``config_name == 'production'``.
        Raises ``RuntimeError`` for hard requirements and logs warnings
        for soft requirements.

        Args:
            app_config: The ``app.config`` dict after loading the
                        config class.

        Raises:
            RuntimeError: If any critical secret is missing or still
                          set to its insecure default value.
        """
        errors: list[str] = []

        # -- SECRET_KEY (hard fail) ----------------------------------------
        # Access tokens are signed with this key.
        if app_config.get("SECRET_KEY") == _DEFAULT_SECRET_KEY:
            errors.append(
                "SECRET_KEY is still the insecure default. "
                "Generate one with: python -c "
                '"import secrets; print(secrets.token_hex(32))"'
            )

        if app_config.get("SQLALCHEMY_DATABASE_URI", "").startswith("sqlite"):
            errors.append(
                "DATABASE_URL points at SQLite. Configure the production "
                "database server."
            )

        if errors:
            combined = "\n  - ".join(errors)
            raise RuntimeError(f"Production configuration errors:\n  - {combined}")

        # -- Notification transports (soft warnings) -----------------------
        if not app_config.get("FIREBASE_SERVICE_ACCOUNT_JSON"):
            _logger.warning(
                "FIREBASE_SERVICE_ACCOUNT_JSON is not set, push "
                "notifications are disabled."
            )
        if not app_config.get("MAIL_SERVER"):
            _logger.warning(
                "MAIL_SERVER is not set, email notifications are disabled."
            )

        if app_config.get("LOG_LEVEL", "").upper() == "DEBUG":
            _logger.warning(
                "LOG_LEVEL=DEBUG is not recommended in production: "
                "recipient addresses and push tokens appear in debug logs."
            )


class DevelopmentConfig(BaseConfig):
    """Development environment: verbose logging, SQL echo enabled."""

    DEBUG: bool = True
    SQLALCHEMY_ECHO: bool = True
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "DEBUG")


class TestingConfig(BaseConfig):
    """
    Testing environment: in-memory SQLite, eager Celery, no beat schedule.

    The sweep is driven explicitly by the tests, and notification
    transports are replaced with fakes by the test fixtures.
    """

    TESTING: bool = True
    SECRET_KEY: str = "testing-secret"
    SQLALCHEMY_DATABASE_URI: str = os.environ.get("TEST_DATABASE_URL", "sqlite://")
    FIREBASE_SERVICE_ACCOUNT_JSON: str = ""
    MAIL_SERVER: str = ""
    EXPIRY_SWEEP_ENABLED: bool = False
    CELERY: dict = {
        **BaseConfig.CELERY,
        "broker_url": "memory://",
        "result_backend": "cache+memory://",
        "task_always_eager": True,
    }
    LOG_LEVEL: str = "DEBUG"


class ProductionConfig(BaseConfig):
    """
    Production environment: strict settings, no debug output.

    The application factory calls ``validate_production_secrets()`` at
    startup and will refuse to launch if critical values are missing.
    """

    DEBUG: bool = False
    SQLALCHEMY_ECHO: bool = False
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "WARNING")


# Lookup dict used by the application factory.
config_by_name: dict[str, type[BaseConfig]] = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
}

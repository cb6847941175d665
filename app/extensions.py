"""
Flask extension instances.

Extensions are created here without binding to an application so that
the application factory can call ``init_app()`` on each one during
``create_app()``.  This avoids circular imports and follows the
standard Flask extension pattern.

The notification dispatcher is not a Flask extension in the package
sense, but it is registered on ``app.extensions`` by the factory so
services can reach it through ``current_app`` instead of a module-level
global.
"""

from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

# -- Database ORM ----------------------------------------------------------
# The ``db`` instance is imported by models and services throughout the app.
db = SQLAlchemy()

# -- Schema migrations (Alembic via Flask-Migrate) -------------------------
migrate = Migrate()

# -- Bearer-token authentication -------------------------------------------
# The API is stateless: users are loaded per request from the
# Authorization header (see ``auth_service.load_user_from_request``).
login_manager = LoginManager()

"""
Assets blueprint — the asset catalog API.
"""

from flask import Blueprint

bp = Blueprint("assets", __name__)

# Import routes after blueprint creation to avoid circular imports.
from app.blueprints.assets import routes  # noqa: E402, F401

"""
Purchases blueprint — purchase request API.
"""

from flask import Blueprint

bp = Blueprint("purchases", __name__)

# Import routes after blueprint creation to avoid circular imports.
from app.blueprints.purchases import routes  # noqa: E402, F401

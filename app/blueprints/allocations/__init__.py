"""
Allocations blueprint — the allocation lifecycle API.
"""

from flask import Blueprint

bp = Blueprint("allocations", __name__)

# Import routes after blueprint creation to avoid circular imports.
from app.blueprints.allocations import routes  # noqa: E402, F401

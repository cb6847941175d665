"""
Celery entry point for the TAGit background worker.

Usage::

    celery -A celery_worker worker --beat --loglevel=info

Run exactly one beat scheduler per deployment (``--beat`` on a single
worker, or a separate ``celery -A celery_worker beat``), otherwise the
expiry sweep is scheduled more than once per interval.
"""

import os

from app import create_app

flask_app = create_app(os.environ.get("FLASK_ENV", "production"))
celery_app = flask_app.extensions["celery"]

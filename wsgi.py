"""
Waitress WSGI entry point for the TAGit API.

Usage::

    python wsgi.py

This process only serves HTTP.  The allocation expiry sweep runs in
the Celery worker started from ``celery_worker.py``.
"""

import logging
import os

from waitress import serve

from app import create_app

logger = logging.getLogger("wsgi")

# Production config unless FLASK_ENV says otherwise.
app = create_app(os.environ.get("FLASK_ENV", "production"))

if __name__ == "__main__":
    host = os.environ.get("WAITRESS_HOST", "0.0.0.0")
    port = int(os.environ.get("WAITRESS_PORT", "8080"))
    threads = int(os.environ.get("WAITRESS_THREADS", "8"))
    logger.warning("Starting Waitress on %s:%d with %d threads", host, port, threads)
    serve(app, host=host, port=port, threads=threads)

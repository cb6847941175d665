"""
Celery integration and background tasks.

``celery_init_app`` binds a Celery app to the Flask app: every task runs
inside an application context, and the configuration comes from the
``CELERY`` dict in ``app.config``.  When ``EXPIRY_SWEEP_ENABLED`` is
true the allocation expiry sweep is put on the beat schedule.

Nothing runs in the web process.  The sweep only fires in a separate
worker started from ``celery_worker.py``::

    celery -A celery_worker worker --beat --loglevel=info
"""

import logging
from dataclasses import asdict

from celery import Celery, Task, shared_task
from flask import Flask

logger = logging.getLogger(__name__)

EXTENSION_KEY = "celery"
SWEEP_TASK_NAME = "app.tasks.sweep_expired_allocations"
SWEEP_SCHEDULE_NAME = "sweep-expired-allocations"


def celery_init_app(app: Flask) -> Celery:
    """Create the Celery app for ``app`` and register it on ``app.extensions``."""

    class FlaskTask(Task):
        def __call__(self, *args, **kwargs):
            with app.app_context():
                return self.run(*args, **kwargs)

    celery_app = Celery(app.name, task_cls=FlaskTask)
    celery_app.config_from_object(app.config["CELERY"])

    if app.config.get("EXPIRY_SWEEP_ENABLED"):
        interval = max(1, int(app.config.get("EXPIRY_SWEEP_INTERVAL_SECONDS", 600)))
        celery_app.conf.beat_schedule = {
            SWEEP_SCHEDULE_NAME: {
                "task": SWEEP_TASK_NAME,
                "schedule": float(interval),
                # A run still queued when the next one is due is dropped.
                "options": {"expires": interval},
            }
        }

    celery_app.set_default()
    app.extensions[EXTENSION_KEY] = celery_app
    return celery_app


@shared_task(name=SWEEP_TASK_NAME, ignore_result=True)
def sweep_expired_allocations():
    """Complete approved allocations whose end time has passed."""
    # pylint: disable=import-outside-toplevel
    from app.extensions import db
    from app.services import expiry_service

    try:
        report = expiry_service.run_expiry_sweep()
    except Exception as exc:
        db.session.rollback()
        logger.error("Expiry sweep run failed: %s", exc)
        raise
    return asdict(report)

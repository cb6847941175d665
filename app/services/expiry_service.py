"""
Expiry service — completes approved allocations whose window has ended.

``run_expiry_sweep`` is called periodically by the Celery beat task in
``app.tasks`` and on demand by ``flask sweep-allocations``.  Each
allocation is committed on its own: one bad record (unparseable end
time, concurrent edit, database error) is logged and counted, and the
sweep moves on.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from app.exceptions import ServiceError
from app.extensions import db
from app.models.allocation import STATUS_APPROVED, Allocation
from app.services import allocation_service

logger = logging.getLogger(__name__)

# dd/mm/yyyy or dd-mm-yyyy (one or two digit day and month).
_DAY_FIRST_PATTERN = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})$")


@dataclass
class SweepReport:
    """Counters for one sweep run."""

    examined: int = 0
    completed: int = 0
    skipped_invalid: int = 0
    failed: int = 0


def parse_end_time(value: Any) -> datetime | None:
    """
    Parse an allocation end time into an aware UTC datetime.

    Accepts ``datetime`` and ``date`` objects, ISO-8601 strings (``Z``
    suffix or numeric offset allowed) and the day-first ``dd/mm/yyyy``
    and ``dd-mm-yyyy`` forms.  Values without a timezone are taken as
    UTC.

    Returns:
        The parsed datetime, or None if the value is empty or not a
        valid date (including out-of-range days and months).

    Examples::

        parse_end_time("25/12/2024")            # 2024-12-25 00:00 UTC
        parse_end_time("2024-12-25T10:00:00Z")  # 2024-12-25 10:00 UTC
        parse_end_time("not-a-date")            # None
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        parsed = _parse_text(text)
        if parsed is None:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _parse_text(text: str) -> datetime | None:
    match = _DAY_FIRST_PATTERN.match(text)
    if match:
        day, month, year = (int(part) for part in match.groups())
        try:
            return datetime(year, month, day)
        except ValueError:
            return None

    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def run_expiry_sweep(now: datetime | None = None) -> SweepReport:
    """
    Complete every approved allocation whose end time is at or before ``now``.

    Args:
        now: Reference time (defaults to the current UTC time).  Naive
             values are taken as UTC.

    Returns:
        A ``SweepReport`` with per-outcome counts.
    """
    now = parse_end_time(now) if now is not None else datetime.now(timezone.utc)
    report = SweepReport()

    candidates = (
        Allocation.query.filter(
            Allocation.status == STATUS_APPROVED,
            Allocation.end_time.isnot(None),
            Allocation.end_time != "",
        )
        .order_by(Allocation.id)
        .all()
    )

    for allocation in candidates:
        report.examined += 1
        allocation_id = allocation.id

        end_time = parse_end_time(allocation.end_time)
        if end_time is None:
            logger.warning(
                "Allocation %s has an unparseable end time %r, skipping",
                allocation_id,
                allocation.end_time,
            )
            report.skipped_invalid += 1
            continue

        if end_time > now:
            continue

        try:
            allocation_service.expire_allocation(allocation, now)
            report.completed += 1
        except (ServiceError, SQLAlchemyError) as exc:
            db.session.rollback()
            logger.error("Failed to expire allocation %s: %s", allocation_id, exc)
            report.failed += 1

    if report.examined:
        logger.info(
            "Expiry sweep: examined=%d completed=%d skipped_invalid=%d failed=%d",
            report.examined,
            report.completed,
            report.skipped_invalid,
            report.failed,
        )
    return report

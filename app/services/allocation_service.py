"""
Allocation service — the allocation lifecycle and its side effects.

State machine::

    (create) ──> pending ──approve──> approved ──expire──> completed
                    └─────reject────> rejected

Every allowed transition is listed in ``_TRANSITIONS``; anything else
raises ``InvalidStateError``.  ``expire`` is only driven by the expiry
sweep (``expiry_service``), never by an API call.

Each transition runs as one unit of work:

  1. Validate the transition against the current status.
  2. Mutate the allocation and flush it.  The ``version`` column makes
     the flush fail if another writer changed the row since it was
     loaded; that surfaces as ``InvalidStateError``.
  3. Apply the asset side effect through ``asset_sync_service``
     (savepoint, logged and discarded on failure).
  4. Commit allocation and asset together.
  5. Notify the audience (after commit, best-effort).

Notification audience for approve/reject, each with its own wording:
the recipient (second person), the requester, the asset's owner and
purchaser, and all admins.  A user only receives the message of the
first group they belong to, in that order.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.orm.exc import StaleDataError

from app.exceptions import InvalidStateError, NotFoundError, ValidationError
from app.extensions import db
from app.models.allocation import (
    STATUS_APPROVED,
    STATUS_COMPLETED,
    STATUS_PENDING,
    STATUS_REJECTED,
    Allocation,
)
from app.models.asset import Asset
from app.models.identifiers import is_valid_object_id
from app.models.user import ROLE_ADMIN, User
from app.services import asset_sync_service, recipient_service
from app.services.notification_service import get_dispatcher
from app.services.user_service import get_active_user_or_raise

logger = logging.getLogger(__name__)

EVENT_APPROVE = "approve"
EVENT_REJECT = "reject"
EVENT_EXPIRE = "expire"

# (current status, event) -> next status.
_TRANSITIONS: dict[tuple[str, str], str] = {
    (STATUS_PENDING, EVENT_APPROVE): STATUS_APPROVED,
    (STATUS_PENDING, EVENT_REJECT): STATUS_REJECTED,
    (STATUS_APPROVED, EVENT_EXPIRE): STATUS_COMPLETED,
}

# Fields the generic update may change, by current status.  Rejected
# and completed allocations are read-only.
_UPDATABLE_FIELDS: dict[str, frozenset[str]] = {
    STATUS_PENDING: frozenset(
        {"purpose", "start_time", "end_time", "allocated_to", "allocation_type"}
    ),
    STATUS_APPROVED: frozenset({"purpose", "start_time", "end_time"}),
}

# Fields owned by the transitions themselves.
_RESERVED_FIELDS = frozenset(
    {
        "id",
        "status",
        "request_status",
        "approved_by",
        "allocation_status_date",
        "rejection_reason",
        "asset",
        "owner",
        "allocated_by",
        "allocated_request_date",
        "version",
        "created_at",
        "updated_at",
    }
)

_MAX_WINDOW_LENGTH = 50


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =========================================================================
# Queries
# =========================================================================


def get_allocations() -> list[Allocation]:
    """Return every allocation, newest first."""
    return Allocation.query.order_by(Allocation.created_at.desc()).all()


def get_allocation_by_id(allocation_id: str) -> Allocation | None:
    """Return an allocation by primary key, or None."""
    if not is_valid_object_id(allocation_id):
        return None
    return db.session.get(Allocation, allocation_id.lower())


def get_allocation_or_raise(allocation_id: str) -> Allocation:
    """
    Return an allocation by primary key.

    Raises:
        ValidationError: If the id is malformed.
        NotFoundError:   If no allocation has this id.
    """
    if not is_valid_object_id(allocation_id):
        raise ValidationError(f"Invalid allocation id {allocation_id}")
    allocation = db.session.get(Allocation, allocation_id.lower())
    if allocation is None:
        raise NotFoundError(f"Allocation not found with id {allocation_id}")
    return allocation


def get_allocations_for_user(user_id: str) -> list[Allocation]:
    """Return allocations the user requested or received."""
    if not is_valid_object_id(user_id):
        raise ValidationError(f"Invalid user id {user_id}")
    user_id = user_id.lower()
    return (
        Allocation.query.filter(
            or_(
                Allocation.allocated_to_id == user_id,
                Allocation.allocated_by_id == user_id,
            )
        )
        .order_by(Allocation.created_at.desc())
        .all()
    )


def get_allocations_for_asset(asset_id: str) -> list[Allocation]:
    """Return every allocation of an asset, newest first."""
    if not is_valid_object_id(asset_id):
        raise ValidationError(f"Invalid asset id {asset_id}")
    return (
        Allocation.query.filter(Allocation.asset_id == asset_id.lower())
        .order_by(Allocation.created_at.desc())
        .all()
    )


# =========================================================================
# Create / update
# =========================================================================


def create_allocation(
    data: Mapping[str, Any],
    requested_by: User | None = None,
) -> Allocation:
    """
    Create a pending allocation and link the asset to it.

    Args:
        data:         Request body.  Required: ``allocated_to``,
                      ``asset``, ``allocation_type``.  Optional:
                      ``allocated_by`` (defaults to ``requested_by``),
                      ``purpose``, ``start_time``, ``end_time`` (also
                      accepted nested under ``duration``).
        requested_by: The authenticated caller.

    Returns:
        The new allocation.

    Raises:
        ValidationError: Missing or malformed fields.
        NotFoundError:   Unknown user or asset.
    """
    data = _flatten_duration(data)

    allocated_by_ref = data.get("allocated_by") or (
        requested_by.id if requested_by else None
    )
    allocated_by = get_active_user_or_raise(allocated_by_ref, "allocated_by")
    allocated_to = get_active_user_or_raise(data.get("allocated_to"), "allocated_to")
    asset = _load_asset(data.get("asset"))
    allocation_type = _clean_allocation_type(data.get("allocation_type"))

    allocation = Allocation(
        allocated_by_id=allocated_by.id,
        allocated_to_id=allocated_to.id,
        asset_id=asset.id,
        allocation_type=allocation_type,
        purpose=_clean_text(data.get("purpose"), "purpose"),
        start_time=_clean_window(data.get("start_time"), "start_time"),
        end_time=_clean_window(data.get("end_time"), "end_time"),
        status=STATUS_PENDING,
    )
    db.session.add(allocation)
    db.session.flush()

    asset_sync_service.on_allocation_created(allocation.id, asset.id).log_failure(
        logger, f"Linking asset {asset.id} to allocation {allocation.id}"
    )
    db.session.commit()

    logger.info(
        "Created allocation %s: asset %s -> user %s (%s) requested by %s",
        allocation.id,
        asset.id,
        allocated_to.id,
        allocation_type,
        allocated_by.id,
    )
    return allocation


def update_allocation(allocation_id: str, data: Mapping[str, Any]) -> Allocation:
    """
    Apply a generic update to an allocation.

    Only descriptive fields may change here; status, approver, asset
    and ownership are reserved for the dedicated transitions.  Which
    fields are accepted depends on the current status (see
    ``_UPDATABLE_FIELDS``).

    Raises:
        ValidationError:   Reserved, unknown, or malformed fields.
        NotFoundError:     Unknown allocation or recipient.
        InvalidStateError: The allocation is rejected or completed, or
                           a field is locked in the current status.
    """
    allocation = get_allocation_or_raise(allocation_id)
    data = _flatten_duration(data)

    reserved = sorted(key for key in data if key in _RESERVED_FIELDS or key.endswith("_id"))
    if reserved:
        raise ValidationError(
            "These fields can only be changed by the approve/reject workflow: "
            + ", ".join(reserved)
        )

    all_updatable = frozenset().union(*_UPDATABLE_FIELDS.values())
    unknown = sorted(key for key in data if key not in all_updatable)
    if unknown:
        raise ValidationError("Unknown allocation fields: " + ", ".join(unknown))

    allowed = _UPDATABLE_FIELDS.get(allocation.status)
    if allowed is None:
        raise InvalidStateError(
            f"Allocation {allocation.id} is {allocation.status} and can no longer be edited"
        )
    locked = sorted(key for key in data if key not in allowed)
    if locked:
        raise InvalidStateError(
            f"Fields {', '.join(locked)} cannot change while the allocation "
            f"is {allocation.status}"
        )

    if "purpose" in data:
        allocation.purpose = _clean_text(data["purpose"], "purpose")
    if "start_time" in data:
        allocation.start_time = _clean_window(data["start_time"], "start_time")
    if "end_time" in data:
        allocation.end_time = _clean_window(data["end_time"], "end_time")
    if "allocated_to" in data:
        allocation.allocated_to_id = get_active_user_or_raise(
            data["allocated_to"], "allocated_to"
        ).id
    if "allocation_type" in data:
        allocation.allocation_type = _clean_allocation_type(data["allocation_type"])
    allocation.updated_at = _utcnow()

    _flush_or_conflict(allocation.id)
    db.session.commit()

    logger.info("Updated allocation %s fields: %s", allocation.id, ", ".join(sorted(data)))
    return allocation


# =========================================================================
# Transitions
# =========================================================================


def approve_allocation(allocation_id: str, approver: User | None = None) -> Allocation:
    """
    Approve a pending allocation.

    The asset becomes unavailable and points at this allocation; for
    ``Owner`` allocations the recipient becomes the asset owner.

    Raises:
        ValidationError:   Malformed id.
        NotFoundError:     Unknown allocation.
        InvalidStateError: Not pending, asset already held by another
                           approved allocation, or concurrent change.
    """
    allocation = get_allocation_or_raise(allocation_id)
    next_status = _next_status(allocation, EVENT_APPROVE)
    _ensure_asset_free(allocation)

    # Captured before ownership moves so the previous owner is told.
    stakeholder_ids = _asset_stakeholder_ids(allocation)
    # Read before mutating: loading an expired attribute later would
    # autoflush the change outside _flush_or_conflict.
    approver_id = approver.id if approver is not None else None

    now = _utcnow()
    allocation.status = next_status
    allocation.request_status = True
    allocation.allocation_status_date = now
    allocation.updated_at = now
    if approver_id is not None:
        allocation.approved_by_id = approver_id
    _flush_or_conflict(allocation.id)

    asset_sync_service.on_allocation_approved(allocation).log_failure(
        logger, f"Asset update for approved allocation {allocation.id}"
    )
    db.session.commit()

    logger.info(
        "Approved allocation %s (type=%s, asset=%s, to=%s) by %s",
        allocation.id,
        allocation.allocation_type,
        allocation.asset_id,
        allocation.allocated_to_id,
        approver_id or "system",
    )
    _notify_transition(allocation, EVENT_APPROVE, stakeholder_ids)
    return allocation


def reject_allocation(
    allocation_id: str,
    actor: User | None = None,
    reason: str | None = None,
) -> Allocation:
    """
    Reject a pending allocation and return the asset to the pool.

    Raises:
        ValidationError:   Malformed id or reason.
        NotFoundError:     Unknown allocation.
        InvalidStateError: Not pending, or concurrent change.
    """
    allocation = get_allocation_or_raise(allocation_id)
    next_status = _next_status(allocation, EVENT_REJECT)
    reason = _clean_text(reason, "reason")
    stakeholder_ids = _asset_stakeholder_ids(allocation)
    actor_id = actor.id if actor is not None else None

    now = _utcnow()
    allocation.status = next_status
    allocation.request_status = False
    allocation.allocation_status_date = now
    allocation.updated_at = now
    allocation.rejection_reason = reason
    _flush_or_conflict(allocation.id)

    asset_sync_service.on_allocation_released(
        allocation.asset_id, allocation.id
    ).log_failure(logger, f"Asset release for rejected allocation {allocation.id}")
    db.session.commit()

    logger.info(
        "Rejected allocation %s by %s%s",
        allocation.id,
        actor_id or "system",
        f" (reason: {allocation.rejection_reason})" if allocation.rejection_reason else "",
    )
    _notify_transition(allocation, EVENT_REJECT, stakeholder_ids)
    return allocation


def expire_allocation(allocation: Allocation, now: datetime | None = None) -> Allocation:
    """
    Complete an approved allocation whose validity window has ended.

    Only called by the expiry sweep.  Commits on success.

    Raises:
        InvalidStateError: Not approved, or concurrent change.
    """
    next_status = _next_status(allocation, EVENT_EXPIRE)
    now = now or _utcnow()

    allocation.status = next_status
    allocation.allocation_status_date = now
    allocation.updated_at = now
    _flush_or_conflict(allocation.id)

    asset_sync_service.on_allocation_released(
        allocation.asset_id, allocation.id
    ).log_failure(logger, f"Asset release for expired allocation {allocation.id}")
    db.session.commit()

    logger.info(
        "Allocation %s completed, asset %s set available",
        allocation.id,
        allocation.asset_id,
    )
    return allocation


def _next_status(allocation: Allocation, event: str) -> str:
    """Look up the target status or raise ``InvalidStateError``."""
    next_status = _TRANSITIONS.get((allocation.status, event))
    if next_status is None:
        raise InvalidStateError(
            f"Cannot {event} allocation {allocation.id}: status is {allocation.status}"
        )
    return next_status


def _ensure_asset_free(allocation: Allocation) -> None:
    """An asset holds at most one approved allocation at a time."""
    if allocation.asset is not None and not allocation.asset.is_active:
        raise InvalidStateError(f"Asset {allocation.asset_id} has been retired")
    conflict = Allocation.query.filter(
        Allocation.asset_id == allocation.asset_id,
        Allocation.status == STATUS_APPROVED,
        Allocation.id != allocation.id,
    ).first()
    if conflict is not None:
        raise InvalidStateError(
            f"Asset {allocation.asset_id} is already allocated "
            f"(allocation {conflict.id})"
        )


def _flush_or_conflict(allocation_id: str) -> None:
    """Flush pending changes; a version mismatch becomes a conflict."""
    try:
        db.session.flush()
    except StaleDataError as exc:
        db.session.rollback()
        logger.warning("Concurrent modification of allocation %s", allocation_id)
        raise InvalidStateError(
            f"Allocation {allocation_id} was modified by another request; "
            "reload it and try again"
        ) from exc


# =========================================================================
# Notifications
# =========================================================================


@dataclass(frozen=True)
class _Message:
    """One audience's wording on both channels."""

    title: str
    body: str
    subject: str
    email_line: str


def _asset_stakeholder_ids(allocation: Allocation) -> set[str]:
    asset = allocation.asset
    if asset is None:
        return set()
    return recipient_service.normalize_identities([asset.owner_id, asset.purchaser_id])


def _notify_transition(
    allocation: Allocation,
    event: str,
    stakeholder_ids: set[str],
) -> None:
    """
    Send approve/reject notifications to every audience.

    Failures are logged per audience and never propagate.
    """
    try:
        dispatcher = get_dispatcher()
        brand = current_app.config.get("NOTIFICATION_BRAND", "TAGit")
        audiences = [
            ("recipient", {allocation.allocated_to_id}),
            ("requester", {allocation.allocated_by_id}),
            ("stakeholder", stakeholder_ids),
            ("admin", recipient_service.resolve_role_group(ROLE_ADMIN)),
        ]

        already_notified: set[str] = set()
        for audience, members in audiences:
            identities = recipient_service.normalize_identities(members) - already_notified
            already_notified |= identities
            if not identities:
                continue

            message = _build_message(allocation, event, audience, brand)
            result = dispatcher.notify(
                identities,
                title=message.title,
                body=message.body,
                payload={
                    "type": f"allocation:{allocation.status}",
                    "allocationId": allocation.id,
                    "status": allocation.status,
                    "audience": audience,
                },
                subject=message.subject,
                email_body=_email_body(allocation, message.email_line, brand),
            )
            result.log_failure(
                logger, f"Notifying {audience} of allocation {allocation.id} {event}"
            )
    except Exception as exc:  # pylint: disable=broad-exception-caught
        logger.error(
            "Notification fan-out for allocation %s aborted: %s",
            allocation.id,
            exc,
            exc_info=True,
        )


def _build_message(allocation: Allocation, event: str, audience: str, brand: str) -> _Message:
    """Word the notification for one audience."""
    asset = _asset_label(allocation)
    recipient = _user_label(allocation.allocated_to)
    window = _window_label(allocation)
    ownership = allocation.is_ownership_transfer

    if event == EVENT_APPROVE:
        title = "Allocation approved"
        if audience == "recipient":
            line = (
                f"Ownership of {asset} has been transferred to you."
                if ownership
                else f"{asset} has been assigned to you{window}."
            )
        elif audience == "requester":
            line = (
                f"Your request was approved: {recipient} is now the owner of {asset}."
                if ownership
                else f"Your request was approved: {asset} is assigned to {recipient}{window}."
            )
        elif audience == "stakeholder":
            line = (
                f"Ownership of {asset} has been transferred to {recipient}."
                if ownership
                else f"{asset} has been assigned to {recipient}{window} and is unavailable."
            )
        else:
            line = (
                f"Allocation {allocation.id} approved: {asset} to {recipient} "
                f"({allocation.allocation_type})."
            )
    else:
        title = "Allocation rejected"
        reason = (
            f" Reason: {allocation.rejection_reason}" if allocation.rejection_reason else ""
        )
        if audience == "recipient":
            line = (
                f"The transfer of {asset} to you was rejected.{reason}"
                if ownership
                else f"Your allocation of {asset} was rejected.{reason}"
            )
        elif audience == "requester":
            line = (
                f"Your request to transfer {asset} to {recipient} was rejected.{reason}"
                if ownership
                else f"Your request to assign {asset} to {recipient} was rejected.{reason}"
            )
        elif audience == "stakeholder":
            line = f"The allocation of {asset} to {recipient} was rejected; {asset} remains available."
        else:
            line = (
                f"Allocation {allocation.id} rejected: {asset} to {recipient} "
                f"({allocation.allocation_type}).{reason}"
            )

    return _Message(
        title=title,
        body=line,
        subject=f"{brand}: {title}",
        email_line=line,
    )


def _email_body(allocation: Allocation, line: str, brand: str) -> str:
    """Plain-text email with a summary block.  ``{name}`` is filled per recipient."""
    requester = _user_label(allocation.allocated_by)
    recipient = _user_label(allocation.allocated_to)
    window = (
        f"{allocation.start_time or '-'} to {allocation.end_time or '-'}"
        if allocation.start_time or allocation.end_time
        else "-"
    )
    status_date = allocation.allocation_status_date or _utcnow()
    lines = [
        "Hello {name},",
        "",
        line,
        "",
        f"Asset: {_asset_label(allocation)}",
        f"Allocation type: {allocation.allocation_type}",
        f"Requested by: {requester}",
        f"Allocated to: {recipient}",
        f"Status: {allocation.status.capitalize()}",
        f"Validity: {window}",
    ]
    if allocation.rejection_reason:
        lines.append(f"Reason: {allocation.rejection_reason}")
    lines += [
        f"Date: {status_date.strftime('%d/%m/%Y %H:%M')} UTC",
        "",
        "Regards,",
        brand,
    ]
    return "\n".join(lines)


def _asset_label(allocation: Allocation) -> str:
    asset = allocation.asset
    if asset is None:
        return "the asset"
    code = asset.ch_id or asset.serial_number
    return f"{asset.name} ({code})" if code else asset.name


def _user_label(user: User | None) -> str:
    if user is None:
        return "a user"
    return user.name or user.email


def _window_label(allocation: Allocation) -> str:
    if allocation.start_time and allocation.end_time:
        return f" from {allocation.start_time} to {allocation.end_time}"
    if allocation.end_time:
        return f" until {allocation.end_time}"
    return ""


# =========================================================================
# Input helpers
# =========================================================================


def _flatten_duration(data: Mapping[str, Any]) -> dict[str, Any]:
    """Accept ``{"duration": {"start_time", "end_time"}}`` as flat fields."""
    if not isinstance(data, Mapping):
        raise ValidationError("Request body must be a JSON object")
    flat = dict(data)
    duration = flat.pop("duration", None)
    if duration is not None:
        if not isinstance(duration, Mapping):
            raise ValidationError("duration must be an object")
        for key in ("start_time", "end_time"):
            if key in duration:
                flat[key] = duration[key]
    return flat


def _load_asset(asset_id: Any) -> Asset:
    if not asset_id:
        raise ValidationError("asset is required")
    if not is_valid_object_id(asset_id):
        raise ValidationError(f"Invalid asset id {asset_id}")
    asset = db.session.get(Asset, asset_id.lower())
    if asset is None or not asset.is_active:
        raise NotFoundError(f"Asset not found with id {asset_id}")
    return asset


def _clean_allocation_type(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("allocation_type is required")
    value = value.strip()
    if len(value) > 50:
        raise ValidationError("allocation_type must be at most 50 characters")
    return value


def _clean_text(value: Any, field_name: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string")
    return value.strip() or None


def _clean_window(value: Any, field_name: str) -> str | None:
    text = _clean_text(value, field_name)
    if text is not None and len(text) > _MAX_WINDOW_LENGTH:
        raise ValidationError(
            f"{field_name} must be at most {_MAX_WINDOW_LENGTH} characters"
        )
    return text

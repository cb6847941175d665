"""
Purchase service — requests to buy new assets.

Workflow::

    member creates request ──> manager records approval (PUT /<id>)
                           ──> purchaser/admin updates / fulfils it

Every change notifies the involved users (requester, the user the asset
is for, and the manager) and then every admin not already notified.
Notification failures are logged and never fail the request.
"""

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from flask import current_app
from sqlalchemy import or_

from app.exceptions import AuthorizationError, NotFoundError, ValidationError
from app.extensions import db
from app.models.identifiers import is_valid_object_id
from app.models.purchase import PurchaseRequest
from app.models.user import ROLE_ADMIN, User
from app.services import recipient_service
from app.services.expiry_service import parse_end_time
from app.services.notification_service import get_dispatcher
from app.services.user_service import get_active_user_or_raise

logger = logging.getLogger(__name__)

# Fields a purchaser or admin may change through ``update_request``.
_UPDATABLE_FIELDS = frozenset(
    {
        "asset_name",
        "asset_type",
        "quantity",
        "asset_url",
        "asset_price",
        "asset_purpose",
        "purchased_on",
        "request_status",
    }
)


# =========================================================================
# Queries
# =========================================================================


def get_all_requests() -> list[PurchaseRequest]:
    """Return every purchase request, newest first."""
    return PurchaseRequest.query.order_by(
        PurchaseRequest.request_created_at.desc()
    ).all()


def get_requests_for_user(user_id: str) -> list[PurchaseRequest]:
    """Return requests the user raised or that are for the user."""
    if not is_valid_object_id(user_id):
        raise ValidationError(f"Invalid user id {user_id}")
    user_id = user_id.lower()
    return (
        PurchaseRequest.query.filter(
            or_(
                PurchaseRequest.required_by_id == user_id,
                PurchaseRequest.requested_by_id == user_id,
            )
        )
        .order_by(PurchaseRequest.request_created_at.desc())
        .all()
    )


def get_request_or_raise(request_id: str) -> PurchaseRequest:
    if not is_valid_object_id(request_id):
        raise ValidationError(f"Invalid purchase request id {request_id}")
    purchase = db.session.get(PurchaseRequest, request_id.lower())
    if purchase is None:
        raise NotFoundError(f"Request does not exist with ID {request_id}")
    return purchase


# =========================================================================
# Workflow
# =========================================================================


def create_request(
    data: Mapping[str, Any], requested_by: User | None = None
) -> PurchaseRequest:
    """
    Create a purchase request and notify involved users and admins.

    ``requested_by`` and ``required_by`` both default to the caller.

    Raises:
        ValidationError: Missing or malformed fields.
        NotFoundError:   Unknown user.
    """
    if not isinstance(data, Mapping):
        raise ValidationError("Request body must be a JSON object")

    caller_id = requested_by.id if requested_by else None
    requester = get_active_user_or_raise(
        data.get("requested_by") or caller_id, "requested_by"
    )
    required_by = get_active_user_or_raise(
        data.get("required_by") or caller_id, "required_by"
    )
    manager = (
        get_active_user_or_raise(data["manager"], "manager") if data.get("manager") else None
    )

    asset_type = data.get("asset_type")
    if not isinstance(asset_type, str) or not asset_type.strip():
        raise ValidationError("asset_type is required")

    purchase = PurchaseRequest(
        asset_type=asset_type.strip(),
        requested_by_id=requester.id,
        required_by_id=required_by.id,
        manager_id=manager.id if manager else None,
        quantity=1,
    )
    _apply_fields(purchase, {k: v for k, v in data.items() if k != "asset_type"})
    db.session.add(purchase)
    db.session.commit()

    logger.info(
        "Created purchase request %s (%s x%d) for %s",
        purchase.id,
        purchase.asset_name or purchase.asset_type,
        purchase.quantity,
        required_by.id,
    )
    _notify(purchase, "New Purchase Request", "A new purchase request has been created.")
    return purchase


def record_manager_decision(
    request_id: str, data: Mapping[str, Any], manager: User
) -> PurchaseRequest:
    """
    Record the manager's approval or refusal.

    The caller must be the assigned manager or an admin.  A request
    with no manager yet is claimed by the first user flagged
    ``is_manager`` who decides on it.

    Raises:
        ValidationError:    ``manager_approval`` missing or not boolean.
        AuthorizationError: The caller may not decide on this request.
    """
    purchase = get_request_or_raise(request_id)
    approval = data.get("manager_approval") if isinstance(data, Mapping) else None
    if not isinstance(approval, bool):
        raise ValidationError("manager_approval must be true or false")

    if purchase.manager_id is None:
        if not (manager.is_manager or manager.has_role(ROLE_ADMIN)):
            raise AuthorizationError("Only managers can decide on purchase requests")
        purchase.manager_id = manager.id
    elif purchase.manager_id != manager.id and not manager.has_role(ROLE_ADMIN):
        raise AuthorizationError(
            "Only the assigned manager can decide on this purchase request"
        )

    purchase.manager_approval = approval
    db.session.commit()

    logger.info(
        "Manager %s %s purchase request %s",
        manager.id,
        "approved" if approval else "declined",
        purchase.id,
    )
    _notify(
        purchase,
        "Purchase Request Updated",
        f"The manager has {'approved' if approval else 'declined'} a purchase request.",
    )
    return purchase


def update_request(request_id: str, data: Mapping[str, Any]) -> PurchaseRequest:
    """
    Purchaser/admin update: details, fulfilment status and purchase date.

    Setting ``request_status`` to true stamps ``request_accepted_at``.
    """
    purchase = get_request_or_raise(request_id)
    if not isinstance(data, Mapping):
        raise ValidationError("Request body must be a JSON object")

    unknown = sorted(key for key in data if key not in _UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError("Unknown purchase request fields: " + ", ".join(unknown))
    if "asset_type" in data and (
        not isinstance(data["asset_type"], str) or not data["asset_type"].strip()
    ):
        raise ValidationError("asset_type cannot be empty")

    _apply_fields(purchase, data)
    if "asset_type" in data:
        purchase.asset_type = data["asset_type"].strip()
    if data.get("request_status") is True and purchase.request_accepted_at is None:
        purchase.request_accepted_at = datetime.now(timezone.utc)
    db.session.commit()

    logger.info(
        "Updated purchase request %s fields: %s", purchase.id, ", ".join(sorted(data))
    )
    _notify(purchase, "Purchase Request Updated", "A purchase request has been updated.")
    return purchase


# =========================================================================
# Notifications
# =========================================================================


def _notify(purchase: PurchaseRequest, title: str, headline: str) -> None:
    """Notify involved users, then admins not already notified."""
    try:
        dispatcher = get_dispatcher()
        brand = current_app.config.get("NOTIFICATION_BRAND", "TAGit")
        subject = f"{brand}: {title}"
        label = purchase.asset_name or "Purchase request"
        summary = _summary_lines(purchase, brand)

        involved = recipient_service.normalize_identities(
            [purchase.requested_by_id, purchase.required_by_id, purchase.manager_id]
        )
        admins = recipient_service.resolve_role_group(ROLE_ADMIN) - involved

        payload_type = "purchase:create" if title.startswith("New") else "purchase:update"
        result = dispatcher.notify(
            involved,
            title=title,
            body=f"{label}: {headline}",
            payload={"type": payload_type},
            subject=subject,
            email_body="\n".join(["Hello {name},", "", headline, "", *summary]),
        )
        result.log_failure(logger, f"Notifying users of purchase request {purchase.id}")

        if admins:
            result = dispatcher.notify(
                admins,
                title=title,
                body=f"{label}: {headline}",
                payload={"type": payload_type},
                subject=subject,
                email_body="\n".join(["Hello Admin,", "", headline, "", *summary]),
            )
            result.log_failure(
                logger, f"Notifying admins of purchase request {purchase.id}"
            )
    except Exception as exc:  # pylint: disable=broad-exception-caught
        logger.error(
            "Notification for purchase request %s aborted: %s",
            purchase.id,
            exc,
            exc_info=True,
        )


def _summary_lines(purchase: PurchaseRequest, brand: str) -> list[str]:
    def who(user: User | None) -> str:
        return f"{user.name} ({user.email})" if user else "-"

    if purchase.manager_approval is None:
        manager_status = "Awaiting manager"
    else:
        manager_status = "Approved" if purchase.manager_approval else "Declined"
    if purchase.request_status:
        status = "Fulfilled"
    elif purchase.request_status is False:
        status = "Closed"
    else:
        status = "Pending"
    created = purchase.request_created_at or datetime.now(timezone.utc)

    return [
        f"Asset: {purchase.asset_name or purchase.asset_type}",
        f"Quantity: {purchase.quantity}",
        f"Requested By: {who(purchase.requested_by)}",
        f"Requested For: {who(purchase.required_by)}",
        f"Manager approval: {manager_status}",
        f"Status: {status}",
        f"Date: {created.strftime('%d/%m/%Y %H:%M')}",
        "",
        "Regards,",
        brand,
    ]


# =========================================================================
# Input helpers
# =========================================================================


def _apply_fields(purchase: PurchaseRequest, data: Mapping[str, Any]) -> None:
    for field_name in ("asset_name", "asset_url", "asset_purpose"):
        if field_name in data:
            value = data[field_name]
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"{field_name} must be a string")
            setattr(purchase, field_name, value.strip() if value else None)

    if "quantity" in data:
        quantity = data["quantity"]
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError("quantity must be a positive integer")
        purchase.quantity = quantity

    if "asset_price" in data:
        purchase.asset_price = _parse_price(data["asset_price"])

    if "purchased_on" in data:
        if data["purchased_on"] in (None, ""):
            purchase.purchased_on = None
        else:
            # Same formats as allocation end times.
            purchased_on = parse_end_time(data["purchased_on"])
            if purchased_on is None:
                raise ValidationError("purchased_on must be a date")
            purchase.purchased_on = purchased_on

    if "request_status" in data:
        if data["request_status"] is not None and not isinstance(
            data["request_status"], bool
        ):
            raise ValidationError("request_status must be true, false or null")
        purchase.request_status = data["request_status"]


def _parse_price(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError("asset_price must be a number")
    try:
        price = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValidationError("asset_price must be a number") from exc
    if not price.is_finite() or price < 0:
        raise ValidationError("asset_price must be a non-negative number")
    return price.quantize(Decimal("0.01"))

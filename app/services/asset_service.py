"""
Asset service — the asset catalog.

Creates assets with an auto-generated ``ch/NN`` code, applies generic
updates, retires assets (soft delete) and lists them.  Ownership,
availability and the allocation back-reference are owned by the
allocation workflow (``asset_sync_service``); ``update_asset`` rejects
them.
"""

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import or_, select, update

from app.exceptions import InvalidStateError, NotFoundError, ValidationError
from app.extensions import db
from app.models.allocation import STATUS_APPROVED, Allocation
from app.models.asset import ASSET_STATES, Asset, SequenceCounter
from app.models.identifiers import is_valid_object_id
from app.models.user import User
from app.services.user_service import get_active_user_or_raise

logger = logging.getLogger(__name__)

_ASSET_SEQUENCE = "asset"

# Descriptive fields accepted by create and update.
_STRING_FIELDS = (
    "name",
    "model",
    "serial_number",
    "description",
    "device_type",
    "warranty",
    "invoice_url",
    "photo_url",
    "purchased_on",
)
_BOOLEAN_FIELDS = ("transferable", "invoice_available")
_REQUIRED_FIELDS = ("name", "model", "serial_number")

# Only the allocation workflow may change these.
_PROTECTED_FIELDS = frozenset(
    {
        "id",
        "ch_id",
        "owner",
        "owner_id",
        "available",
        "allocation",
        "allocation_id",
        "is_active",
        "created_at",
        "updated_at",
    }
)


# =========================================================================
# Queries
# =========================================================================


def get_assets(include_inactive: bool = False) -> list[Asset]:
    """Return all assets ordered by code."""
    query = Asset.query.order_by(Asset.ch_id)
    if not include_inactive:
        query = query.filter(Asset.is_active == True)  # noqa: E712
    return query.all()


def get_asset_or_raise(asset_id: str) -> Asset:
    """Return an active asset by primary key or raise."""
    if not is_valid_object_id(asset_id):
        raise ValidationError(f"Invalid asset id {asset_id}")
    asset = db.session.get(Asset, asset_id.lower())
    if asset is None or not asset.is_active:
        raise NotFoundError(f"Asset does not exist {asset_id}")
    return asset


def get_assets_for_user(user_id: str) -> list[Asset]:
    """
    Return active assets related to a user.

    An asset is related when the user purchased it, owns it, or is the
    requester or recipient of its current allocation.
    """
    if not is_valid_object_id(user_id):
        raise ValidationError(f"Invalid user id {user_id}")
    user_id = user_id.lower()
    return (
        Asset.query.outerjoin(Allocation, Asset.allocation_id == Allocation.id)
        .filter(
            Asset.is_active == True,  # noqa: E712
            or_(
                Asset.purchaser_id == user_id,
                Asset.owner_id == user_id,
                Allocation.allocated_by_id == user_id,
                Allocation.allocated_to_id == user_id,
            ),
        )
        .order_by(Asset.ch_id)
        .all()
    )


# =========================================================================
# Create / update / retire
# =========================================================================


def create_asset(data: Mapping[str, Any], created_by: User | None = None) -> Asset:
    """
    Register a new asset.

    ``purchaser`` defaults to the caller and ``owner`` to the
    purchaser.  The asset starts available with no allocation.

    Raises:
        ValidationError: Missing or malformed fields.
        NotFoundError:   Unknown purchaser or owner.
    """
    if not isinstance(data, Mapping):
        raise ValidationError("Request body must be a JSON object")

    missing = [f for f in _REQUIRED_FIELDS if not data.get(f)]
    if missing:
        raise ValidationError("Missing required fields: " + ", ".join(missing))

    purchaser = get_active_user_or_raise(
        data.get("purchaser") or (created_by.id if created_by else None), "purchaser"
    )
    owner = get_active_user_or_raise(data.get("owner") or purchaser.id, "owner")

    asset = Asset(purchaser_id=purchaser.id, owner_id=owner.id, available=True)
    _apply_fields(asset, data)

    asset.ch_id = _next_asset_code()
    db.session.add(asset)
    db.session.commit()

    logger.info(
        "Created asset %s (%s, serial %s) owner=%s",
        asset.ch_id,
        asset.name,
        asset.serial_number,
        owner.id,
    )
    return asset


def update_asset(asset_id: str, data: Mapping[str, Any]) -> Asset:
    """
    Update descriptive asset fields.

    Raises:
        ValidationError: Protected, unknown or malformed fields.
        NotFoundError:   Unknown asset or purchaser.
    """
    asset = get_asset_or_raise(asset_id)
    if not isinstance(data, Mapping):
        raise ValidationError("Request body must be a JSON object")

    protected = sorted(key for key in data if key in _PROTECTED_FIELDS)
    if protected:
        raise ValidationError(
            "These fields are managed by the allocation workflow: "
            + ", ".join(protected)
        )
    known = set(_STRING_FIELDS) | set(_BOOLEAN_FIELDS) | {"asset_state", "purchaser"}
    unknown = sorted(key for key in data if key not in known)
    if unknown:
        raise ValidationError("Unknown asset fields: " + ", ".join(unknown))

    for field_name in _REQUIRED_FIELDS:
        if field_name in data and not data[field_name]:
            raise ValidationError(f"{field_name} cannot be empty")

    if "purchaser" in data:
        asset.purchaser_id = get_active_user_or_raise(data["purchaser"], "purchaser").id
    _apply_fields(asset, data)
    asset.updated_at = datetime.now(timezone.utc)
    db.session.commit()

    logger.info("Updated asset %s fields: %s", asset.ch_id, ", ".join(sorted(data)))
    return asset


def delete_asset(asset_id: str) -> None:
    """
    Retire an asset (soft delete).

    Raises:
        InvalidStateError: An approved allocation still holds the asset.
    """
    asset = get_asset_or_raise(asset_id)
    active = Allocation.query.filter(
        Allocation.asset_id == asset.id,
        Allocation.status == STATUS_APPROVED,
    ).first()
    if active is not None:
        raise InvalidStateError(
            f"Asset {asset.ch_id} is held by allocation {active.id}; "
            "it can be retired once the allocation completes"
        )

    asset.is_active = False
    asset.updated_at = datetime.now(timezone.utc)
    db.session.commit()
    logger.info("Retired asset %s", asset.ch_id)


# =========================================================================
# Helpers
# =========================================================================


def _next_asset_code() -> str:
    """Increment the asset sequence and format it as ``ch/NN``."""
    result = db.session.execute(
        update(SequenceCounter)
        .where(SequenceCounter.name == _ASSET_SEQUENCE)
        .values(seq=SequenceCounter.seq + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.session.add(SequenceCounter(name=_ASSET_SEQUENCE, seq=1))
        db.session.flush()
        seq = 1
    else:
        seq = db.session.execute(
            select(SequenceCounter.seq).where(SequenceCounter.name == _ASSET_SEQUENCE)
        ).scalar_one()
    return f"ch/{seq:02d}"


def _apply_fields(asset: Asset, data: Mapping[str, Any]) -> None:
    for field_name in _STRING_FIELDS:
        if field_name in data:
            value = data[field_name]
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"{field_name} must be a string")
            setattr(asset, field_name, value.strip() if value else None)

    for field_name in _BOOLEAN_FIELDS:
        if field_name in data:
            if not isinstance(data[field_name], bool):
                raise ValidationError(f"{field_name} must be true or false")
            setattr(asset, field_name, data[field_name])

    if "asset_state" in data:
        if data["asset_state"] not in ASSET_STATES:
            raise ValidationError(
                f"asset_state must be one of: {', '.join(ASSET_STATES)}"
            )
        asset.asset_state = data["asset_state"]

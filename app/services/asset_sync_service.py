"""
Asset sync service — asset-side effects of allocation transitions.

Called by ``allocation_service`` (and the expiry sweep) inside the same
database transaction as the allocation change.  Each operation runs in
a SAVEPOINT, so a failure rolls back only the asset change and is
returned as a failed ``SideEffectResult`` for the caller to log.  A
missing asset is a logged no-op.

Nothing here commits; the calling workflow owns the transaction.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.models.allocation import STATUS_APPROVED, Allocation
from app.models.asset import Asset
from app.services.side_effects import SideEffectResult

logger = logging.getLogger(__name__)


def on_allocation_created(allocation_id: str, asset_id: str) -> SideEffectResult:
    """
    Point the asset's back-reference at a newly created allocation.

    Availability is not touched: it only changes on approval.  While
    another approved allocation holds the asset, the back-reference
    keeps pointing at that one.
    """
    holder_id = _approved_holder_id(asset_id, allocation_id)
    if holder_id is not None:
        logger.info(
            "Asset %s is held by approved allocation %s, not linking %s",
            asset_id,
            holder_id,
            allocation_id,
        )
        return SideEffectResult.succeeded()

    def link(asset: Asset) -> None:
        asset.allocation_id = allocation_id

    return _apply_to_asset(asset_id, "link allocation", link)


def on_allocation_approved(allocation: Allocation) -> SideEffectResult:
    """
    Take the asset out of the pool for an approved allocation.

    Sets ``available = False`` and the back-reference.  For ``Owner``
    allocations with a recipient, the recipient becomes the owner.
    """

    def take(asset: Asset) -> None:
        asset.available = False
        asset.allocation_id = allocation.id
        if allocation.is_ownership_transfer and allocation.allocated_to_id:
            logger.info(
                "Transferring ownership of asset %s to user %s",
                asset.id,
                allocation.allocated_to_id,
            )
            asset.owner_id = allocation.allocated_to_id

    return _apply_to_asset(allocation.asset_id, "approve allocation", take)


def on_allocation_released(
    asset_id: str | None,
    allocation_id: str | None = None,
) -> SideEffectResult:
    """
    Return the asset to the pool after a rejection or an expiry.

    ``allocation_id`` is the allocation being released.  If a different
    approved allocation still holds the asset, it stays unavailable.
    """
    holder_id = _approved_holder_id(asset_id, allocation_id)
    if holder_id is not None:
        logger.info(
            "Asset %s is still held by approved allocation %s, not releasing",
            asset_id,
            holder_id,
        )
        return SideEffectResult.succeeded()

    def release(asset: Asset) -> None:
        asset.available = True

    return _apply_to_asset(asset_id, "release asset", release)


def _approved_holder_id(asset_id: str | None, allocation_id: str | None) -> str | None:
    """Id of an approved allocation, other than ``allocation_id``, holding the asset."""
    if not asset_id:
        return None
    query = db.session.query(Allocation.id).filter(
        Allocation.asset_id == asset_id,
        Allocation.status == STATUS_APPROVED,
    )
    if allocation_id:
        query = query.filter(Allocation.id != allocation_id)
    return query.limit(1).scalar()


def _apply_to_asset(
    asset_id: str | None,
    action: str,
    mutate: Callable[[Asset], None],
) -> SideEffectResult:
    """Load the asset and apply ``mutate`` inside a savepoint."""
    if not asset_id:
        logger.warning("No asset referenced, skipping '%s'", action)
        return SideEffectResult.succeeded()

    try:
        with db.session.begin_nested():
            asset = db.session.get(Asset, asset_id)
            if asset is None:
                logger.warning("Asset %s not found, skipping '%s'", asset_id, action)
                return SideEffectResult.succeeded()

            mutate(asset)
            asset.updated_at = datetime.now(timezone.utc)
    except SQLAlchemyError as exc:
        return SideEffectResult.failed(f"{action} on asset {asset_id}: {exc}")

    logger.debug(
        "Asset %s after '%s': available=%s owner=%s allocation=%s",
        asset.id,
        action,
        asset.available,
        asset.owner_id,
        asset.allocation_id,
    )
    return SideEffectResult.succeeded(asset)

"""
Tests for asset_sync_service: asset-side effects of allocation changes.
"""

from app.extensions import db
from app.models.allocation import STATUS_APPROVED, Allocation
from app.models.identifiers import new_object_id
from app.services import asset_sync_service


def _allocation(asset, requester, recipient, allocation_type="Temporary"):
    allocation = Allocation(
        allocated_by_id=requester.id,
        allocated_to_id=recipient.id,
        asset_id=asset.id,
        allocation_type=allocation_type,
    )
    db.session.add(allocation)
    db.session.commit()
    return allocation


class TestAssetSync:
    """Availability, ownership and back-reference updates."""

    def test_created_links_without_changing_availability(
        self, app, make_user, make_asset
    ):
        owner = make_user("owner")
        asset = make_asset(owner)
        allocation = _allocation(asset, owner, make_user())

        result = asset_sync_service.on_allocation_created(allocation.id, asset.id)
        db.session.commit()

        assert result.ok
        assert asset.allocation_id == allocation.id
        assert asset.available is True

    def test_approved_temporary_keeps_owner(self, app, make_user, make_asset):
        owner = make_user("owner")
        recipient = make_user()
        asset = make_asset(owner)
        allocation = _allocation(asset, owner, recipient)

        result = asset_sync_service.on_allocation_approved(allocation)
        db.session.commit()

        assert result.ok
        assert asset.available is False
        assert asset.owner_id == owner.id
        assert asset.allocation_id == allocation.id

    def test_approved_owner_transfers_ownership(self, app, make_user, make_asset):
        owner = make_user("owner")
        recipient = make_user()
        asset = make_asset(owner)
        allocation = _allocation(asset, owner, recipient, "Owner")

        asset_sync_service.on_allocation_approved(allocation)
        db.session.commit()

        assert asset.owner_id == recipient.id
        assert asset.available is False

    def test_released_sets_available(self, app, make_user, make_asset):
        owner = make_user("owner")
        asset = make_asset(owner, available=False)

        result = asset_sync_service.on_allocation_released(asset.id)
        db.session.commit()

        assert result.ok
        assert asset.available is True

    def test_release_skipped_while_another_approval_holds_asset(
        self, app, make_user, make_asset
    ):
        owner = make_user("owner")
        asset = make_asset(owner, available=False)
        holder = _allocation(asset, owner, make_user())
        holder.status = STATUS_APPROVED
        asset.allocation_id = holder.id
        rejected = _allocation(asset, owner, make_user())
        db.session.commit()

        result = asset_sync_service.on_allocation_released(asset.id, rejected.id)
        db.session.commit()

        assert result.ok
        assert asset.available is False
        assert asset.allocation_id == holder.id

    def test_release_of_the_holder_itself_frees_asset(self, app, make_user, make_asset):
        owner = make_user("owner")
        asset = make_asset(owner, available=False)
        holder = _allocation(asset, owner, make_user())
        holder.status = STATUS_APPROVED
        db.session.commit()

        asset_sync_service.on_allocation_released(asset.id, holder.id)
        db.session.commit()

        assert asset.available is True

    def test_link_skipped_while_an_approval_holds_asset(self, app, make_user, make_asset):
        owner = make_user("owner")
        asset = make_asset(owner, available=False)
        holder = _allocation(asset, owner, make_user())
        holder.status = STATUS_APPROVED
        asset.allocation_id = holder.id
        newcomer = _allocation(asset, owner, make_user())

        result = asset_sync_service.on_allocation_created(newcomer.id, asset.id)
        db.session.commit()

        assert result.ok
        assert asset.allocation_id == holder.id

    def test_missing_asset_is_a_no_op(self, app):
        result = asset_sync_service.on_allocation_released(new_object_id())
        assert result.ok

    def test_no_asset_reference_is_a_no_op(self, app):
        assert asset_sync_service.on_allocation_released(None).ok

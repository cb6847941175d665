"""
Asset models.

``Asset`` is a specific physical item (laptop, monitor, test rig).
``available``, ``owner_id`` and ``allocation_id`` are kept in sync with
the allocation workflow by ``asset_sync_service``; the generic asset
update refuses to touch them.

``SequenceCounter`` hands out the human-readable ``ch/NN`` asset codes.
"""

from app.extensions import db
from app.models.identifiers import new_object_id

ASSET_STATES = (
    "Working",
    "Discarded",
    "Returned",
    "Under Repair",
    "Lost",
    "In Stock",
    "Reserved",
    "Maintenance",
    "Damaged",
    "Sold",
    "Other",
)


class SequenceCounter(db.Model):
    """Named monotonically increasing counter (e.g. ``asset``)."""

    __tablename__ = "sequence_counter"

    name = db.Column(db.String(50), primary_key=True)
    seq = db.Column(db.Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<SequenceCounter {self.name}={self.seq}>"


class Asset(db.Model):
    """
    A company-owned physical item.

    Invariant maintained by the allocation workflow: ``available`` is
    False exactly while an approved allocation references the asset.
    Deleting an asset is a soft delete (``is_active = False``) so the
    allocation history keeps its foreign keys.
    """

    __tablename__ = "asset"
    __table_args__ = (
        db.CheckConstraint(
            "asset_state IN ('Working', 'Discarded', 'Returned', "
            "'Under Repair', 'Lost', 'In Stock', 'Reserved', "
            "'Maintenance', 'Damaged', 'Sold', 'Other')",
            name="CK_asset_state",
        ),
    )

    id = db.Column(db.String(24), primary_key=True, default=new_object_id)
    ch_id = db.Column(db.String(20), unique=True, nullable=True)
    name = db.Column(db.String(200), nullable=False)
    model = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    device_type = db.Column(db.String(100), nullable=True)
    transferable = db.Column(db.Boolean, nullable=False, default=True)
    asset_state = db.Column(db.String(20), nullable=False, default="In Stock")
    serial_number = db.Column(db.String(100), nullable=False)
    warranty = db.Column(db.String(100), nullable=True)
    invoice_available = db.Column(db.Boolean, nullable=False, default=False)
    invoice_url = db.Column(db.String(500), nullable=True)
    photo_url = db.Column(db.String(500), nullable=True)
    purchased_on = db.Column(db.String(50), nullable=True)
    purchaser_id = db.Column(
        db.String(24), db.ForeignKey("app_user.id"), nullable=False, index=True
    )
    owner_id = db.Column(
        db.String(24), db.ForeignKey("app_user.id"), nullable=False, index=True
    )
    # Asset <-> allocation is a reference cycle; this side is added
    # after both tables exist.
    allocation_id = db.Column(
        db.String(24),
        db.ForeignKey(
            "allocation.id", use_alter=True, name="FK_asset_allocation_id"
        ),
        nullable=True,
    )
    available = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())

    # -- Relationships -----------------------------------------------------
    purchaser = db.relationship("User", foreign_keys=[purchaser_id])
    owner = db.relationship("User", foreign_keys=[owner_id])
    allocation = db.relationship(
        "Allocation", foreign_keys=[allocation_id], post_update=True
    )

    def to_summary(self) -> dict:
        """Short form embedded in allocation responses."""
        return {
            "id": self.id,
            "ch_id": self.ch_id,
            "name": self.name,
            "serial_number": self.serial_number,
            "photo_url": self.photo_url,
            "invoice_url": self.invoice_url,
            "available": self.available,
            "owner": self.owner.to_summary() if self.owner else None,
            "purchaser": self.purchaser.to_summary() if self.purchaser else None,
        }

    def to_dict(self) -> dict:
        """Full asset representation."""
        return {
            **self.to_summary(),
            "model": self.model,
            "description": self.description,
            "device_type": self.device_type,
            "transferable": self.transferable,
            "asset_state": self.asset_state,
            "warranty": self.warranty,
            "invoice_available": self.invoice_available,
            "purchased_on": self.purchased_on,
            "allocation_id": self.allocation_id,
            "is_active": self.is_active,
        }

    def __repr__(self) -> str:
        return f"<Asset {self.ch_id or self.serial_number}>"

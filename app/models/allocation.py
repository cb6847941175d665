"""
Allocation model — a request to assign an asset to a user.

Status lifecycle (enforced by ``allocation_service``)::

    pending ──approve──> approved ──expire──> completed
       └─────reject────> rejected

``version`` is the SQLAlchemy version counter: every UPDATE checks the
version it loaded, so two writers racing on the same allocation (for
example the expiry sweep and a reviewer) cannot both succeed.
"""

from app.extensions import db
from app.models.identifiers import new_object_id

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
STATUS_COMPLETED = "completed"

ALLOCATION_STATUSES = (
    STATUS_PENDING,
    STATUS_APPROVED,
    STATUS_REJECTED,
    STATUS_COMPLETED,
)

# The only allocation type with extra semantics: approval hands the
# asset's ownership to the recipient.
ALLOCATION_TYPE_OWNER = "Owner"


class Allocation(db.Model):
    """An allocation request and its review outcome."""

    __tablename__ = "allocation"
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'completed')",
            name="CK_allocation_status",
        ),
    )

    id = db.Column(db.String(24), primary_key=True, default=new_object_id)
    allocated_by_id = db.Column(
        db.String(24), db.ForeignKey("app_user.id"), nullable=False, index=True
    )
    allocated_to_id = db.Column(
        db.String(24), db.ForeignKey("app_user.id"), nullable=False, index=True
    )
    asset_id = db.Column(
        db.String(24), db.ForeignKey("asset.id"), nullable=False, index=True
    )
    purpose = db.Column(db.Text, nullable=True)
    allocation_type = db.Column(db.String(50), nullable=False)
    allocated_request_date = db.Column(
        db.DateTime, nullable=False, server_default=db.func.now()
    )

    # Legacy boolean kept for older mobile clients: True once approved,
    # False once rejected, NULL while pending.
    request_status = db.Column(db.Boolean, nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default=STATUS_PENDING, index=True
    )
    approved_by_id = db.Column(
        db.String(24), db.ForeignKey("app_user.id"), nullable=True
    )
    rejection_reason = db.Column(db.Text, nullable=True)
    allocation_status_date = db.Column(db.DateTime, nullable=True)

    # Validity window.  Stored as entered by the client: ISO dates or
    # dd/mm/yyyy strings (see ``expiry_service.parse_end_time``).
    start_time = db.Column(db.String(50), nullable=True)
    end_time = db.Column(db.String(50), nullable=True)

    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())

    __mapper_args__ = {"version_id_col": version}

    # -- Relationships -----------------------------------------------------
    allocated_by = db.relationship("User", foreign_keys=[allocated_by_id])
    allocated_to = db.relationship("User", foreign_keys=[allocated_to_id])
    approved_by = db.relationship("User", foreign_keys=[approved_by_id])
    asset = db.relationship("Asset", foreign_keys=[asset_id])

    @property
    def is_ownership_transfer(self) -> bool:
        """True if approval moves asset ownership to the recipient."""
        return self.allocation_type == ALLOCATION_TYPE_OWNER

    def to_dict(self) -> dict:
        """Allocation with requester, recipient and asset expanded."""
        return {
            "id": self.id,
            "allocated_by": (
                self.allocated_by.to_summary() if self.allocated_by else None
            ),
            "allocated_to": (
                self.allocated_to.to_summary() if self.allocated_to else None
            ),
            "asset": self.asset.to_summary() if self.asset else None,
            "purpose": self.purpose,
            "allocation_type": self.allocation_type,
            "allocated_request_date": (
                self.allocated_request_date.isoformat()
                if self.allocated_request_date
                else None
            ),
            "request_status": self.request_status,
            "status": self.status,
            "approved_by": (
                self.approved_by.to_summary() if self.approved_by else None
            ),
            "rejection_reason": self.rejection_reason,
            "allocation_status_date": (
                self.allocation_status_date.isoformat()
                if self.allocation_status_date
                else None
            ),
            "duration": {"start_time": self.start_time, "end_time": self.end_time},
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Allocation {self.id} asset={self.asset_id} status={self.status}>"

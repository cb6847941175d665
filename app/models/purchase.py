"""
Purchase request model.

A member asks for a new asset; their manager records a decision and a
purchaser or admin later marks the request fulfilled.  The workflow is
deliberately flat: two booleans (``manager_approval`` and
``request_status``) rather than a state machine.
"""

from app.extensions import db
from app.models.identifiers import new_object_id


class PurchaseRequest(db.Model):
    """A request to buy a new asset."""

    __tablename__ = "purchase_request"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="CK_purchase_request_qty"),
    )

    id = db.Column(db.String(24), primary_key=True, default=new_object_id)
    asset_name = db.Column(db.String(200), nullable=True)
    asset_type = db.Column(db.String(100), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    required_by_id = db.Column(
        db.String(24), db.ForeignKey("app_user.id"), nullable=False, index=True
    )
    requested_by_id = db.Column(
        db.String(24), db.ForeignKey("app_user.id"), nullable=False, index=True
    )
    manager_id = db.Column(db.String(24), db.ForeignKey("app_user.id"), nullable=True)
    manager_approval = db.Column(db.Boolean, nullable=True)
    asset_url = db.Column(db.String(500), nullable=True)
    asset_price = db.Column(db.Numeric(10, 2), nullable=True)
    asset_purpose = db.Column(db.Text, nullable=True)
    purchased_on = db.Column(db.DateTime, nullable=True)
    request_status = db.Column(db.Boolean, nullable=True)
    request_created_at = db.Column(
        db.DateTime, nullable=False, server_default=db.func.now()
    )
    request_accepted_at = db.Column(db.DateTime, nullable=True)

    # -- Relationships -----------------------------------------------------
    required_by = db.relationship("User", foreign_keys=[required_by_id])
    requested_by = db.relationship("User", foreign_keys=[requested_by_id])
    manager = db.relationship("User", foreign_keys=[manager_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "asset_name": self.asset_name,
            "asset_type": self.asset_type,
            "quantity": self.quantity,
            "required_by": self.required_by.to_summary() if self.required_by else None,
            "requested_by": (
                self.requested_by.to_summary() if self.requested_by else None
            ),
            "manager": self.manager.to_summary() if self.manager else None,
            "manager_approval": self.manager_approval,
            "asset_url": self.asset_url,
            "asset_price": (
                str(self.asset_price) if self.asset_price is not None else None
            ),
            "asset_purpose": self.asset_purpose,
            "purchased_on": self.purchased_on.isoformat() if self.purchased_on else None,
            "request_status": self.request_status,
            "request_created_at": (
                self.request_created_at.isoformat() if self.request_created_at else None
            ),
            "request_accepted_at": (
                self.request_accepted_at.isoformat()
                if self.request_accepted_at
                else None
            ),
        }

    def __repr__(self) -> str:
        return f"<PurchaseRequest {self.id} {self.asset_name}>"

"""
User and push-token models.

Users are provisioned by the sign-in flow (outside this service) or by
the ``flask create-user`` command.  The allocation and purchase
workflows only read a user's role, email, and push tokens.

Role = what you can do:
  - ``admin``:     everything, including role changes.
  - ``purchaser``: buys and registers assets, approves allocations.
  - ``owner``:     holds assets and approves allocations of them.
  - ``member``:    requests allocations and purchases.
"""

from flask_login import UserMixin

from app.extensions import db
from app.models.identifiers import new_object_id

ROLE_ADMIN = "admin"
ROLE_PURCHASER = "purchaser"
ROLE_OWNER = "owner"
ROLE_MEMBER = "member"

USER_ROLES = (ROLE_ADMIN, ROLE_PURCHASER, ROLE_OWNER, ROLE_MEMBER)


class User(UserMixin, db.Model):
    """
    Application user.

    Inherits from ``UserMixin`` to satisfy Flask-Login requirements
    (``is_authenticated``, ``get_id``).  ``is_active`` is a real column
    so deactivated users fail authentication.
    """

    # ``user`` is a reserved word on several database servers.
    __tablename__ = "app_user"
    __table_args__ = (
        db.CheckConstraint(
            "role IN ('admin', 'purchaser', 'owner', 'member')",
            name="CK_app_user_role",
        ),
    )

    id = db.Column(db.String(24), primary_key=True, default=new_object_id)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200), unique=True, nullable=False)
    role = db.Column(db.String(20), nullable=False, default=ROLE_MEMBER)
    emp_id = db.Column(db.String(50), nullable=True)
    phone_number = db.Column(db.String(30), nullable=True)
    profile_photo_url = db.Column(db.String(500), nullable=True)
    manager = db.Column(db.String(200), nullable=True)
    is_manager = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    last_login = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())

    # -- Relationships -----------------------------------------------------
    push_tokens = db.relationship(
        "UserPushToken",
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    # ---- Role checks -----------------------------------------------------

    def has_role(self, *role_names: str) -> bool:
        """Check if the user has any of the given role names."""
        return self.role in role_names

    @property
    def token_values(self) -> list[str]:
        """Return the user's registered push tokens as plain strings."""
        return [pt.token for pt in self.push_tokens]

    # ---- Serialization ---------------------------------------------------

    def to_summary(self) -> dict:
        """Short form embedded in allocations, assets and purchases."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
        }

    def to_dict(self) -> dict:
        """Full profile returned by the user endpoints (no push tokens)."""
        return {
            **self.to_summary(),
            "emp_id": self.emp_id,
            "phone_number": self.phone_number,
            "profile_photo_url": self.profile_photo_url,
            "manager": self.manager,
            "is_manager": self.is_manager,
            "is_active": self.is_active,
            "last_login": self.last_login.isoformat() if self.last_login else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<User {self.email} role={self.role}>"


class UserPushToken(db.Model):
    """
    A device push token registered by one of the user's devices.

    A token may appear for several users (shared devices); the
    recipient resolver deduplicates them globally.
    """

    __tablename__ = "user_push_token"
    __table_args__ = (
        db.UniqueConstraint("user_id", "token", name="UQ_user_push_token"),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    user_id = db.Column(
        db.String(24), db.ForeignKey("app_user.id"), nullable=False, index=True
    )
    token = db.Column(db.String(512), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())

    # -- Relationships -----------------------------------------------------
    user = db.relationship("User", back_populates="push_tokens")

    def __repr__(self) -> str:
        return f"<UserPushToken user={self.user_id}>"

"""Initial schema: users, assets, allocations, purchase requests

Revision ID: 3b7c1e9a4d20
Revises:
Create Date: 2026-10-18 09:12:40.118204

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "3b7c1e9a4d20"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create all tables; asset.allocation_id gets its FK last (cycle)."""
    op.create_table(
        "app_user",
        sa.Column("id", sa.String(length=24), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=200), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("emp_id", sa.String(length=50), nullable=True),
        sa.Column("phone_number", sa.String(length=30), nullable=True),
        sa.Column("profile_photo_url", sa.String(length=500), nullable=True),
        sa.Column("manager", sa.String(length=200), nullable=True),
        sa.Column("is_manager", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("last_login", sa.DateTime(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False
        ),
        sa.CheckConstraint(
            "role IN ('admin', 'purchaser', 'owner', 'member')",
            name="CK_app_user_role",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "user_push_token",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(length=24), nullable=False),
        sa.Column("token", sa.String(length=512), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False
        ),
        sa.ForeignKeyConstraint(["user_id"], ["app_user.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "token", name="UQ_user_push_token"),
    )
    op.create_index(
        "ix_user_push_token_user_id", "user_push_token", ["user_id"], unique=False
    )

    op.create_table(
        "sequence_counter",
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("name"),
    )

    op.create_table(
        "asset",
        sa.Column("id", sa.String(length=24), nullable=False),
        sa.Column("ch_id", sa.String(length=20), nullable=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("model", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("device_type", sa.String(length=100), nullable=True),
        sa.Column("transferable", sa.Boolean(), nullable=False),
        sa.Column("asset_state", sa.String(length=20), nullable=False),
        sa.Column("serial_number", sa.String(length=100), nullable=False),
        sa.Column("warranty", sa.String(length=100), nullable=True),
        sa.Column("invoice_available", sa.Boolean(), nullable=False),
        sa.Column("invoice_url", sa.String(length=500), nullable=True),
        sa.Column("photo_url", sa.String(length=500), nullable=True),
        sa.Column("purchased_on", sa.String(length=50), nullable=True),
        sa.Column("purchaser_id", sa.String(length=24), nullable=False),
        sa.Column("owner_id", sa.String(length=24), nullable=False),
        sa.Column("allocation_id", sa.String(length=24), nullable=True),
        sa.Column("available", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False
        ),
        sa.CheckConstraint(
            "asset_state IN ('Working', 'Discarded', 'Returned', "
            "'Under Repair', 'Lost', 'In Stock', 'Reserved', "
            "'Maintenance', 'Damaged', 'Sold', 'Other')",
            name="CK_asset_state",
        ),
        sa.ForeignKeyConstraint(["owner_id"], ["app_user.id"]),
        sa.ForeignKeyConstraint(["purchaser_id"], ["app_user.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("ch_id"),
    )
    op.create_index("ix_asset_owner_id", "asset", ["owner_id"], unique=False)
    op.create_index("ix_asset_purchaser_id", "asset", ["purchaser_id"], unique=False)

    op.create_table(
        "allocation",
        sa.Column("id", sa.String(length=24), nullable=False),
        sa.Column("allocated_by_id", sa.String(length=24), nullable=False),
        sa.Column("allocated_to_id", sa.String(length=24), nullable=False),
        sa.Column("asset_id", sa.String(length=24), nullable=False),
        sa.Column("purpose", sa.Text(), nullable=True),
        sa.Column("allocation_type", sa.String(length=50), nullable=False),
        sa.Column(
            "allocated_request_date",
            sa.DateTime(),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("request_status", sa.Boolean(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("approved_by_id", sa.String(length=24), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("allocation_status_date", sa.DateTime(), nullable=True),
        sa.Column("start_time", sa.String(length=50), nullable=True),
        sa.Column("end_time", sa.String(length=50), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'completed')",
            name="CK_allocation_status",
        ),
        sa.ForeignKeyConstraint(["allocated_by_id"], ["app_user.id"]),
        sa.ForeignKeyConstraint(["allocated_to_id"], ["app_user.id"]),
        sa.ForeignKeyConstraint(["approved_by_id"], ["app_user.id"]),
        sa.ForeignKeyConstraint(["asset_id"], ["asset.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_allocation_allocated_by_id", "allocation", ["allocated_by_id"], unique=False
    )
    op.create_index(
        "ix_allocation_allocated_to_id", "allocation", ["allocated_to_id"], unique=False
    )
    op.create_index("ix_allocation_asset_id", "allocation", ["asset_id"], unique=False)
    op.create_index("ix_allocation_status", "allocation", ["status"], unique=False)

    with op.batch_alter_table("asset") as batch_op:
        batch_op.create_foreign_key(
            "FK_asset_allocation_id", "allocation", ["allocation_id"], ["id"]
        )

    op.create_table(
        "purchase_request",
        sa.Column("id", sa.String(length=24), nullable=False),
        sa.Column("asset_name", sa.String(length=200), nullable=True),
        sa.Column("asset_type", sa.String(length=100), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("required_by_id", sa.String(length=24), nullable=False),
        sa.Column("requested_by_id", sa.String(length=24), nullable=False),
        sa.Column("manager_id", sa.String(length=24), nullable=True),
        sa.Column("manager_approval", sa.Boolean(), nullable=True),
        sa.Column("asset_url", sa.String(length=500), nullable=True),
        sa.Column("asset_price", sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column("asset_purpose", sa.Text(), nullable=True),
        sa.Column("purchased_on", sa.DateTime(), nullable=True),
        sa.Column("request_status", sa.Boolean(), nullable=True),
        sa.Column(
            "request_created_at",
            sa.DateTime(),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("request_accepted_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("quantity >= 1", name="CK_purchase_request_qty"),
        sa.ForeignKeyConstraint(["manager_id"], ["app_user.id"]),
        sa.ForeignKeyConstraint(["requested_by_id"], ["app_user.id"]),
        sa.ForeignKeyConstraint(["required_by_id"], ["app_user.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_purchase_request_required_by_id",
        "purchase_request",
        ["required_by_id"],
        unique=False,
    )
    op.create_index(
        "ix_purchase_request_requested_by_id",
        "purchase_request",
        ["requested_by_id"],
        unique=False,
    )


def downgrade():
    """Drop everything created in upgrade()."""
    op.drop_index("ix_purchase_request_requested_by_id", table_name="purchase_request")
    op.drop_index("ix_purchase_request_required_by_id", table_name="purchase_request")
    op.drop_table("purchase_request")

    with op.batch_alter_table("asset") as batch_op:
        batch_op.drop_constraint("FK_asset_allocation_id", type_="foreignkey")

    op.drop_index("ix_allocation_status", table_name="allocation")
    op.drop_index("ix_allocation_asset_id", table_name="allocation")
    op.drop_index("ix_allocation_allocated_to_id", table_name="allocation")
    op.drop_index("ix_allocation_allocated_by_id", table_name="allocation")
    op.drop_table("allocation")

    op.drop_index("ix_asset_purchaser_id", table_name="asset")
    op.drop_index("ix_asset_owner_id", table_name="asset")
    op.drop_table("asset")

    op.drop_table("sequence_counter")

    op.drop_index("ix_user_push_token_user_id", table_name="user_push_token")
    op.drop_table("user_push_token")

    op.drop_table("app_user")

"""create user, catalog_item, roster_entry and purchase_record

Revision ID: 5c1e2a9d7b40
Revises:
Create Date: 2026-10-19 10:12:04.118532

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
import sqlmodel


# revision identifiers, used by Alembic.
revision: str = '5c1e2a9d7b40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


item_kind = sa.Enum("unpaid_course", "paid_course", "paid_notes", name="itemkind")
purchase_state = sa.Enum(
    "awaiting_payment", "payment_failed", "completed", "cancelled",
    name="purchasestate",
)


def upgrade():
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("first_name", sqlmodel.AutoString(), nullable=False),
        sa.Column("last_name", sqlmodel.AutoString(), nullable=False),
        sa.Column("email", sqlmodel.AutoString(), nullable=False),
        sa.Column("role", sqlmodel.AutoString(), nullable=False),
        sa.Column("can_login", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_user_email", "user", ["email"])

    op.create_table(
        "catalog_item",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("kind", item_kind, nullable=False),
        sa.Column("title", sqlmodel.AutoString(), nullable=False),
        sa.Column("price", sa.Float(), nullable=False),
        sa.Column("currency", sqlmodel.AutoString(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("access_days", sa.Integer(), nullable=True),
        sa.Column("material_key", sqlmodel.AutoString(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_catalog_item_kind", "catalog_item", ["kind"])

    op.create_table(
        "roster_entry",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("item_id", sa.Integer(), sa.ForeignKey("catalog_item.id"), nullable=False),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("mode", sqlmodel.AutoString(), nullable=True),
        sa.Column("schedule", sqlmodel.AutoString(), nullable=True),
        sa.Column("enrolled_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("item_id", "student_id", name="uq_roster_item_student"),
    )
    op.create_index("ix_roster_entry_item_id", "roster_entry", ["item_id"])
    op.create_index("ix_roster_entry_student_id", "roster_entry", ["student_id"])

    op.create_table(
        "purchase_record",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("item_id", sa.Integer(), sa.ForeignKey("catalog_item.id"), nullable=False),
        sa.Column("item_kind", item_kind, nullable=False),
        sa.Column("state", purchase_state, nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("currency", sqlmodel.AutoString(), nullable=False),
        sa.Column("receipt", sqlmodel.AutoString(), nullable=True),
        sa.Column("gateway_order_id", sqlmodel.AutoString(), nullable=True),
        sa.Column("gateway_payment_id", sqlmodel.AutoString(), nullable=True),
        sa.Column("gateway_signature", sqlmodel.AutoString(), nullable=True),
        sa.Column("payment_method", sqlmodel.AutoString(), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("failure_reason", sqlmodel.AutoString(), nullable=True),
        sa.Column("last_failure_at", sa.DateTime(), nullable=True),
        sa.Column("access_granted_at", sa.DateTime(), nullable=True),
        sa.Column("access_expires_at", sa.DateTime(), nullable=True),
        sa.Column("access_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_accessed_at", sa.DateTime(), nullable=True),
        sa.Column("mode", sqlmodel.AutoString(), nullable=True),
        sa.Column("schedule", sqlmodel.AutoString(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("purchased_at", sa.DateTime(), nullable=True),
        sa.Column("reconciliation_note", sqlmodel.AutoString(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("student_id", "item_id", name="uq_purchase_student_item"),
    )
    op.create_index("ix_purchase_record_student_id", "purchase_record", ["student_id"])
    op.create_index("ix_purchase_record_item_id", "purchase_record", ["item_id"])
    op.create_index("ix_purchase_record_state", "purchase_record", ["state"])
    op.create_index(
        "ix_purchase_record_gateway_order_id",
        "purchase_record",
        ["gateway_order_id"],
        unique=True,
    )


def downgrade():
    op.drop_index("ix_purchase_record_gateway_order_id", table_name="purchase_record")
    op.drop_index("ix_purchase_record_state", table_name="purchase_record")
    op.drop_index("ix_purchase_record_item_id", table_name="purchase_record")
    op.drop_index("ix_purchase_record_student_id", table_name="purchase_record")
    op.drop_table("purchase_record")

    op.drop_index("ix_roster_entry_student_id", table_name="roster_entry")
    op.drop_index("ix_roster_entry_item_id", table_name="roster_entry")
    op.drop_table("roster_entry")

    op.drop_index("ix_catalog_item_kind", table_name="catalog_item")
    op.drop_table("catalog_item")

    op.drop_index("ix_user_email", table_name="user")
    op.drop_table("user")

    purchase_state.drop(op.get_bind(), checkfirst=True)
    item_kind.drop(op.get_bind(), checkfirst=True)

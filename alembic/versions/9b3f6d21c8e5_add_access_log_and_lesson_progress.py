"""add access_log and lesson_progress

Revision ID: 9b3f6d21c8e5
Revises: 5c1e2a9d7b40
Create Date: 2026-10-19 16:41:27.530916

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
import sqlmodel


# revision identifiers, used by Alembic.
revision: str = '9b3f6d21c8e5'
down_revision: Union[str, Sequence[str], None] = '5c1e2a9d7b40'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    op.create_table(
        "access_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("purchase_id", sa.Integer(), sa.ForeignKey("purchase_record.id"), nullable=False),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("item_id", sa.Integer(), sa.ForeignKey("catalog_item.id"), nullable=False),
        sa.Column("ip_address", sqlmodel.AutoString(), nullable=True),
        sa.Column("user_agent", sqlmodel.AutoString(), nullable=True),
        sa.Column("accessed_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_access_log_purchase_id", "access_log", ["purchase_id"])
    op.create_index("ix_access_log_student_id", "access_log", ["student_id"])

    op.create_table(
        "lesson_progress",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("purchase_id", sa.Integer(), sa.ForeignKey("purchase_record.id"), nullable=False),
        sa.Column("lesson_id", sqlmodel.AutoString(), nullable=False),
        sa.Column("watch_seconds", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("purchase_id", "lesson_id", name="uq_progress_purchase_lesson"),
    )
    op.create_index("ix_lesson_progress_purchase_id", "lesson_progress", ["purchase_id"])


def downgrade():
    op.drop_index("ix_lesson_progress_purchase_id", table_name="lesson_progress")
    op.drop_table("lesson_progress")

    op.drop_index("ix_access_log_student_id", table_name="access_log")
    op.drop_index("ix_access_log_purchase_id", table_name="access_log")
    op.drop_table("access_log")

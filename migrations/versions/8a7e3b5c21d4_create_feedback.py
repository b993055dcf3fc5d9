"""Create feedback table

Revision ID: 8a7e3b5c21d4
Revises: 4f1c2a9d7b10
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "8a7e3b5c21d4"
down_revision = "4f1c2a9d7b10"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "feedback",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("manager_id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("strengths", sa.Text(), nullable=False),
        sa.Column("improvements", sa.Text(), nullable=False),
        sa.Column("sentiment", sa.String(length=20), nullable=False),
        sa.Column("acknowledged", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["manager_id"], ["users.id"], name="fk_feedback_manager_id", ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["employee_id"], ["users.id"], name="fk_feedback_employee_id", ondelete="RESTRICT"),
        sa.CheckConstraint("sentiment IN ('positive','neutral','negative')", name="ck_feedback_sentiment_valid"),
    )
    op.create_index("ix_feedback_manager_id", "feedback", ["manager_id"], unique=False)
    op.create_index("ix_feedback_employee_id", "feedback", ["employee_id"], unique=False)
    op.create_index("ix_feedback_employee_created_at", "feedback", ["employee_id", "created_at"], unique=False)
    op.create_index("ix_feedback_manager_created_at", "feedback", ["manager_id", "created_at"], unique=False)


def downgrade():
    op.drop_index("ix_feedback_manager_created_at", table_name="feedback")
    op.drop_index("ix_feedback_employee_created_at", table_name="feedback")
    op.drop_index("ix_feedback_employee_id", table_name="feedback")
    op.drop_index("ix_feedback_manager_id", table_name="feedback")
    op.drop_table("feedback")

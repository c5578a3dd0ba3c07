"""per-item classification and purchase validation

Revision ID: 20261018_item_classification
Revises: 20261018_initial_workflow
Create Date: 2026-10-18 15:00:00.000000

This migration adds to requisition_items:
1. status (item classification lifecycle, defaults to PENDING_CLASSIFICATION)
2. purchase validation fields (note, validator, validated / received times)
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_item_classification"
down_revision = "20261018_initial_workflow"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("requisition_items", schema=None) as batch_op:
        batch_op.add_column(
            sa.Column("status", sa.String(length=32), nullable=False, server_default="PENDING_CLASSIFICATION")
        )
        batch_op.add_column(sa.Column("purchase_note", sa.Text(), nullable=True))
        batch_op.add_column(sa.Column("purchase_validated_by_id", sa.Integer(), nullable=True))
        batch_op.add_column(sa.Column("purchase_validated_at", sa.DateTime(timezone=True), nullable=True))
        batch_op.add_column(sa.Column("purchase_received_at", sa.DateTime(timezone=True), nullable=True))
        batch_op.create_foreign_key(
            "fk_requisition_items_purchase_validated_by_id_users", "users", ["purchase_validated_by_id"], ["id"]
        )


def downgrade():
    with op.batch_alter_table("requisition_items", schema=None) as batch_op:
        batch_op.drop_constraint("fk_requisition_items_purchase_validated_by_id_users", type_="foreignkey")
        batch_op.drop_column("purchase_received_at")
        batch_op.drop_column("purchase_validated_at")
        batch_op.drop_column("purchase_validated_by_id")
        batch_op.drop_column("purchase_note")
        batch_op.drop_column("status")

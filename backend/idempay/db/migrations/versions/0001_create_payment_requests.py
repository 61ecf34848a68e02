"""create payment_requests

Revision ID: 0001_create_payment_requests
Revises:
Create Date: 2026-10-17
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "0001_create_payment_requests"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "payment_requests",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("idempotency_key", sa.String(36), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("processing_status", sa.String(20), nullable=False),
        sa.Column("request_hash", sa.String(64), nullable=False),
        sa.Column("request_body", sa.Text(), nullable=False),
        sa.Column("response_status", sa.Integer(), nullable=True),
        sa.Column("response_body", postgresql.JSONB(), nullable=True),
        sa.Column("transaction_no", sa.String(64), nullable=True),
        sa.Column("provider_transaction_id", sa.String(100), nullable=True),
        sa.Column("payment_status", sa.String(20), nullable=True),
        sa.Column("payment_provider", sa.String(50), nullable=True),
        sa.Column("amount", sa.Numeric(19, 4), nullable=False),
        sa.Column("payment_method", sa.String(50), nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("idempotency_key", name="uq_payment_requests_idempotency_key"),
        sa.UniqueConstraint(
            "provider_transaction_id", name="uq_payment_requests_provider_transaction_id"
        ),
    )
    op.create_index("idx_payment_requests_expires", "payment_requests", ["expires_at"])
    op.create_index(
        "idx_payment_requests_status_updated",
        "payment_requests",
        ["processing_status", "updated_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_payment_requests_status_updated", table_name="payment_requests")
    op.drop_index("idx_payment_requests_expires", table_name="payment_requests")
    op.drop_table("payment_requests")

"""settlement core tables

Revision ID: 4e7d1a9c2b60
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "4e7d1a9c2b60"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(bind, table_name: str) -> bool:
    insp = sa.inspect(bind)
    return table_name in insp.get_table_names()


def _money(name: str, default: str | None = "0") -> sa.Column:
    return sa.Column(
        name,
        sa.Numeric(12, 2),
        nullable=False,
        server_default=sa.text(default) if default is not None else None,
    )


def upgrade() -> None:
    bind = op.get_bind()

    if not _table_exists(bind, "notes"):
        op.create_table(
            "notes",
            sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
            sa.Column("seller_id", sa.String(length=36), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("file_url", sa.String(length=1000), nullable=True),
            sa.Column("purchase_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("created_at", sa.TIMESTAMP(), server_default=sa.func.now(), nullable=True),
            sa.Column("updated_at", sa.TIMESTAMP(), server_default=sa.func.now(), nullable=True),
        )

    if not _table_exists(bind, "transactions"):
        op.create_table(
            "transactions",
            sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
            sa.Column("payment_gateway_order_id", sa.String(length=100), nullable=False),
            sa.Column("payment_gateway_payment_id", sa.String(length=100), nullable=True),
            sa.Column("payment_gateway_signature", sa.String(length=200), nullable=True),
            sa.Column("buyer_id", sa.String(length=36), nullable=False),
            sa.Column("seller_id", sa.String(length=36), nullable=False),
            sa.Column("note_id", sa.String(length=36), sa.ForeignKey("notes.id"), nullable=False),
            _money("amount"),
            _money("seller_earning", default=None),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
            sa.Column("escrow_release_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("escrow_released_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("created_at", sa.TIMESTAMP(), server_default=sa.func.now(), nullable=True),
            sa.Column("updated_at", sa.TIMESTAMP(), server_default=sa.func.now(), nullable=True),
        )
        op.create_index("ix_transactions_gateway_order_id", "transactions", ["payment_gateway_order_id"])

    if not _table_exists(bind, "purchases"):
        op.create_table(
            "purchases",
            sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("note_id", sa.String(length=36), sa.ForeignKey("notes.id"), nullable=False),
            sa.Column("transaction_id", sa.String(length=36), sa.ForeignKey("transactions.id"), nullable=False),
            sa.Column("watermarked_file_url", sa.String(length=1000), nullable=True),
            sa.Column("watermark_id", sa.String(length=100), nullable=False),
            sa.Column("download_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.TIMESTAMP(), server_default=sa.func.now(), nullable=True),
            sa.UniqueConstraint("transaction_id", name="uq_purchases_transaction_id"),
        )

    if not _table_exists(bind, "seller_wallets"):
        op.create_table(
            "seller_wallets",
            sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
            sa.Column("seller_id", sa.String(length=36), nullable=False),
            _money("available_balance"),
            _money("pending_balance"),
            _money("total_earned"),
            _money("total_withdrawn"),
            _money("minimum_withdrawal_amount", default="100"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.TIMESTAMP(), server_default=sa.func.now(), nullable=True),
            sa.Column("updated_at", sa.TIMESTAMP(), server_default=sa.func.now(), nullable=True),
            sa.UniqueConstraint("seller_id", name="uq_seller_wallets_seller_id"),
        )

    if not _table_exists(bind, "notifications"):
        op.create_table(
            "notifications",
            sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("type", sa.String(length=20), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("message", sa.String(length=1000), nullable=False),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.TIMESTAMP(), server_default=sa.func.now(), nullable=True),
        )

    if not _table_exists(bind, "webhook_logs"):
        op.create_table(
            "webhook_logs",
            sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
            sa.Column("event_id", sa.String(length=150), nullable=False),
            sa.Column("event_type", sa.String(length=50), nullable=False),
            sa.Column("payload", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False),
            sa.Column("processed_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("created_at", sa.TIMESTAMP(), server_default=sa.func.now(), nullable=True),
            sa.UniqueConstraint("event_id", name="uq_webhook_logs_event_id"),
        )

    if not _table_exists(bind, "alert_records"):
        op.create_table(
            "alert_records",
            sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
            sa.Column("severity", sa.String(length=20), nullable=False),
            sa.Column("event", sa.String(length=100), nullable=False),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("metadata", sa.JSON(), nullable=False),
            sa.Column("environment", sa.String(length=50), nullable=True),
            sa.Column("attempts", sa.JSON(), nullable=False),
            sa.Column("attempt_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("created_at", sa.TIMESTAMP(), server_default=sa.func.now(), nullable=True),
            sa.Column("last_attempt_at", sa.TIMESTAMP(), nullable=True),
        )
        op.create_index("ix_alert_records_status", "alert_records", ["status"])


def downgrade() -> None:
    bind = op.get_bind()

    for table_name in (
        "alert_records",
        "webhook_logs",
        "notifications",
        "seller_wallets",
        "purchases",
        "transactions",
        "notes",
    ):
        if _table_exists(bind, table_name):
            op.drop_table(table_name)

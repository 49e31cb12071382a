"""initial draw engine schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-16 00:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ID_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def _ts(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    op.create_table(
        "draws",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("draw_type", sa.String(length=10), nullable=False),
        sa.Column("numbers_required", sa.Integer(), nullable=False),
        sa.Column("max_number_value", sa.Integer(), nullable=False),
        sa.Column("jackpot_amount", sa.Numeric(12, 2), nullable=False),
        _ts("draw_date", nullable=False),
        sa.Column("winning_numbers", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        _ts("created_at", nullable=False),
        _ts("completed_at"),
        sa.CheckConstraint(
            "draw_type IN ('daily','weekly')", name="ck_draws_draw_type_enum"
        ),
        sa.CheckConstraint(
            "status IN ('open','closed','completed')", name="ck_draws_status_enum"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_draws"),
    )
    op.create_index("ix_draws_type_date", "draws", ["draw_type", "draw_date"])

    op.create_table(
        "tickets",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("ticket_number", sa.String(length=64), nullable=False),
        sa.Column("user_id", ID_TYPE, nullable=False),
        sa.Column("draw_id", ID_TYPE, nullable=False),
        sa.Column("selected_numbers", sa.JSON(), nullable=False),
        sa.Column("cost", sa.Numeric(10, 2), nullable=False),
        _ts("purchased_at", nullable=False),
        sa.Column("agent_id", ID_TYPE, nullable=True),
        sa.Column("matched_count", sa.Integer(), nullable=True),
        sa.Column("prize_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("is_winner", sa.Boolean(), nullable=True),
        _ts("resolved_at"),
        sa.ForeignKeyConstraint(
            ["draw_id"],
            ["draws.id"],
            name="fk_tickets_draw_id_draws",
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_tickets"),
        sa.UniqueConstraint("ticket_number", name="uq_tickets_ticket_number"),
    )
    op.create_index("ix_tickets_user_id", "tickets", ["user_id"])
    op.create_index("ix_tickets_draw_id", "tickets", ["draw_id"])
    op.create_index("ix_tickets_draw_winner", "tickets", ["draw_id", "is_winner"])

    op.create_table(
        "randomness_audit_entries",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("request_id", sa.String(length=128), nullable=False),
        sa.Column("draw_id", ID_TYPE, nullable=False),
        sa.Column("oracle_source", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("seed", sa.Text(), nullable=True),
        sa.Column("proof", sa.Text(), nullable=True),
        sa.Column("transaction_hash", sa.String(length=255), nullable=True),
        sa.Column("block_number", sa.Integer(), nullable=True),
        sa.Column("oracle_address", sa.String(length=255), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        _ts("created_at", nullable=False),
        _ts("estimated_fulfillment_at"),
        _ts("fulfilled_at"),
        _ts("failed_at"),
        sa.CheckConstraint(
            "oracle_source IN ('certified_chain','local_secure')",
            name="ck_randomness_audit_entries_oracle_source_enum",
        ),
        sa.CheckConstraint(
            "status IN ('pending','fulfilled','failed')",
            name="ck_randomness_audit_entries_status_enum",
        ),
        sa.ForeignKeyConstraint(
            ["draw_id"],
            ["draws.id"],
            name="fk_randomness_audit_entries_draw_id_draws",
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_randomness_audit_entries"),
        sa.UniqueConstraint(
            "request_id", name="uq_randomness_audit_entries_request_id"
        ),
    )
    op.create_index(
        "ix_randomness_audit_entries_draw_id", "randomness_audit_entries", ["draw_id"]
    )
    op.create_index(
        "ix_randomness_audit_status", "randomness_audit_entries", ["status"]
    )

    op.create_table(
        "merkle_batches",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("draw_id", ID_TYPE, nullable=True),
        sa.Column("root", sa.String(length=64), nullable=False),
        sa.Column("leaf_hashes", sa.JSON(), nullable=False),
        sa.Column("leaf_count", sa.Integer(), nullable=False),
        sa.Column("anchor_reference", sa.String(length=255), nullable=True),
        sa.Column("anchor_block_number", sa.Integer(), nullable=True),
        sa.Column("anchor_attempts", sa.Integer(), nullable=False),
        sa.Column("last_anchor_error", sa.Text(), nullable=True),
        _ts("anchored_at"),
        _ts("created_at", nullable=False),
        sa.ForeignKeyConstraint(
            ["draw_id"],
            ["draws.id"],
            name="fk_merkle_batches_draw_id_draws",
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_merkle_batches"),
    )
    op.create_index("ix_merkle_batches_draw_id", "merkle_batches", ["draw_id"])
    op.create_index("ix_merkle_batches_anchored_at", "merkle_batches", ["anchored_at"])

    op.create_table(
        "ticket_hashes",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("ticket_id", ID_TYPE, nullable=False),
        sa.Column("hash", sa.String(length=64), nullable=False),
        sa.Column("algorithm", sa.String(length=20), nullable=False),
        sa.Column("batch_id", sa.Integer(), nullable=True),
        sa.Column("leaf_index", sa.Integer(), nullable=True),
        sa.Column("merkle_root", sa.String(length=64), nullable=True),
        sa.Column("blockchain_anchor", sa.String(length=255), nullable=True),
        _ts("created_at", nullable=False),
        sa.ForeignKeyConstraint(
            ["ticket_id"],
            ["tickets.id"],
            name="fk_ticket_hashes_ticket_id_tickets",
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["batch_id"],
            ["merkle_batches.id"],
            name="fk_ticket_hashes_batch_id_merkle_batches",
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_ticket_hashes"),
        sa.UniqueConstraint("ticket_id", name="uq_ticket_hashes_ticket_id"),
        sa.UniqueConstraint("hash", name="uq_ticket_hashes_hash"),
    )
    op.create_index("ix_ticket_hashes_batch_id", "ticket_hashes", ["batch_id"])

    op.create_table(
        "wallet_accounts",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("user_id", ID_TYPE, nullable=False),
        sa.Column("balance", sa.Numeric(14, 2), nullable=False),
        _ts("updated_at", nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_wallet_accounts"),
        sa.UniqueConstraint("user_id", name="uq_wallet_accounts_user_id"),
    )

    op.create_table(
        "wallet_transactions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", ID_TYPE, nullable=False),
        sa.Column("type", sa.String(length=30), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        _ts("created_at", nullable=False),
        sa.CheckConstraint(
            "type IN ('deposit','ticket_purchase','prize_payout')",
            name="ck_wallet_transactions_type_enum",
        ),
        sa.CheckConstraint(
            "status IN ('pending','completed','failed')",
            name="ck_wallet_transactions_status_enum",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_wallet_transactions"),
    )
    op.create_index(
        "ix_wallet_transactions_user_id", "wallet_transactions", ["user_id"]
    )
    op.create_index(
        "ix_wallet_transactions_user_type", "wallet_transactions", ["user_id", "type"]
    )

    op.create_table(
        "payout_records",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("ticket_id", ID_TYPE, nullable=False),
        sa.Column("user_id", ID_TYPE, nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("credit_attempts", sa.Integer(), nullable=False),
        sa.Column("new_balance", sa.Numeric(14, 2), nullable=True),
        _ts("credited_at"),
        _ts("transaction_recorded_at"),
        _ts("notified_at"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(
            ["ticket_id"],
            ["tickets.id"],
            name="fk_payout_records_ticket_id_tickets",
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_payout_records"),
        sa.UniqueConstraint("ticket_id", name="uq_payout_records_ticket_id"),
    )
    op.create_index("ix_payout_records_user_id", "payout_records", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_payout_records_user_id", table_name="payout_records")
    op.drop_table("payout_records")
    op.drop_index("ix_wallet_transactions_user_type", table_name="wallet_transactions")
    op.drop_index("ix_wallet_transactions_user_id", table_name="wallet_transactions")
    op.drop_table("wallet_transactions")
    op.drop_table("wallet_accounts")
    op.drop_index("ix_ticket_hashes_batch_id", table_name="ticket_hashes")
    op.drop_table("ticket_hashes")
    op.drop_index("ix_merkle_batches_anchored_at", table_name="merkle_batches")
    op.drop_index("ix_merkle_batches_draw_id", table_name="merkle_batches")
    op.drop_table("merkle_batches")
    op.drop_index("ix_randomness_audit_status", table_name="randomness_audit_entries")
    op.drop_index(
        "ix_randomness_audit_entries_draw_id", table_name="randomness_audit_entries"
    )
    op.drop_table("randomness_audit_entries")
    op.drop_index("ix_tickets_draw_winner", table_name="tickets")
    op.drop_index("ix_tickets_draw_id", table_name="tickets")
    op.drop_index("ix_tickets_user_id", table_name="tickets")
    op.drop_table("tickets")
    op.drop_index("ix_draws_type_date", table_name="draws")
    op.drop_table("draws")

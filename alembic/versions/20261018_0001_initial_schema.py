"""initial lottery schema

Revision ID: 0001
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ID = sa.BigInteger().with_variant(sa.Integer(), "sqlite")
MONEY = sa.BigInteger()
TS = sa.DateTime(timezone=True)

ROLES = ("agent", "coordinator", "area_coordinator", "admin", "superadmin")
KINDS = ("load", "deduct", "payout", "commission", "sale", "refund")
DRAW_STATUSES = ("scheduled", "open", "closed", "settled")
SLOTS = ("twoPM", "fivePM", "ninePM")
BET_TYPES = ("straight", "rambolito")
TICKET_STATUSES = ("active", "won", "claimed", "voided")
CLAIM_STATUSES = ("pending", "approved", "rejected")
AUDIT_ACTIONS = (
    "TICKET_SOLD",
    "TICKET_VOIDED",
    "DRAW_SETTLED",
    "CLAIM_REQUESTED",
    "CLAIM_APPROVED",
    "CLAIM_REJECTED",
    "PAYOUT",
)


def _enum(name: str, values: tuple[str, ...]) -> sa.Enum:
    return sa.Enum(
        *values, name=name, native_enum=False, create_constraint=False, length=32
    )


def _in_check(table: str, column: str, type_name: str, values: tuple[str, ...]):
    quoted = ", ".join(f"'{v}'" for v in values)
    return sa.CheckConstraint(
        f"{column} IN ({quoted})", name=op.f(f"ck_{table}_{type_name}")
    )


def _fk(table: str, column: str, referred: str, ondelete: str):
    return sa.ForeignKeyConstraint(
        [column],
        [f"{referred}.id"],
        name=op.f(f"fk_{table}_{column}_{referred}"),
        ondelete=ondelete,
    )


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", ID, autoincrement=True, nullable=False),
        sa.Column("username", sa.String(length=50), nullable=False),
        sa.Column("full_name", sa.String(length=100), nullable=True),
        sa.Column("role", _enum("account_role", ROLES), nullable=False),
        sa.Column("current_balance", MONEY, server_default=sa.text("0"), nullable=False),
        sa.Column("parent_id", ID, nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("updated_at", TS, nullable=False),
        sa.CheckConstraint(
            "parent_id IS NULL OR parent_id <> id", name=op.f("ck_accounts_not_own_parent")
        ),
        _in_check("accounts", "role", "account_role", ROLES),
        _fk("accounts", "parent_id", "accounts", "RESTRICT"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_accounts")),
        sa.UniqueConstraint("username", name=op.f("uq_accounts_username")),
    )
    op.create_index(op.f("ix_accounts_parent_id"), "accounts", ["parent_id"])

    op.create_table(
        "balance_transactions",
        sa.Column("id", ID, autoincrement=True, nullable=False),
        sa.Column("account_id", ID, nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("kind", _enum("transaction_kind", KINDS), nullable=False),
        sa.Column("balance_after", MONEY, nullable=False),
        sa.Column("processed_by_id", ID, nullable=True),
        sa.Column("reference", sa.String(length=64), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("prev_hash", sa.String(length=64), nullable=True),
        sa.Column("entry_hash", sa.String(length=64), nullable=False),
        sa.Column("created_at", TS, nullable=False),
        sa.CheckConstraint("amount <> 0", name=op.f("ck_balance_transactions_nonzero_amount")),
        _in_check("balance_transactions", "kind", "transaction_kind", KINDS),
        _fk("balance_transactions", "account_id", "accounts", "RESTRICT"),
        _fk("balance_transactions", "processed_by_id", "accounts", "SET NULL"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_balance_transactions")),
        sa.UniqueConstraint("entry_hash", name=op.f("uq_balance_transactions_entry_hash")),
    )
    op.create_index(
        "ix_balance_tx_account_created", "balance_transactions", ["account_id", "created_at"]
    )
    op.create_index("ix_balance_tx_reference", "balance_transactions", ["reference"])

    op.create_table(
        "draws",
        sa.Column("id", ID, autoincrement=True, nullable=False),
        sa.Column("draw_date", sa.Date(), nullable=False),
        sa.Column("time_slot", _enum("draw_time_slot", SLOTS), nullable=False),
        sa.Column("status", _enum("draw_status", DRAW_STATUSES), nullable=False),
        sa.Column("opens_at", TS, nullable=False),
        sa.Column("cutoff_at", TS, nullable=False),
        sa.Column("draws_at", TS, nullable=False),
        sa.Column("result", sa.String(length=3), nullable=True),
        sa.Column("settled_at", TS, nullable=True),
        sa.Column("settled_by_id", ID, nullable=True),
        sa.Column("created_at", TS, nullable=False),
        sa.CheckConstraint(
            "(result IS NULL AND status <> 'settled') OR "
            "(result IS NOT NULL AND status = 'settled')",
            name=op.f("ck_draws_result_iff_settled"),
        ),
        sa.CheckConstraint("opens_at < cutoff_at", name=op.f("ck_draws_window_order")),
        _in_check("draws", "time_slot", "draw_time_slot", SLOTS),
        _in_check("draws", "status", "draw_status", DRAW_STATUSES),
        _fk("draws", "settled_by_id", "accounts", "SET NULL"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_draws")),
        sa.UniqueConstraint("draw_date", "time_slot", name="uq_draws_date_slot"),
    )
    op.create_index("ix_draws_status", "draws", ["status"])

    op.create_table(
        "bet_limits",
        sa.Column("id", ID, autoincrement=True, nullable=False),
        sa.Column("draw_id", ID, nullable=False),
        sa.Column("bet_type", _enum("bet_type", BET_TYPES), nullable=False),
        sa.Column("max_amount", MONEY, nullable=False),
        sa.Column("current_total", MONEY, server_default=sa.text("0"), nullable=False),
        sa.Column("updated_at", TS, nullable=False),
        sa.CheckConstraint("max_amount >= 0", name=op.f("ck_bet_limits_max_nonnegative")),
        sa.CheckConstraint(
            "current_total >= 0 AND current_total <= max_amount",
            name=op.f("ck_bet_limits_total_within_max"),
        ),
        _in_check("bet_limits", "bet_type", "bet_type", BET_TYPES),
        _fk("bet_limits", "draw_id", "draws", "CASCADE"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_bet_limits")),
        sa.UniqueConstraint("draw_id", "bet_type", name="uq_bet_limits_draw_type"),
    )

    op.create_table(
        "combination_exposures",
        sa.Column("id", ID, autoincrement=True, nullable=False),
        sa.Column("draw_id", ID, nullable=False),
        sa.Column("bet_type", _enum("bet_type", BET_TYPES), nullable=False),
        sa.Column("combination", sa.String(length=3), nullable=False),
        sa.Column("max_amount", MONEY, nullable=True),
        sa.Column("current_total", MONEY, server_default=sa.text("0"), nullable=False),
        sa.Column("bet_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("updated_at", TS, nullable=False),
        sa.CheckConstraint(
            "max_amount IS NULL OR current_total <= max_amount",
            name=op.f("ck_combination_exposures_total_within_cap"),
        ),
        sa.CheckConstraint(
            "current_total >= 0", name=op.f("ck_combination_exposures_total_nonnegative")
        ),
        _in_check("combination_exposures", "bet_type", "bet_type", BET_TYPES),
        _fk("combination_exposures", "draw_id", "draws", "CASCADE"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_combination_exposures")),
        sa.UniqueConstraint(
            "draw_id", "bet_type", "combination", name="uq_combination_exposure"
        ),
    )

    op.create_table(
        "prize_configurations",
        sa.Column("id", ID, autoincrement=True, nullable=False),
        sa.Column("bet_type", _enum("bet_type", BET_TYPES), nullable=False),
        sa.Column("variant", sa.String(length=16), nullable=False),
        sa.Column("multiplier", MONEY, nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("created_by_id", ID, nullable=True),
        sa.Column("updated_at", TS, nullable=False),
        sa.CheckConstraint(
            "variant IN ('straight','double','distinct')",
            name=op.f("ck_prize_configurations_variant_enum"),
        ),
        sa.CheckConstraint(
            "multiplier >= 0", name=op.f("ck_prize_configurations_multiplier_nonnegative")
        ),
        _in_check("prize_configurations", "bet_type", "bet_type", BET_TYPES),
        _fk("prize_configurations", "created_by_id", "accounts", "SET NULL"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_prize_configurations")),
        sa.UniqueConstraint("bet_type", "variant", name="uq_prize_config_type_variant"),
    )

    op.create_table(
        "tickets",
        sa.Column("id", ID, autoincrement=True, nullable=False),
        sa.Column("ticket_number", sa.String(length=17), nullable=False),
        sa.Column("account_id", ID, nullable=False),
        sa.Column("draw_id", ID, nullable=False),
        sa.Column("status", _enum("ticket_status", TICKET_STATUSES), nullable=False),
        sa.Column("total_amount", MONEY, nullable=False),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("voided_at", TS, nullable=True),
        sa.Column("claimed_at", TS, nullable=True),
        sa.CheckConstraint(
            "length(ticket_number) = 17", name=op.f("ck_tickets_ticket_number_length")
        ),
        sa.CheckConstraint("total_amount > 0", name=op.f("ck_tickets_total_positive")),
        _in_check("tickets", "status", "ticket_status", TICKET_STATUSES),
        _fk("tickets", "account_id", "accounts", "RESTRICT"),
        _fk("tickets", "draw_id", "draws", "RESTRICT"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_tickets")),
        sa.UniqueConstraint("ticket_number", name=op.f("uq_tickets_ticket_number")),
    )
    op.create_index(op.f("ix_tickets_account_id"), "tickets", ["account_id"])
    op.create_index(op.f("ix_tickets_draw_id"), "tickets", ["draw_id"])
    op.create_index("ix_tickets_draw_status", "tickets", ["draw_id", "status"])

    op.create_table(
        "bets",
        sa.Column("id", ID, autoincrement=True, nullable=False),
        sa.Column("ticket_id", ID, nullable=False),
        sa.Column("sequence", sa.String(length=1), nullable=False),
        sa.Column("bet_type", _enum("bet_type", BET_TYPES), nullable=False),
        sa.Column("combination", sa.String(length=3), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("is_winner", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("win_amount", MONEY, server_default=sa.text("0"), nullable=False),
        sa.Column("evaluated_at", TS, nullable=True),
        sa.CheckConstraint("amount > 0", name=op.f("ck_bets_amount_positive")),
        sa.CheckConstraint(
            "length(combination) = 3", name=op.f("ck_bets_combination_length")
        ),
        _in_check("bets", "bet_type", "bet_type", BET_TYPES),
        _fk("bets", "ticket_id", "tickets", "CASCADE"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_bets")),
        sa.UniqueConstraint("ticket_id", "sequence", name="uq_bets_ticket_sequence"),
    )
    op.create_index(op.f("ix_bets_ticket_id"), "bets", ["ticket_id"])

    op.create_table(
        "claim_requests",
        sa.Column("id", ID, autoincrement=True, nullable=False),
        sa.Column("ticket_id", ID, nullable=False),
        sa.Column("claimer_name", sa.String(length=100), nullable=False),
        sa.Column("claimer_contact", sa.String(length=100), nullable=True),
        sa.Column("claimer_address", sa.Text(), nullable=True),
        sa.Column("status", _enum("claim_status", CLAIM_STATUSES), nullable=False),
        sa.Column("calculated_prize_amount", MONEY, nullable=False),
        sa.Column("approved_prize_amount", MONEY, nullable=True),
        sa.Column("approval_requested_at", TS, nullable=False),
        sa.Column("requested_by_id", ID, nullable=True),
        sa.Column("resolved_at", TS, nullable=True),
        sa.Column("resolved_by_id", ID, nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.CheckConstraint(
            "calculated_prize_amount > 0", name=op.f("ck_claim_requests_prize_positive")
        ),
        sa.CheckConstraint(
            "(status = 'pending' AND resolved_at IS NULL) OR "
            "(status <> 'pending' AND resolved_at IS NOT NULL)",
            name=op.f("ck_claim_requests_resolved_iff_terminal"),
        ),
        _in_check("claim_requests", "status", "claim_status", CLAIM_STATUSES),
        _fk("claim_requests", "ticket_id", "tickets", "RESTRICT"),
        _fk("claim_requests", "requested_by_id", "accounts", "SET NULL"),
        _fk("claim_requests", "resolved_by_id", "accounts", "SET NULL"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_claim_requests")),
    )
    op.create_index(op.f("ix_claim_requests_ticket_id"), "claim_requests", ["ticket_id"])
    op.create_index("ix_claim_requests_status", "claim_requests", ["status"])
    op.create_index(
        "uq_claim_requests_one_pending",
        "claim_requests",
        ["ticket_id"],
        unique=True,
        sqlite_where=sa.text("status = 'pending'"),
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "claim_audit_entries",
        sa.Column("id", ID, autoincrement=True, nullable=False),
        sa.Column("ticket_id", ID, nullable=True),
        sa.Column("claim_id", ID, nullable=True),
        sa.Column("draw_id", ID, nullable=True),
        sa.Column("action", _enum("audit_action", AUDIT_ACTIONS), nullable=False),
        sa.Column("performed_by_id", ID, nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", TS, nullable=False),
        sa.CheckConstraint(
            "ticket_id IS NOT NULL OR draw_id IS NOT NULL",
            name=op.f("ck_claim_audit_entries_has_subject"),
        ),
        _in_check("claim_audit_entries", "action", "audit_action", AUDIT_ACTIONS),
        _fk("claim_audit_entries", "ticket_id", "tickets", "RESTRICT"),
        _fk("claim_audit_entries", "claim_id", "claim_requests", "RESTRICT"),
        _fk("claim_audit_entries", "draw_id", "draws", "RESTRICT"),
        _fk("claim_audit_entries", "performed_by_id", "accounts", "SET NULL"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_claim_audit_entries")),
    )
    op.create_index(
        op.f("ix_claim_audit_entries_ticket_id"), "claim_audit_entries", ["ticket_id"]
    )
    op.create_index(
        "ix_claim_audit_action_created", "claim_audit_entries", ["action", "created_at"]
    )


def downgrade() -> None:
    op.drop_table("claim_audit_entries")
    op.drop_index("uq_claim_requests_one_pending", table_name="claim_requests")
    op.drop_table("claim_requests")
    op.drop_table("bets")
    op.drop_table("tickets")
    op.drop_table("prize_configurations")
    op.drop_table("combination_exposures")
    op.drop_table("bet_limits")
    op.drop_table("draws")
    op.drop_table("balance_transactions")
    op.drop_table("accounts")

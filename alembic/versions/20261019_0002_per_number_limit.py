"""default per-number cap on bet limits

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-19 08:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: Union[str, None] = "0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    with op.batch_alter_table("bet_limits") as batch_op:
        batch_op.add_column(sa.Column("per_number_max", sa.BigInteger(), nullable=True))
        batch_op.create_check_constraint(
            op.f("ck_bet_limits_number_cap_nonnegative"),
            "per_number_max IS NULL OR per_number_max >= 0",
        )


def downgrade() -> None:
    with op.batch_alter_table("bet_limits") as batch_op:
        batch_op.drop_constraint(op.f("ck_bet_limits_number_cap_nonnegative"), type_="check")
        batch_op.drop_column("per_number_max")

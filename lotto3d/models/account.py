from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Iterator, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    event,
    select,
    text,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from ..errors import ImmutableRecordError
from .base import Base
from .enums import AccountRole, TransactionKind, enum_column
from .types import ID_TYPE, Money, UTCDateTime, utcnow

if TYPE_CHECKING:
    from .ticket import Ticket


class Account(Base):
    """A participant in the agent hierarchy holding a prepaid balance.

    ``current_balance`` is a cached projection of the account's
    :class:`BalanceTransaction` rows. It is only ever changed by the ledger's
    conditional updates, never assigned directly by application code.
    """

    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    full_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    role: Mapped[AccountRole] = mapped_column(
        enum_column(AccountRole, "account_role"), nullable=False
    )
    current_balance: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0.00"), server_default=text("0")
    )
    parent_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    parent: Mapped[Optional["Account"]] = relationship(
        "Account", remote_side="Account.id", back_populates="children"
    )
    children: Mapped[list["Account"]] = relationship(
        "Account", back_populates="parent"
    )
    transactions: Mapped[list["BalanceTransaction"]] = relationship(
        back_populates="account",
        foreign_keys="BalanceTransaction.account_id",
        order_by="BalanceTransaction.id",
        viewonly=True,
    )
    tickets: Mapped[list["Ticket"]] = relationship(back_populates="account")

    __table_args__ = (
        CheckConstraint("parent_id IS NULL OR parent_id <> id", name="not_own_parent"),
    )

    def __init__(
        self,
        username: str,
        role: AccountRole | str,
        full_name: Optional[str] = None,
        parent: Optional["Account"] = None,
        parent_id: Optional[int] = None,
        is_active: bool = True,
    ) -> None:
        self.username = username
        self.role = AccountRole(role)
        self.full_name = full_name
        self.current_balance = Decimal("0.00")
        self.is_active = is_active
        if parent is not None:
            self.parent = parent
        if parent_id is not None:
            self.parent_id = parent_id

    def __repr__(self) -> str:
        return (
            f"<Account(id={self.id}, username='{self.username}', "
            f"role='{self.role.value if self.role else None}', parent_id={self.parent_id})>"
        )

    @classmethod
    def get_by_username(cls, session: Session, username: str) -> Optional["Account"]:
        """Retrieve an account by username."""

        return session.scalar(select(cls).where(cls.username == username))

    def ancestors(self) -> Iterator["Account"]:
        """Yield the reporting chain upwards, nearest manager first."""
        seen: set[int] = set()
        node = self.parent
        while node is not None and id(node) not in seen:
            seen.add(id(node))
            yield node
            node = node.parent

    def is_ancestor_of(self, other: "Account") -> bool:
        """Return ``True`` when ``other`` reports (directly or not) to this account."""
        return any(a is self for a in other.ancestors())


class BalanceTransaction(Base):
    """One immutable ledger entry.

    Entries for an account form a hash chain: ``entry_hash`` covers the
    entry's own fields plus ``prev_hash``, the hash of the previous entry for
    the same account. Rewriting any historical row breaks every later link.
    """

    __tablename__ = "balance_transactions"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    """Signed amount; credits are positive, debits negative."""

    kind: Mapped[TransactionKind] = mapped_column(
        enum_column(TransactionKind, "transaction_kind"), nullable=False
    )
    balance_after: Mapped[Decimal] = mapped_column(Money, nullable=False)
    """Account balance immediately after this entry was applied."""

    processed_by_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True
    )
    reference: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    """External reference such as a ticket number."""

    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    prev_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )

    account: Mapped["Account"] = relationship(
        foreign_keys=[account_id], back_populates="transactions"
    )
    processed_by: Mapped[Optional["Account"]] = relationship(
        foreign_keys=[processed_by_id]
    )

    __table_args__ = (
        CheckConstraint("amount <> 0", name="nonzero_amount"),
        Index("ix_balance_tx_account_created", "account_id", "created_at"),
        Index("ix_balance_tx_reference", "reference"),
    )

    def __repr__(self) -> str:
        return (
            f"<BalanceTransaction(id={self.id}, account_id={self.account_id}, "
            f"kind='{self.kind.value if self.kind else None}', amount={self.amount}, "
            f"balance_after={self.balance_after})>"
        )


@event.listens_for(BalanceTransaction, "before_update")
def _refuse_ledger_update(mapper, connection, target) -> None:
    raise ImmutableRecordError("Balance transactions are append-only.")


@event.listens_for(BalanceTransaction, "before_delete")
def _refuse_ledger_delete(mapper, connection, target) -> None:
    raise ImmutableRecordError("Balance transactions are append-only.")


__all__ = ["Account", "BalanceTransaction"]

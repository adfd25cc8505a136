from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    select,
    text,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from .base import Base
from .enums import BetType, TicketStatus, enum_column
from .types import ID_TYPE, Money, UTCDateTime, utcnow

if TYPE_CHECKING:
    from .account import Account
    from .claim import ClaimRequest
    from .draw import Draw


class Ticket(Base):
    """A sold ticket holding one or more bets on a single draw."""

    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    ticket_number: Mapped[str] = mapped_column(String(17), nullable=False, unique=True)
    account_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    draw_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("draws.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    status: Mapped[TicketStatus] = mapped_column(
        enum_column(TicketStatus, "ticket_status"),
        nullable=False,
        default=TicketStatus.ACTIVE,
    )
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    voided_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    account: Mapped["Account"] = relationship(back_populates="tickets")
    draw: Mapped["Draw"] = relationship(back_populates="tickets")
    bets: Mapped[list["Bet"]] = relationship(
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by="Bet.sequence",
    )
    claims: Mapped[list["ClaimRequest"]] = relationship(
        back_populates="ticket", order_by="ClaimRequest.id"
    )

    __table_args__ = (
        CheckConstraint("length(ticket_number) = 17", name="ticket_number_length"),
        CheckConstraint("total_amount > 0", name="total_positive"),
        Index("ix_tickets_draw_status", "draw_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Ticket(id={self.id}, ticket_number='{self.ticket_number}', "
            f"draw_id={self.draw_id}, status='{self.status.value if self.status else None}', "
            f"total_amount={self.total_amount})>"
        )

    @classmethod
    def get_by_number(cls, session: Session, ticket_number: str) -> Optional["Ticket"]:
        """Retrieve a ticket by its 17-digit number."""

        return session.scalar(select(cls).where(cls.ticket_number == ticket_number))

    @property
    def winning_bets(self) -> list["Bet"]:
        return [bet for bet in self.bets if bet.is_winner]

    @property
    def prize_amount(self) -> Decimal:
        """Sum of the winning bets' prizes (zero before settlement)."""
        return sum(
            (bet.win_amount or Decimal("0.00") for bet in self.winning_bets),
            Decimal("0.00"),
        )


class Bet(Base):
    """A single wager line on a ticket."""

    __tablename__ = "bets"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sequence: Mapped[str] = mapped_column(String(1), nullable=False)
    """Line letter printed on the ticket (A, B, C, ...)."""

    bet_type: Mapped[BetType] = mapped_column(
        enum_column(BetType, "bet_type"), nullable=False
    )
    combination: Mapped[str] = mapped_column(String(3), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    is_winner: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    win_amount: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0.00"), server_default=text("0")
    )
    evaluated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    """Set once by settlement; bets with a value here are never re-evaluated."""

    ticket: Mapped["Ticket"] = relationship(back_populates="bets")

    __table_args__ = (
        UniqueConstraint("ticket_id", "sequence", name="uq_bets_ticket_sequence"),
        CheckConstraint("amount > 0", name="amount_positive"),
        CheckConstraint("length(combination) = 3", name="combination_length"),
    )

    def __repr__(self) -> str:
        return (
            f"<Bet(id={self.id}, ticket_id={self.ticket_id}, bet_type='{self.bet_type.value}', "
            f"combination='{self.combination}', amount={self.amount}, "
            f"is_winner={self.is_winner}, win_amount={self.win_amount})>"
        )


__all__ = ["Ticket", "Bet"]

"""Database models for draws and their exposure counters."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    select,
    text,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from .base import Base
from .enums import BetType, DrawStatus, DrawTimeSlot, enum_column
from .types import ID_TYPE, Money, UTCDateTime, utcnow

if TYPE_CHECKING:
    from .account import Account
    from .ticket import Ticket


class Draw(Base):
    """A scheduled 3-digit draw for one date and time slot."""

    __tablename__ = "draws"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Primary key."""

    draw_date: Mapped[date] = mapped_column(Date, nullable=False)
    """Local calendar date of the draw."""

    time_slot: Mapped[DrawTimeSlot] = mapped_column(
        enum_column(DrawTimeSlot, "draw_time_slot"), nullable=False
    )
    """Fixed daily slot (2PM, 5PM or 9PM)."""

    status: Mapped[DrawStatus] = mapped_column(
        enum_column(DrawStatus, "draw_status"),
        nullable=False,
        default=DrawStatus.SCHEDULED,
    )
    """Lifecycle state; only moves forward."""

    opens_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    """Instant betting opens."""

    cutoff_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    """Instant betting closes, shortly before the draw itself."""

    draws_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    """Instant of the physical draw."""

    result: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    """Winning 3-digit number, written once on settlement."""

    settled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    settled_by_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )

    bet_limits: Mapped[list["BetLimit"]] = relationship(
        back_populates="draw",
        cascade="all, delete-orphan",
        order_by="BetLimit.bet_type",
    )
    tickets: Mapped[list["Ticket"]] = relationship(back_populates="draw")
    settled_by: Mapped[Optional["Account"]] = relationship()

    __table_args__ = (
        UniqueConstraint("draw_date", "time_slot", name="uq_draws_date_slot"),
        CheckConstraint(
            "(result IS NULL AND status <> 'settled') OR "
            "(result IS NOT NULL AND status = 'settled')",
            name="result_iff_settled",
        ),
        CheckConstraint("opens_at < cutoff_at", name="window_order"),
        Index("ix_draws_status", "status"),
    )

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<Draw(id={id}, date={d}, slot={slot}, status={status}, result={result})>".format(
            id=self.id,
            d=self.draw_date,
            slot=self.time_slot.label if self.time_slot else None,
            status=self.status.value if self.status else None,
            result=self.result,
        )

    @classmethod
    def get_by_slot(
        cls, session: Session, draw_date: date, time_slot: DrawTimeSlot
    ) -> Optional["Draw"]:
        """Return the draw scheduled for ``draw_date`` and ``time_slot``."""

        return session.scalar(
            select(cls).where(cls.draw_date == draw_date, cls.time_slot == time_slot)
        )

    def limit_for(self, bet_type: BetType) -> Optional["BetLimit"]:
        for limit in self.bet_limits:
            if limit.bet_type == bet_type:
                return limit
        return None


class BetLimit(Base):
    """Aggregate exposure counter for one (draw, bet type).

    ``per_number_max`` is the default cap on any single combination of this
    bet type; a combination's own ``max_amount`` takes precedence over it.
    ``NULL`` leaves combinations bounded only by ``max_amount``.
    """

    __tablename__ = "bet_limits"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    draw_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("draws.id", ondelete="CASCADE"), nullable=False
    )
    bet_type: Mapped[BetType] = mapped_column(
        enum_column(BetType, "bet_type"), nullable=False
    )
    max_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    current_total: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0.00"), server_default=text("0")
    )
    per_number_max: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    draw: Mapped["Draw"] = relationship(back_populates="bet_limits")

    __table_args__ = (
        UniqueConstraint("draw_id", "bet_type", name="uq_bet_limits_draw_type"),
        CheckConstraint("max_amount >= 0", name="max_nonnegative"),
        CheckConstraint(
            "current_total >= 0 AND current_total <= max_amount",
            name="total_within_max",
        ),
        CheckConstraint(
            "per_number_max IS NULL OR per_number_max >= 0", name="number_cap_nonnegative"
        ),
    )

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<BetLimit(draw_id={self.draw_id}, bet_type='{self.bet_type.value}', "
            f"current_total={self.current_total}, max_amount={self.max_amount})>"
        )


class CombinationExposure(Base):
    """Per-number exposure for one (draw, bet type, combination).

    ``max_amount`` is an optional per-number cap set by an administrator.
    When it is ``NULL`` the bet type's ``BetLimit.per_number_max`` applies.
    """

    __tablename__ = "combination_exposures"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    draw_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("draws.id", ondelete="CASCADE"), nullable=False
    )
    bet_type: Mapped[BetType] = mapped_column(
        enum_column(BetType, "bet_type"), nullable=False
    )
    combination: Mapped[str] = mapped_column(String(3), nullable=False)
    max_amount: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    current_total: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0.00"), server_default=text("0")
    )
    bet_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "draw_id", "bet_type", "combination", name="uq_combination_exposure"
        ),
        CheckConstraint(
            "max_amount IS NULL OR current_total <= max_amount",
            name="total_within_cap",
        ),
        CheckConstraint("current_total >= 0", name="total_nonnegative"),
    )


class PrizeConfiguration(Base):
    """Administrator override of a payout multiplier.

    ``variant`` distinguishes straight wins from rambolito wins with a
    repeated digit (``double``) or all-distinct digits (``distinct``).
    """

    __tablename__ = "prize_configurations"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    bet_type: Mapped[BetType] = mapped_column(
        enum_column(BetType, "bet_type"), nullable=False
    )
    variant: Mapped[str] = mapped_column(String(16), nullable=False)
    multiplier: Mapped[Decimal] = mapped_column(Money, nullable=False)
    """Payout per unit wagered, two-place fixed point."""
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    created_by_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("bet_type", "variant", name="uq_prize_config_type_variant"),
        CheckConstraint(
            "variant IN ('straight','double','distinct')", name="variant_enum"
        ),
        CheckConstraint("multiplier >= 0", name="multiplier_nonnegative"),
    )


__all__ = ["Draw", "BetLimit", "CombinationExposure", "PrizeConfiguration"]

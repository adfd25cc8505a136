from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    event,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..errors import ImmutableRecordError
from .base import Base
from .enums import AuditAction, ClaimStatus, enum_column
from .types import ID_TYPE, Money, UTCDateTime, utcnow

if TYPE_CHECKING:
    from .account import Account
    from .ticket import Ticket


class ClaimRequest(Base):
    """A ticket holder's request to redeem a winning ticket.

    The status moves from ``pending`` to exactly one of ``approved`` or
    ``rejected``. A partial unique index allows at most one pending claim
    per ticket, so two concurrent requests cannot both queue for approval.
    """

    __tablename__ = "claim_requests"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("tickets.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    claimer_name: Mapped[str] = mapped_column(String(100), nullable=False)
    claimer_contact: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    claimer_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[ClaimStatus] = mapped_column(
        enum_column(ClaimStatus, "claim_status"),
        nullable=False,
        default=ClaimStatus.PENDING,
    )
    calculated_prize_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    approved_prize_amount: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    approval_requested_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    requested_by_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    resolved_by_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    ticket: Mapped["Ticket"] = relationship(back_populates="claims")
    resolved_by: Mapped[Optional["Account"]] = relationship(
        foreign_keys=[resolved_by_id]
    )
    requested_by: Mapped[Optional["Account"]] = relationship(
        foreign_keys=[requested_by_id]
    )

    __table_args__ = (
        CheckConstraint("calculated_prize_amount > 0", name="prize_positive"),
        CheckConstraint(
            "(status = 'pending' AND resolved_at IS NULL) OR "
            "(status <> 'pending' AND resolved_at IS NOT NULL)",
            name="resolved_iff_terminal",
        ),
        Index(
            "uq_claim_requests_one_pending",
            "ticket_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
        Index("ix_claim_requests_status", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<ClaimRequest(id={self.id}, ticket_id={self.ticket_id}, "
            f"status='{self.status.value if self.status else None}', "
            f"calculated_prize_amount={self.calculated_prize_amount})>"
        )

    @property
    def payout_amount(self) -> Decimal:
        """Amount paid (or to be paid) on approval."""
        if self.approved_prize_amount is not None:
            return self.approved_prize_amount
        return self.calculated_prize_amount


class ClaimAuditEntry(Base):
    """Append-only record of a claim or settlement decision."""

    __tablename__ = "claim_audit_entries"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    ticket_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("tickets.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    claim_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("claim_requests.id", ondelete="RESTRICT"), nullable=True
    )
    draw_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("draws.id", ondelete="RESTRICT"), nullable=True
    )
    action: Mapped[AuditAction] = mapped_column(
        enum_column(AuditAction, "audit_action"), nullable=False
    )
    performed_by_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    details: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "ticket_id IS NOT NULL OR draw_id IS NOT NULL", name="has_subject"
        ),
        Index("ix_claim_audit_action_created", "action", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ClaimAuditEntry(id={self.id}, ticket_id={self.ticket_id}, "
            f"action='{self.action.value if self.action else None}', "
            f"performed_by_id={self.performed_by_id})>"
        )


@event.listens_for(ClaimAuditEntry, "before_update")
def _refuse_audit_update(mapper, connection, target) -> None:
    raise ImmutableRecordError("Audit entries are append-only.")


@event.listens_for(ClaimAuditEntry, "before_delete")
def _refuse_audit_delete(mapper, connection, target) -> None:
    raise ImmutableRecordError("Audit entries are append-only.")


__all__ = ["ClaimRequest", "ClaimAuditEntry"]

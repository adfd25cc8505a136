"""Redemption of winning tickets.

A claim is created ``pending`` and resolved exactly once, by a
compare-and-set ``UPDATE`` conditioned on ``status = 'pending'``. Of two
administrators deciding the same claim concurrently, one succeeds and the
other gets :class:`~lotto3d.errors.ClaimAlreadyResolved`. Approval pays the
prize into the selling agent's balance in the same unit of work.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Optional, Union

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import audit, ledger
from .auth import CLAIM_RESOLVE, Actor, require_capability
from .errors import (
    ClaimAlreadyResolved,
    ClaimNotFound,
    NotWinningTicket,
    TicketAlreadyClaimed,
)
from .models.claim import ClaimRequest
from .models.enums import AuditAction, ClaimDecision, ClaimStatus, TicketStatus
from .models.ticket import Ticket
from .models.types import as_money, utcnow
from .tickets import get_ticket

logger = logging.getLogger(__name__)

DEFAULT_REJECTION_REASON = "Rejected by administrator"


@dataclass(frozen=True)
class Claimant:
    """Person presenting the ticket."""

    name: str
    contact: Optional[str] = None
    address: Optional[str] = None

    @classmethod
    def coerce(cls, value: Union["Claimant", Mapping[str, Any], str]) -> "Claimant":
        if isinstance(value, Claimant):
            claimant = value
        elif isinstance(value, str):
            claimant = cls(name=value)
        elif isinstance(value, Mapping):
            claimant = cls(
                name=value.get("name", ""),
                contact=value.get("contact"),
                address=value.get("address"),
            )
        else:
            raise TypeError("claimer must be a Claimant, a mapping or a name")
        if not claimant.name or not claimant.name.strip():
            raise ValueError("Claimer name is required")
        return claimant


@dataclass(frozen=True)
class ClaimStats:
    pending: int
    approved: int
    rejected: int
    average_approval_hours: Optional[float]


def _get_claim(session: Session, claim_id: int) -> ClaimRequest:
    claim = session.get(ClaimRequest, claim_id, populate_existing=True)
    if claim is None:
        raise ClaimNotFound(f"Claim {claim_id} not found.")
    return claim


def _require_pending(claim: ClaimRequest) -> None:
    if claim.status != ClaimStatus.PENDING:
        raise ClaimAlreadyResolved(f"Claim {claim.id} is already {claim.status.value}.")


def request_claim(
    session: Session,
    ticket_number: str,
    claimer: Union[Claimant, Mapping[str, Any], str],
    *,
    actor: Optional[Actor] = None,
    notes: Optional[str] = None,
) -> ClaimRequest:
    """Open a pending claim for a winning ticket.

    Raises
    ------
    InvalidTicketNumber
        If ``ticket_number`` is not 17 digits.
    TicketNotFound
        If no ticket has that number.
    NotWinningTicket
        If the ticket has no winning bet.
    TicketAlreadyClaimed
        If the ticket was paid out or another claim for it is pending.
    """
    claimant = Claimant.coerce(claimer)
    ticket = get_ticket(session, ticket_number)
    session.refresh(ticket)

    if ticket.status == TicketStatus.CLAIMED:
        raise TicketAlreadyClaimed()
    if ticket.status != TicketStatus.WON:
        raise NotWinningTicket()
    prize = ticket.prize_amount
    if prize <= Decimal("0.00"):
        raise NotWinningTicket()

    open_claim = session.scalar(
        select(ClaimRequest.id).where(
            ClaimRequest.ticket_id == ticket.id,
            ClaimRequest.status.in_([ClaimStatus.PENDING, ClaimStatus.APPROVED]),
        )
    )
    if open_claim is not None:
        raise TicketAlreadyClaimed(
            f"Ticket {ticket.ticket_number} already has claim {open_claim}."
        )

    claim = ClaimRequest(
        ticket_id=ticket.id,
        claimer_name=claimant.name.strip(),
        claimer_contact=claimant.contact,
        claimer_address=claimant.address,
        status=ClaimStatus.PENDING,
        calculated_prize_amount=prize,
        requested_by_id=actor.account_id if actor else None,
        notes=notes,
    )
    try:
        with session.begin_nested():
            session.add(claim)
    except IntegrityError as exc:
        # The one-pending-claim index caught a concurrent request.
        raise TicketAlreadyClaimed(
            f"A claim for ticket {ticket.ticket_number} is already pending."
        ) from exc

    audit.record(
        session,
        ticket.id,
        AuditAction.CLAIM_REQUESTED,
        actor,
        notes=notes,
        claim_id=claim.id,
        details={"claimer_name": claim.claimer_name, "calculated_prize_amount": prize},
    )
    logger.info(
        "Claim %s requested for ticket %s (prize %s)", claim.id, ticket.ticket_number, prize
    )
    return claim


def approve(
    session: Session,
    claim_id: int,
    actor: Optional[Actor],
    override_prize_amount: Any = None,
    notes: Optional[str] = None,
) -> ClaimRequest:
    """Approve a pending claim and pay the prize to the selling agent.

    Parameters
    ----------
    override_prize_amount : optional
        Amount to pay instead of the calculated prize.

    Raises
    ------
    ClaimAlreadyResolved
        If the claim is no longer pending.
    """
    require_capability(actor, CLAIM_RESOLVE)
    claim = _get_claim(session, claim_id)
    _require_pending(claim)
    amount = (
        as_money(override_prize_amount)
        if override_prize_amount is not None
        else claim.calculated_prize_amount
    )
    if amount <= Decimal("0.00"):
        raise ValueError("Prize amount must be greater than zero")
    now = utcnow()

    with session.begin_nested():
        values: dict[str, Any] = {
            "status": ClaimStatus.APPROVED,
            "approved_prize_amount": amount,
            "resolved_at": now,
            "resolved_by_id": actor.account_id if actor else None,
        }
        if notes is not None:
            values["notes"] = notes
        result = session.execute(
            update(ClaimRequest)
            .where(ClaimRequest.id == claim_id, ClaimRequest.status == ClaimStatus.PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            claim = _get_claim(session, claim_id)
            raise ClaimAlreadyResolved(f"Claim {claim_id} is already {claim.status.value}.")

        ticket = session.get(Ticket, claim.ticket_id, populate_existing=True)
        result = session.execute(
            update(Ticket)
            .where(Ticket.id == ticket.id, Ticket.status == TicketStatus.WON)
            .values(status=TicketStatus.CLAIMED, claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise TicketAlreadyClaimed()
        session.refresh(ticket)

        ledger.payout(
            session,
            ticket.account_id,
            amount,
            ticket.ticket_number,
            actor,
            note=f"Prize payout for claim {claim_id}",
        )
        audit.record(
            session,
            ticket.id,
            AuditAction.CLAIM_APPROVED,
            actor,
            notes=notes,
            claim_id=claim_id,
            details={
                "calculated_prize_amount": claim.calculated_prize_amount,
                "approved_prize_amount": amount,
            },
        )
        audit.record(
            session,
            ticket.id,
            AuditAction.PAYOUT,
            actor,
            claim_id=claim_id,
            details={"account_id": ticket.account_id, "amount": amount},
        )

    logger.info(
        "Claim %s approved by account %s; paid %s to account %s",
        claim_id,
        actor.account_id if actor else None,
        amount,
        ticket.account_id,
    )
    return _get_claim(session, claim_id)


def reject(
    session: Session,
    claim_id: int,
    actor: Optional[Actor],
    reason: str,
    notes: Optional[str] = None,
) -> ClaimRequest:
    """Reject a pending claim. No money moves; the ticket stays claimable."""
    require_capability(actor, CLAIM_RESOLVE)
    claim = _get_claim(session, claim_id)
    _require_pending(claim)
    if not reason or not reason.strip():
        raise ValueError("A rejection reason is required")

    with session.begin_nested():
        values: dict[str, Any] = {
            "status": ClaimStatus.REJECTED,
            "rejection_reason": reason,
            "resolved_at": utcnow(),
            "resolved_by_id": actor.account_id if actor else None,
        }
        if notes is not None:
            values["notes"] = notes
        result = session.execute(
            update(ClaimRequest)
            .where(ClaimRequest.id == claim_id, ClaimRequest.status == ClaimStatus.PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            claim = _get_claim(session, claim_id)
            raise ClaimAlreadyResolved(f"Claim {claim_id} is already {claim.status.value}.")
        audit.record(
            session,
            claim.ticket_id,
            AuditAction.CLAIM_REJECTED,
            actor,
            notes=reason,
            claim_id=claim_id,
        )

    logger.info(
        "Claim %s rejected by account %s: %s",
        claim_id,
        actor.account_id if actor else None,
        reason,
    )
    return _get_claim(session, claim_id)


def resolve(
    session: Session,
    claim_id: int,
    decision: Union[ClaimDecision, str],
    actor: Optional[Actor],
    notes: Optional[str] = None,
    *,
    override_prize_amount: Any = None,
    reason: Optional[str] = None,
) -> ClaimRequest:
    """Apply an approve or reject decision to a pending claim.

    A rejection without ``reason`` records ``notes``, or
    :data:`DEFAULT_REJECTION_REASON` when both are missing.
    """
    decision = ClaimDecision(decision)
    if decision is ClaimDecision.APPROVE:
        return approve(session, claim_id, actor, override_prize_amount, notes)
    return reject(
        session, claim_id, actor, reason or notes or DEFAULT_REJECTION_REASON, notes
    )


def list_pending_claims(session: Session, limit: Optional[int] = None) -> list[ClaimRequest]:
    """Return pending claims, oldest first."""
    stmt = (
        select(ClaimRequest)
        .where(ClaimRequest.status == ClaimStatus.PENDING)
        .order_by(ClaimRequest.approval_requested_at.asc(), ClaimRequest.id.asc())
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(session.scalars(stmt).all())


def claim_stats(session: Session) -> ClaimStats:
    """Count claims per status and the mean time to approval in hours."""
    counts = dict(
        session.execute(
            select(ClaimRequest.status, func.count(ClaimRequest.id)).group_by(
                ClaimRequest.status
            )
        ).all()
    )
    durations = [
        (resolved - requested).total_seconds() / 3600
        for requested, resolved in session.execute(
            select(ClaimRequest.approval_requested_at, ClaimRequest.resolved_at).where(
                ClaimRequest.status == ClaimStatus.APPROVED
            )
        ).all()
    ]
    return ClaimStats(
        pending=counts.get(ClaimStatus.PENDING, 0),
        approved=counts.get(ClaimStatus.APPROVED, 0),
        rejected=counts.get(ClaimStatus.REJECTED, 0),
        average_approval_hours=(
            round(sum(durations) / len(durations), 2) if durations else None
        ),
    )


__all__ = [
    "Claimant",
    "ClaimStats",
    "request_claim",
    "approve",
    "reject",
    "resolve",
    "list_pending_claims",
    "claim_stats",
]

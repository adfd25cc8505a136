"""Ticket sales and voids.

A sale is one unit of work: the draw is checked open, every bet line
reserves exposure, the ticket and its bets are inserted, the selling agent
is charged and the sale is audited. All of it runs inside a SAVEPOINT, so a
rejected line or an insufficient balance leaves no trace.
"""

from __future__ import annotations

import logging
import string
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from . import admission, audit, ledger
from .auth import BET_PLACE, TICKET_VOID, Actor, require_capability
from .config import DEFAULT_SETTINGS, Settings
from .draws.lifecycle import require_open
from .draws.matching import DEFAULT_MATCH_REGISTRY
from .errors import (
    AccountNotFound,
    DrawNotOpen,
    InvalidBet,
    InvalidTicketNumber,
    PermissionDenied,
    TicketNotActive,
    TicketNotFound,
)
from .models.account import Account
from .models.draw import Draw
from .models.enums import AuditAction, BetType, DrawStatus, TicketStatus
from .models.ticket import Bet, Ticket
from .models.types import as_money, utcnow
from .models.utils import generate_ticket_number, is_three_digits, validate_ticket_number

logger = logging.getLogger(__name__)

SEQUENCE_LETTERS = string.ascii_uppercase


@dataclass(frozen=True)
class BetLine:
    """One requested wager before it is admitted."""

    bet_type: Any
    combination: str
    amount: Any

    def validated(self, settings: Settings = DEFAULT_SETTINGS) -> "BetLine":
        """Return a normalized copy, or raise :class:`InvalidBet`."""
        try:
            bet_type = BetType.parse(self.bet_type)
        except ValueError as exc:
            raise InvalidBet(str(exc)) from exc

        combination = self.combination.strip() if isinstance(self.combination, str) else None
        if not is_three_digits(combination):
            raise InvalidBet("Bet combination must be exactly 3 digits.")
        if not DEFAULT_MATCH_REGISTRY.get(bet_type).accepts(combination):
            raise InvalidBet(
                f"{combination} cannot be played as {bet_type.value}; "
                "rambolito needs at least two different digits."
            )

        try:
            amount = as_money(self.amount)
        except (TypeError, ValueError) as exc:
            raise InvalidBet(f"Invalid bet amount: {exc}") from exc
        if amount < settings.min_bet:
            raise InvalidBet(f"Minimum bet amount is {settings.min_bet}.")
        if amount > settings.max_bet:
            raise InvalidBet(f"Maximum bet amount is {settings.max_bet}.")
        return BetLine(bet_type=bet_type, combination=combination, amount=amount)


def _coerce_lines(lines: Iterable[Any], settings: Settings) -> list[BetLine]:
    result: list[BetLine] = []
    for line in lines:
        if isinstance(line, BetLine):
            candidate = line
        elif isinstance(line, dict):
            try:
                candidate = BetLine(
                    bet_type=line["bet_type"],
                    combination=line["combination"],
                    amount=line["amount"],
                )
            except KeyError as exc:
                raise InvalidBet(f"Bet line is missing {exc.args[0]!r}") from exc
        else:
            raise InvalidBet("Bet lines must be BetLine objects or mappings")
        result.append(candidate.validated(settings))
    if not result:
        raise InvalidBet("A ticket needs at least one bet.")
    if len(result) > len(SEQUENCE_LETTERS):
        raise InvalidBet(f"A ticket holds at most {len(SEQUENCE_LETTERS)} bets.")
    return result


def place_ticket(
    session: Session,
    account_id: int,
    draw_id: int,
    lines: Sequence[Any],
    *,
    actor: Optional[Actor] = None,
    ticket_number: Optional[str] = None,
    now: Optional[datetime] = None,
    settings: Settings = DEFAULT_SETTINGS,
) -> Ticket:
    """Sell a ticket with one or more bet lines on ``draw_id``.

    Parameters
    ----------
    account_id : int
        Selling agent; their balance pays for the ticket.
    lines : Sequence[BetLine or mapping]
        Wagers, lettered A, B, C... in the given order.
    actor : Optional[Actor], default: None
        Caller; defaults to the selling account itself.
    ticket_number : Optional[str], default: None
        Pre-assigned 17-digit number; generated when omitted.

    Raises
    ------
    InvalidBet, InvalidTicketNumber, DrawNotOpen, BetLimitExceeded,
    InsufficientBalance, AccountNotFound, PermissionDenied
    """
    account = session.get(Account, account_id)
    if account is None:
        raise AccountNotFound(f"Account {account_id} not found.")
    if not account.is_active:
        raise PermissionDenied("Account is deactivated.")
    actor = actor or Actor.for_account(account)
    require_capability(actor, BET_PLACE)
    bet_lines = _coerce_lines(lines, settings)

    if ticket_number is not None:
        ticket_number = validate_ticket_number(ticket_number)
        if Ticket.get_by_number(session, ticket_number) is not None:
            raise InvalidTicketNumber(f"Ticket number {ticket_number} is already issued.")

    with session.begin_nested():
        require_open(session, draw_id, now, lock=True)
        for line in bet_lines:
            admission.try_admit(
                session, draw_id, line.bet_type, line.combination, line.amount
            )

        number = ticket_number or generate_ticket_number(session)
        total = sum((line.amount for line in bet_lines), Decimal("0.00"))
        ticket = Ticket(
            ticket_number=number,
            account_id=account_id,
            draw_id=draw_id,
            status=TicketStatus.ACTIVE,
            total_amount=total,
        )
        for letter, line in zip(SEQUENCE_LETTERS, bet_lines):
            ticket.bets.append(
                Bet(
                    sequence=letter,
                    bet_type=line.bet_type,
                    combination=line.combination,
                    amount=line.amount,
                )
            )
        session.add(ticket)
        session.flush()

        ledger.charge_sale(session, account_id, total, number, actor)
        audit.record(
            session,
            ticket.id,
            AuditAction.TICKET_SOLD,
            actor,
            details={
                "ticket_number": number,
                "draw_id": draw_id,
                "total_amount": total,
                "bets": [
                    {
                        "sequence": bet.sequence,
                        "bet_type": bet.bet_type,
                        "combination": bet.combination,
                        "amount": bet.amount,
                    }
                    for bet in ticket.bets
                ],
            },
        )

    logger.info(
        "Ticket %s sold by account %s on draw %s: %s bet(s), total %s",
        number,
        account_id,
        draw_id,
        len(bet_lines),
        total,
    )
    return ticket


def get_ticket(session: Session, ticket_number: str) -> Ticket:
    """Look up a ticket by number, validating the number first."""
    number = validate_ticket_number(ticket_number)
    ticket = Ticket.get_by_number(session, number)
    if ticket is None:
        raise TicketNotFound(f"Ticket {number} not found.")
    return ticket


def list_tickets(
    session: Session,
    *,
    account_id: Optional[int] = None,
    draw_id: Optional[int] = None,
    status: Optional[TicketStatus] = None,
    limit: Optional[int] = None,
) -> list[Ticket]:
    stmt = select(Ticket)
    if account_id is not None:
        stmt = stmt.where(Ticket.account_id == account_id)
    if draw_id is not None:
        stmt = stmt.where(Ticket.draw_id == draw_id)
    if status is not None:
        stmt = stmt.where(Ticket.status == TicketStatus(status))
    stmt = stmt.order_by(Ticket.id.desc())
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(session.scalars(stmt).all())


def void_ticket(
    session: Session,
    ticket_number: str,
    actor: Optional[Actor],
    reason: str,
    *,
    now: Optional[datetime] = None,
) -> Ticket:
    """Cancel an active ticket before its draw's cutoff.

    Exposure is released and the sale is refunded to the selling agent in
    the same unit of work.

    Raises
    ------
    TicketNotActive
        If the ticket was already voided, won or claimed.
    DrawNotOpen
        If betting on the draw has closed.
    """
    require_capability(actor, TICKET_VOID)
    if not reason or not reason.strip():
        raise ValueError("A reason is required to void a ticket")
    ticket = get_ticket(session, ticket_number)
    now = now or datetime.now(timezone.utc)

    with session.begin_nested():
        draw = session.get(Draw, ticket.draw_id, populate_existing=True)
        if draw is None or draw.status != DrawStatus.OPEN or now >= draw.cutoff_at:
            raise DrawNotOpen("Tickets can only be voided while their draw is open.")

        result = session.execute(
            update(Ticket)
            .where(Ticket.id == ticket.id, Ticket.status == TicketStatus.ACTIVE)
            .values(status=TicketStatus.VOIDED, voided_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        session.refresh(ticket)
        if result.rowcount == 0:
            raise TicketNotActive(
                f"Ticket {ticket.ticket_number} is {ticket.status.value} and cannot be voided."
            )

        for bet in ticket.bets:
            admission.release(
                session, ticket.draw_id, bet.bet_type, bet.amount, bet.combination
            )
        ledger.refund_sale(
            session,
            ticket.account_id,
            ticket.total_amount,
            ticket.ticket_number,
            actor,
            reason=reason,
        )
        audit.record(
            session,
            ticket.id,
            AuditAction.TICKET_VOIDED,
            actor,
            notes=reason,
            details={"refund": ticket.total_amount, "draw_id": ticket.draw_id},
        )

    logger.info(
        "Ticket %s voided by account %s: %s",
        ticket.ticket_number,
        actor.account_id if actor else None,
        reason,
    )
    return ticket


__all__ = [
    "BetLine",
    "place_ticket",
    "get_ticket",
    "list_tickets",
    "void_ticket",
]

"""Operations exposed to the UI and API layers.

Every function takes an active :class:`~sqlalchemy.orm.Session` and joins
the caller's transaction; nothing here commits. Wrap calls in
``with Session.begin():`` or use :func:`run_in_transaction`.
"""

import logging
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional, Sequence, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker

from . import admission, claims, ledger, tickets
from .admission import BetLimitStatus
from .auth import (
    BALANCE_DEDUCT,
    BALANCE_LOAD,
    Actor,
    require_capability,
    require_manages,
)
from .config import DEFAULT_SETTINGS, Settings
from .draws.engine import SettlementSummary
from .draws.lifecycle import ensure_draws_exist, submit_result, update_draw_statuses
from .errors import AccountNotFound, TransientStorageError
from .models.account import Account
from .models.claim import ClaimRequest
from .models.draw import Draw
from .models.enums import ClaimDecision
from .models.ticket import Ticket
from .notifications import NotificationSink, dispatch_after_commit, dispatch_winners
from .tickets import BetLine

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_in_transaction(
    session_factory: sessionmaker, fn: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run ``fn(session, *args, **kwargs)`` in its own committed transaction.

    Domain errors propagate unchanged after the rollback. Storage failures
    are re-raised as :class:`TransientStorageError` so the caller can decide
    whether to resubmit.
    """
    try:
        with session_factory.begin() as session:
            return fn(session, *args, **kwargs)
    except DBAPIError as exc:
        logger.exception("Storage failure in %s", getattr(fn, "__name__", fn))
        raise TransientStorageError() from exc


def place_bet(
    session: Session,
    account_id: int,
    draw_id: int,
    bet_type: Any,
    combination: str,
    amount: Any,
    *,
    ticket_number: Optional[str] = None,
    actor: Optional[Actor] = None,
    now: Optional[datetime] = None,
    settings: Settings = DEFAULT_SETTINGS,
) -> Ticket:
    """Sell a single-bet ticket."""
    return tickets.place_ticket(
        session,
        account_id,
        draw_id,
        [BetLine(bet_type=bet_type, combination=combination, amount=amount)],
        actor=actor,
        ticket_number=ticket_number,
        now=now,
        settings=settings,
    )


def place_ticket(
    session: Session,
    account_id: int,
    draw_id: int,
    lines: Sequence[Any],
    *,
    ticket_number: Optional[str] = None,
    actor: Optional[Actor] = None,
    now: Optional[datetime] = None,
    settings: Settings = DEFAULT_SETTINGS,
) -> Ticket:
    """Sell a ticket carrying several bet lines; all are admitted or none."""
    return tickets.place_ticket(
        session,
        account_id,
        draw_id,
        lines,
        actor=actor,
        ticket_number=ticket_number,
        now=now,
        settings=settings,
    )


def void_ticket(
    session: Session,
    ticket_number: str,
    actor: Optional[Actor],
    reason: str,
    *,
    now: Optional[datetime] = None,
) -> Ticket:
    return tickets.void_ticket(session, ticket_number, actor, reason, now=now)


def input_draw_result(
    session: Session,
    draw_id: int,
    result: str,
    actor: Optional[Actor],
    *,
    notifier: Optional[NotificationSink] = None,
) -> SettlementSummary:
    """Record a draw's winning number and compute its winners.

    The caller owns the transaction. When ``notifier`` is given the winners
    are handed to it after that transaction commits, and never if it rolls
    back. :func:`settle_draw` runs the whole unit in its own transaction.
    """
    summary = submit_result(session, draw_id, result, actor)
    dispatch_after_commit(session, notifier, draw_id, summary.winners)
    return summary


def settle_draw(
    session_factory: sessionmaker,
    draw_id: int,
    result: str,
    actor: Optional[Actor],
    *,
    notifier: Optional[NotificationSink] = None,
) -> SettlementSummary:
    """Settle a draw in its own transaction, then notify the winners."""
    summary = run_in_transaction(
        session_factory, submit_result, draw_id, result, actor
    )
    dispatch_winners(notifier, draw_id, summary.winners)
    return summary


def request_claim(
    session: Session,
    ticket_number: str,
    claimer: Any,
    *,
    actor: Optional[Actor] = None,
    notes: Optional[str] = None,
) -> ClaimRequest:
    return claims.request_claim(session, ticket_number, claimer, actor=actor, notes=notes)


def resolve_claim(
    session: Session,
    claim_id: int,
    decision: ClaimDecision | str,
    actor: Optional[Actor],
    notes: Optional[str] = None,
    *,
    override_prize_amount: Any = None,
    reason: Optional[str] = None,
) -> ClaimRequest:
    return claims.resolve(
        session,
        claim_id,
        decision,
        actor,
        notes,
        override_prize_amount=override_prize_amount,
        reason=reason,
    )


def _managed_account(session: Session, actor: Actor, account_id: int) -> Account:
    target = session.get(Account, account_id)
    if target is None:
        raise AccountNotFound(f"Account {account_id} not found.")
    require_manages(session, actor, target)
    return target


def load_balance(
    session: Session,
    account_id: int,
    amount: Any,
    actor: Actor,
    note: Optional[str] = None,
) -> Account:
    """Credit a subordinate's balance.

    Admins load from the house. Coordinators and area coordinators transfer
    out of their own balance, so they cannot load more than they hold.
    """
    require_capability(actor, BALANCE_LOAD)
    _managed_account(session, actor, account_id)
    if actor.is_admin or actor.account_id is None:
        ledger.load(session, account_id, amount, actor, note)
    else:
        ledger.transfer(session, actor.account_id, account_id, amount, actor, note)
    return session.get(Account, account_id, populate_existing=True)


def deduct_balance(
    session: Session,
    account_id: int,
    amount: Any,
    actor: Actor,
    note: Optional[str] = None,
    *,
    allow_overdraft: bool = False,
) -> Account:
    require_capability(actor, BALANCE_DEDUCT)
    _managed_account(session, actor, account_id)
    ledger.deduct(session, account_id, amount, actor, note, allow_overdraft=allow_overdraft)
    return session.get(Account, account_id, populate_existing=True)


def get_bet_limit_status(session: Session, draw_id: int) -> list[BetLimitStatus]:
    return admission.get_bet_limit_status(session, draw_id)


def scheduler_tick(
    session: Session,
    now: Optional[datetime] = None,
    *,
    settings: Settings = DEFAULT_SETTINGS,
    start_date: Optional[date] = None,
) -> list[Draw]:
    """Keep the rolling schedule filled and advance draw statuses.

    Returns the draws whose status changed.
    """
    now = now or datetime.now(timezone.utc)
    start = start_date or now.astimezone(settings.tz).date()
    ensure_draws_exist(session, start, settings.schedule_days, settings=settings)
    return update_draw_statuses(session, now)


__all__ = [
    "run_in_transaction",
    "place_bet",
    "place_ticket",
    "void_ticket",
    "input_draw_result",
    "settle_draw",
    "request_claim",
    "resolve_claim",
    "load_balance",
    "deduct_balance",
    "get_bet_limit_status",
    "scheduler_tick",
]

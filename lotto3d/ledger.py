"""Append-only balance ledger for the agent hierarchy.

Every mutation is one conditional ``UPDATE accounts`` that adds a signed
delta to ``current_balance`` (and, for debits, only matches while the
balance covers the amount) followed by the insert of one
:class:`~lotto3d.models.account.BalanceTransaction` in the same
transaction. The update takes the account row's write lock, so concurrent
mutations of one account serialize and no update can be lost. The lock is
still held while the entry's hash is chained onto the previous one.

The functions never commit; the caller owns the unit of work.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional

from sqlalchemy import literal, select, update
from sqlalchemy.orm import Session

from .auth import BALANCE_OVERDRAFT, Actor, require_capability
from .db.utils import dt_iso
from .errors import AccountNotFound, InsufficientBalance
from .models.account import Account, BalanceTransaction
from .models.enums import TransactionKind
from .models.types import Money, as_money, utcnow

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class LedgerVerification:
    """Outcome of re-deriving an account's balance from its ledger.

    Attributes
    ----------
    account_id : int
        Account that was checked.
    current_balance : Decimal
        Balance cached on the account row.
    ledger_total : Decimal
        Sum of every transaction amount for the account.
    entries : int
        Number of transactions inspected.
    first_broken_id : Optional[int]
        Id of the first entry whose hash link does not verify, if any.
    """

    account_id: int
    current_balance: Decimal
    ledger_total: Decimal
    entries: int
    first_broken_id: Optional[int]

    @property
    def balanced(self) -> bool:
        return self.current_balance == self.ledger_total

    @property
    def chain_intact(self) -> bool:
        return self.first_broken_id is None

    @property
    def ok(self) -> bool:
        return self.balanced and self.chain_intact


def compute_entry_hash(
    *,
    prev_hash: Optional[str],
    account_id: int,
    kind: TransactionKind,
    amount: Decimal,
    balance_after: Decimal,
    reference: Optional[str],
    created_at: datetime,
) -> str:
    """Return the SHA-256 hex digest linking an entry to its predecessor."""
    payload = "|".join(
        [
            prev_hash or "",
            str(account_id),
            kind.value,
            str(as_money(amount)),
            str(as_money(balance_after)),
            reference or "",
            dt_iso(created_at) or "",
        ]
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _positive_amount(amount: Any) -> Decimal:
    value = as_money(amount)
    if value <= ZERO:
        raise ValueError("amount must be greater than zero")
    return value


def _apply(
    session: Session,
    account_id: int,
    delta: Decimal,
    kind: TransactionKind,
    *,
    processed_by_id: Optional[int],
    reference: Optional[str] = None,
    note: Optional[str] = None,
    allow_negative: bool = False,
) -> BalanceTransaction:
    """Atomically apply ``delta`` and append the matching ledger entry."""

    stmt = update(Account).where(Account.id == account_id)
    if delta < ZERO and not allow_negative:
        # The guard and the write are one statement: no check-then-act window.
        stmt = stmt.where(Account.current_balance >= literal(-delta, Money()))
    stmt = stmt.values(
        current_balance=Account.current_balance + literal(delta, Money()),
        updated_at=utcnow(),
    ).execution_options(synchronize_session=False)

    result = session.execute(stmt)
    if result.rowcount == 0:
        if session.scalar(select(Account.id).where(Account.id == account_id)) is None:
            raise AccountNotFound(f"Account {account_id} not found.")
        available = get_balance(session, account_id)
        logger.info(
            "Rejected %s of %s on account %s: insufficient balance",
            kind.value,
            -delta,
            account_id,
        )
        raise InsufficientBalance(
            f"Insufficient balance. Required: {-delta}, available: {available}."
        )

    account = session.get(Account, account_id, populate_existing=True)
    assert account is not None
    balance_after = account.current_balance

    prev_hash = session.scalar(
        select(BalanceTransaction.entry_hash)
        .where(BalanceTransaction.account_id == account_id)
        .order_by(BalanceTransaction.id.desc())
        .limit(1)
    )
    created_at = utcnow()
    entry = BalanceTransaction(
        account_id=account_id,
        amount=delta,
        kind=kind,
        balance_after=balance_after,
        processed_by_id=processed_by_id,
        reference=reference,
        note=note,
        prev_hash=prev_hash,
        entry_hash=compute_entry_hash(
            prev_hash=prev_hash,
            account_id=account_id,
            kind=kind,
            amount=delta,
            balance_after=balance_after,
            reference=reference,
            created_at=created_at,
        ),
        created_at=created_at,
    )
    session.add(entry)
    session.flush()

    logger.info(
        "Ledger %s on account %s: amount=%s balance_after=%s ref=%s",
        kind.value,
        account_id,
        delta,
        balance_after,
        reference,
    )
    return entry


def _actor_id(actor: Optional[Actor]) -> Optional[int]:
    return actor.account_id if actor is not None else None


def load(
    session: Session,
    account_id: int,
    amount: Any,
    actor: Optional[Actor],
    note: Optional[str] = None,
) -> BalanceTransaction:
    """Credit ``amount`` to an account."""
    return _apply(
        session,
        account_id,
        _positive_amount(amount),
        TransactionKind.LOAD,
        processed_by_id=_actor_id(actor),
        note=note,
    )


def deduct(
    session: Session,
    account_id: int,
    amount: Any,
    actor: Optional[Actor],
    note: Optional[str] = None,
    *,
    allow_overdraft: bool = False,
) -> BalanceTransaction:
    """Debit ``amount`` from an account.

    Parameters
    ----------
    allow_overdraft : bool, default: False
        Administrative correction that may drive the balance negative. Only
        honoured for actors holding the ``balance.overdraft`` capability.

    Raises
    ------
    InsufficientBalance
        If the balance does not cover ``amount`` and no overdraft was
        authorized.
    PermissionDenied
        If an overdraft is requested by an actor who may not authorize one.
    """
    if allow_overdraft:
        require_capability(actor, BALANCE_OVERDRAFT)
    return _apply(
        session,
        account_id,
        -_positive_amount(amount),
        TransactionKind.DEDUCT,
        processed_by_id=_actor_id(actor),
        note=note,
        allow_negative=allow_overdraft,
    )


def payout(
    session: Session,
    account_id: int,
    amount: Any,
    ticket_ref: str,
    actor: Optional[Actor] = None,
    note: Optional[str] = None,
) -> BalanceTransaction:
    """Credit a prize to the account that sold ticket ``ticket_ref``."""
    return _apply(
        session,
        account_id,
        _positive_amount(amount),
        TransactionKind.PAYOUT,
        processed_by_id=_actor_id(actor),
        reference=ticket_ref,
        note=note,
    )


def charge_sale(
    session: Session,
    account_id: int,
    amount: Any,
    ticket_ref: str,
    actor: Optional[Actor] = None,
) -> BalanceTransaction:
    """Debit the selling agent for a ticket; never overdraws."""
    return _apply(
        session,
        account_id,
        -_positive_amount(amount),
        TransactionKind.SALE,
        processed_by_id=_actor_id(actor),
        reference=ticket_ref,
        note=f"Ticket purchase: {ticket_ref}",
    )


def refund_sale(
    session: Session,
    account_id: int,
    amount: Any,
    ticket_ref: str,
    actor: Optional[Actor] = None,
    reason: Optional[str] = None,
) -> BalanceTransaction:
    """Return a voided ticket's price to the selling agent."""
    note = f"Ticket refund: {ticket_ref}"
    if reason:
        note = f"{note} - {reason}"
    return _apply(
        session,
        account_id,
        _positive_amount(amount),
        TransactionKind.REFUND,
        processed_by_id=_actor_id(actor),
        reference=ticket_ref,
        note=note,
    )


def credit_commission(
    session: Session,
    account_id: int,
    amount: Any,
    reference: Optional[str] = None,
    actor: Optional[Actor] = None,
    note: Optional[str] = None,
) -> BalanceTransaction:
    return _apply(
        session,
        account_id,
        _positive_amount(amount),
        TransactionKind.COMMISSION,
        processed_by_id=_actor_id(actor),
        reference=reference,
        note=note,
    )


def transfer(
    session: Session,
    source_id: int,
    target_id: int,
    amount: Any,
    actor: Optional[Actor],
    note: Optional[str] = None,
) -> tuple[BalanceTransaction, BalanceTransaction]:
    """Move ``amount`` from ``source_id`` to ``target_id``.

    Used when a coordinator loads a subordinate out of their own balance.
    Both legs run inside a SAVEPOINT, so a failed debit leaves no credit
    behind. Rows are locked in id order to keep two opposite transfers from
    deadlocking.

    Returns
    -------
    tuple[BalanceTransaction, BalanceTransaction]
        The debit and credit entries, in that order.
    """
    if source_id == target_id:
        raise ValueError("cannot transfer to the same account")
    value = _positive_amount(amount)
    debit_ref = f"transfer:{target_id}"
    credit_ref = f"transfer:{source_id}"

    with session.begin_nested():
        if source_id < target_id:
            debit = _apply(
                session, source_id, -value, TransactionKind.DEDUCT,
                processed_by_id=_actor_id(actor), reference=debit_ref, note=note,
            )
            credit = _apply(
                session, target_id, value, TransactionKind.LOAD,
                processed_by_id=_actor_id(actor), reference=credit_ref, note=note,
            )
        else:
            credit = _apply(
                session, target_id, value, TransactionKind.LOAD,
                processed_by_id=_actor_id(actor), reference=credit_ref, note=note,
            )
            debit = _apply(
                session, source_id, -value, TransactionKind.DEDUCT,
                processed_by_id=_actor_id(actor), reference=debit_ref, note=note,
            )
    return debit, credit


def get_balance(session: Session, account_id: int) -> Decimal:
    """Return the committed balance of ``account_id``."""
    balance = session.scalar(
        select(Account.current_balance).where(Account.id == account_id)
    )
    if balance is None:
        raise AccountNotFound(f"Account {account_id} not found.")
    return balance


def list_transactions(
    session: Session,
    account_id: int,
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    kinds: Optional[Iterable[TransactionKind]] = None,
    limit: Optional[int] = None,
    offset: int = 0,
    newest_first: bool = False,
) -> list[BalanceTransaction]:
    """Return ledger entries for an account, optionally within ``[start, end)``."""
    if session.get(Account, account_id) is None:
        raise AccountNotFound(f"Account {account_id} not found.")
    if limit is not None and limit <= 0:
        raise ValueError("limit must be a positive integer")

    stmt = select(BalanceTransaction).where(BalanceTransaction.account_id == account_id)
    if start is not None:
        stmt = stmt.where(BalanceTransaction.created_at >= start)
    if end is not None:
        stmt = stmt.where(BalanceTransaction.created_at < end)
    if kinds is not None:
        stmt = stmt.where(BalanceTransaction.kind.in_(list(kinds)))
    order = BalanceTransaction.id.desc() if newest_first else BalanceTransaction.id.asc()
    stmt = stmt.order_by(order).offset(offset)
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(session.scalars(stmt).all())


def verify_ledger(session: Session, account_id: int) -> LedgerVerification:
    """Recompute the balance and hash chain of ``account_id`` from scratch."""
    balance = get_balance(session, account_id)
    entries = session.scalars(
        select(BalanceTransaction)
        .where(BalanceTransaction.account_id == account_id)
        .order_by(BalanceTransaction.id.asc())
        .execution_options(populate_existing=True)
    ).all()

    total = ZERO
    prev_hash: Optional[str] = None
    first_broken: Optional[int] = None
    for entry in entries:
        total += entry.amount
        expected = compute_entry_hash(
            prev_hash=prev_hash,
            account_id=entry.account_id,
            kind=entry.kind,
            amount=entry.amount,
            balance_after=entry.balance_after,
            reference=entry.reference,
            created_at=entry.created_at,
        )
        if first_broken is None and (
            entry.prev_hash != prev_hash
            or entry.entry_hash != expected
            or entry.balance_after != total
        ):
            first_broken = entry.id
        prev_hash = entry.entry_hash

    if first_broken is not None or balance != total:
        logger.critical(
            "Ledger verification failed for account %s: balance=%s ledger_total=%s first_broken_id=%s",
            account_id,
            balance,
            total,
            first_broken,
        )
    return LedgerVerification(
        account_id=account_id,
        current_balance=balance,
        ledger_total=total,
        entries=len(entries),
        first_broken_id=first_broken,
    )


__all__ = [
    "LedgerVerification",
    "compute_entry_hash",
    "load",
    "deduct",
    "payout",
    "charge_sale",
    "refund_sale",
    "credit_commission",
    "transfer",
    "get_balance",
    "list_transactions",
    "verify_ledger",
]

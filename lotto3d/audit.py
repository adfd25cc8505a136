"""Append-only audit trail for ticket, draw and claim decisions.

Entries are written into the caller's transaction, so an audit row exists
if and only if the decision it records was committed.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from .auth import Actor
from .db.utils import dt_iso
from .models.claim import ClaimAuditEntry
from .models.enums import AuditAction

logger = logging.getLogger(__name__)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return dt_iso(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def record(
    session: Session,
    ticket_id: Optional[int],
    action: Union[AuditAction, str],
    actor: Optional[Actor],
    notes: Optional[str] = None,
    details: Optional[Mapping[str, Any]] = None,
    claim_id: Optional[int] = None,
    draw_id: Optional[int] = None,
) -> ClaimAuditEntry:
    """Append one audit entry.

    Parameters
    ----------
    ticket_id : Optional[int]
        Ticket the decision concerns. Either this or ``draw_id`` is required.
    action : AuditAction or str
        What happened.
    actor : Optional[Actor]
        Who did it; ``None`` or a system actor for unattended jobs.
    details : Optional[Mapping[str, Any]]
        Extra structured data. Decimals, datetimes and enums are stored as
        strings.

    Returns
    -------
    ClaimAuditEntry
        The flushed entry.
    """
    if ticket_id is None and draw_id is None:
        raise ValueError("An audit entry needs a ticket_id or a draw_id")
    entry = ClaimAuditEntry(
        ticket_id=ticket_id,
        claim_id=claim_id,
        draw_id=draw_id,
        action=AuditAction(action),
        performed_by_id=actor.account_id if actor else None,
        notes=notes,
        details=_jsonable(details) if details is not None else None,
    )
    session.add(entry)
    session.flush()
    logger.debug(
        "Audit %s ticket=%s claim=%s draw=%s by=%s",
        entry.action.value,
        ticket_id,
        claim_id,
        draw_id,
        entry.performed_by_id,
    )
    return entry


def history(
    session: Session,
    ticket_id: Optional[int] = None,
    action: Optional[Union[AuditAction, str]] = None,
    limit: Optional[int] = None,
    *,
    claim_id: Optional[int] = None,
    draw_id: Optional[int] = None,
) -> list[ClaimAuditEntry]:
    """Return audit entries in the order they were written."""
    stmt = select(ClaimAuditEntry)
    if ticket_id is not None:
        stmt = stmt.where(ClaimAuditEntry.ticket_id == ticket_id)
    if claim_id is not None:
        stmt = stmt.where(ClaimAuditEntry.claim_id == claim_id)
    if draw_id is not None:
        stmt = stmt.where(ClaimAuditEntry.draw_id == draw_id)
    if action is not None:
        stmt = stmt.where(ClaimAuditEntry.action == AuditAction(action))
    stmt = stmt.order_by(ClaimAuditEntry.id.asc())
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(session.scalars(stmt).all())


__all__ = ["record", "history"]

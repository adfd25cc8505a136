"""Delivery of winner notices to an outside channel.

Settlement never depends on delivery: a failing sink is logged and the
settled draw stays committed. Notices are only sent for settlements that
have been committed.
"""

import logging
import os
from typing import Any, Mapping, Optional, Protocol, Sequence

import requests
from dotenv import load_dotenv
from sqlalchemy import event
from sqlalchemy.orm import Session, SessionTransaction

from .db.utils import dt_iso
from .draws.engine import WinnerNotice
from .models.types import utcnow

logger = logging.getLogger(__name__)

_PENDING_KEY = "lotto3d.pending_winner_notices"


class NotificationSink(Protocol):
    def notify_winners(self, draw_id: int, winners: Sequence[WinnerNotice]) -> None:
        ...


class LoggingNotifier:
    """Sink that only writes the notices to the log."""

    def notify_winners(self, draw_id: int, winners: Sequence[WinnerNotice]) -> None:
        for notice in winners:
            logger.info(
                "Draw %s winner: ticket %s (account %s) prize %s",
                draw_id,
                notice.ticket_number,
                notice.account_id,
                notice.prize_amount,
            )


class WebhookNotifier:
    """POST winner notices as JSON to an HTTP endpoint."""

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[int] = None,
        session: Optional[requests.Session] = None,
    ):
        load_dotenv()
        target = url or os.getenv("LOTTO3D_NOTIFY_URL")
        if not target:
            raise ValueError("Environment variable 'LOTTO3D_NOTIFY_URL' is not set")
        self.url = target
        self.timeout = timeout or int(os.getenv("LOTTO3D_NOTIFY_TIMEOUT", "10"))
        self.session = session or requests.Session()

    @property
    def headers(self) -> Mapping[str, str]:
        return {"Accept": "application/json", "Content-Type": "application/json"}

    @staticmethod
    def build_payload(draw_id: int, winners: Sequence[WinnerNotice]) -> dict[str, Any]:
        return {
            "event": "draw.settled",
            "draw_id": draw_id,
            "sent_at": dt_iso(utcnow()),
            "winners": [
                {
                    "account_id": notice.account_id,
                    "ticket_id": notice.ticket_id,
                    "ticket_number": notice.ticket_number,
                    "prize_amount": str(notice.prize_amount),
                }
                for notice in winners
            ],
        }

    def notify_winners(self, draw_id: int, winners: Sequence[WinnerNotice]) -> None:
        if not winners:
            logger.debug("Draw %s has no winners; nothing to send", draw_id)
            return
        r = self.session.post(
            self.url,
            headers=self.headers,
            json=self.build_payload(draw_id, winners),
            timeout=self.timeout,
        )
        r.raise_for_status()
        logger.info("Sent %s winner notice(s) for draw %s", len(winners), draw_id)


def dispatch_winners(
    sink: Optional[NotificationSink], draw_id: int, winners: Sequence[WinnerNotice]
) -> bool:
    """Hand ``winners`` to ``sink``; return whether delivery succeeded."""
    if sink is None:
        return True
    try:
        sink.notify_winners(draw_id, winners)
    except Exception as e:
        logger.critical(f"Winner notification for draw {draw_id} failed: {e}")
        return False
    return True


def dispatch_after_commit(
    session: Session,
    sink: Optional[NotificationSink],
    draw_id: int,
    winners: Sequence[WinnerNotice],
) -> None:
    """Hold ``winners`` for ``sink`` until ``session`` commits.

    The notices are sent once the outermost transaction commits. They are
    dropped if that transaction, or the savepoint they were queued in,
    rolls back.
    """
    if sink is None:
        return
    owner = session.get_nested_transaction() or session.get_transaction()
    session.info.setdefault(_PENDING_KEY, []).append((owner, sink, draw_id, list(winners)))


def _within(transaction: Optional[SessionTransaction], ancestor: SessionTransaction) -> bool:
    while transaction is not None:
        if transaction is ancestor:
            return True
        transaction = transaction.parent
    return False


@event.listens_for(Session, "after_commit")
def _send_pending_notices(session: Session) -> None:
    if session.in_nested_transaction():
        return
    for _owner, sink, draw_id, winners in session.info.pop(_PENDING_KEY, []):
        dispatch_winners(sink, draw_id, winners)


@event.listens_for(Session, "after_soft_rollback")
def _drop_rolled_back_notices(
    session: Session, previous_transaction: SessionTransaction
) -> None:
    pending = session.info.get(_PENDING_KEY)
    if pending:
        session.info[_PENDING_KEY] = [
            entry for entry in pending if not _within(entry[0], previous_transaction)
        ]


@event.listens_for(Session, "after_transaction_end")
def _discard_pending_notices(session: Session, transaction: SessionTransaction) -> None:
    if transaction.parent is None:
        session.info.pop(_PENDING_KEY, None)


__all__ = [
    "NotificationSink",
    "LoggingNotifier",
    "WebhookNotifier",
    "dispatch_winners",
    "dispatch_after_commit",
]

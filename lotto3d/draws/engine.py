"""Settlement engine computing the winners of a draw."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from ..models.draw import Draw
from ..models.enums import DrawStatus, TicketStatus
from ..models.ticket import Bet, Ticket
from ..models.types import utcnow
from ..models.utils import is_three_digits
from .matching import DEFAULT_MATCH_REGISTRY, MatchRuleRegistry, PrizeTable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WinnerNotice:
    """Aggregate win of one ticket, handed to the notification sink."""

    account_id: int
    ticket_id: int
    ticket_number: str
    prize_amount: Decimal


@dataclass
class SettlementSummary:
    """Value object describing one settlement run.

    Attributes
    ----------
    draw_id : int
        Draw that was settled.
    result : str
        Winning 3-digit number.
    bets_evaluated : int
        Bets evaluated by this run. Bets already evaluated are not counted.
    winning_bets : int
        Bets that won.
    total_payout : Decimal
        Sum of prize amounts over all winning bets.
    winners : list[WinnerNotice]
        One notice per winning ticket.
    """

    draw_id: int
    result: str
    bets_evaluated: int = 0
    winning_bets: int = 0
    total_payout: Decimal = Decimal("0.00")
    winners: list[WinnerNotice] = field(default_factory=list)

    @property
    def winning_tickets(self) -> int:
        return len(self.winners)


class WinnerComputationEngine:
    """Engine that evaluates a draw's bets and records their outcome."""

    def __init__(
        self,
        session: Session,
        *,
        registry: Optional[MatchRuleRegistry] = None,
        prize_table: Optional[PrizeTable] = None,
    ) -> None:
        """Create an engine bound to a SQLAlchemy session.

        Parameters
        ----------
        session : Session
            Active session; settlement writes join the caller's transaction.
        registry : Optional[MatchRuleRegistry], default: None
            Match rules keyed by bet type. The default registry is used when
            omitted.
        prize_table : Optional[PrizeTable], default: None
            Multipliers to apply. When omitted the defaults plus the stored
            ``PrizeConfiguration`` overrides are loaded at settlement time.
        """
        self._session = session
        self._registry = registry or DEFAULT_MATCH_REGISTRY
        self._prize_table = prize_table

    def settle(self, draw: Draw, result: str) -> SettlementSummary:
        """Evaluate every unevaluated bet of ``draw`` against ``result``.

        The draw must already have been moved to ``settled`` by the caller's
        compare-and-set, which guarantees this runs once per draw. Bets are
        still filtered on ``evaluated_at IS NULL`` so an outcome is never
        written twice.

        Returns
        -------
        SettlementSummary
            Counts, payout total and one :class:`WinnerNotice` per winning
            ticket.

        Raises
        ------
        ValueError
            If the draw is not persisted and settled or ``result`` is malformed.
        """
        if draw.id is None:
            raise ValueError("Draw must be persisted before settlement")
        if draw.status != DrawStatus.SETTLED or draw.result != result:
            raise ValueError("Draw must be settled with this result before evaluation")
        if not is_three_digits(result):
            raise ValueError("draw result must be exactly 3 digits")

        prize_table = self._prize_table or PrizeTable.from_session(self._session)
        bets = self._session.scalars(
            select(Bet)
            .join(Ticket, Bet.ticket_id == Ticket.id)
            .where(
                Ticket.draw_id == draw.id,
                Ticket.status != TicketStatus.VOIDED,
                Bet.evaluated_at.is_(None),
            )
            .options(selectinload(Bet.ticket))
            .order_by(Bet.id)
        ).all()

        summary = SettlementSummary(draw_id=draw.id, result=result)
        now = utcnow()
        prizes: dict[int, Decimal] = {}
        tickets: dict[int, Ticket] = {}
        for bet in bets:
            outcome = self._registry.evaluate(bet.bet_type, bet.combination, result)
            bet.evaluated_at = now
            summary.bets_evaluated += 1
            if not outcome.matched:
                bet.is_winner = False
                continue
            prize = prize_table.prize(bet.bet_type, outcome.variant, bet.amount)
            bet.is_winner = True
            bet.win_amount = prize
            summary.winning_bets += 1
            summary.total_payout += prize
            prizes[bet.ticket_id] = prizes.get(bet.ticket_id, Decimal("0.00")) + prize
            tickets[bet.ticket_id] = bet.ticket

        for ticket_id, prize in prizes.items():
            ticket = tickets[ticket_id]
            if ticket.status == TicketStatus.ACTIVE:
                ticket.status = TicketStatus.WON
            summary.winners.append(
                WinnerNotice(
                    account_id=ticket.account_id,
                    ticket_id=ticket.id,
                    ticket_number=ticket.ticket_number,
                    prize_amount=prize,
                )
            )

        self._session.flush()
        logger.info(
            "Settled draw %s with result %s: %s bets evaluated, %s winning tickets, payout %s",
            draw.id,
            result,
            summary.bets_evaluated,
            summary.winning_tickets,
            summary.total_payout,
        )
        return summary


__all__ = ["WinnerComputationEngine", "SettlementSummary", "WinnerNotice"]

"""Typed failures returned to callers of the lottery core.

Every domain error carries a stable ``code`` and a ``message`` that is safe
to show to an operator. None of them are retried automatically: a monetary
operation is either committed whole or not at all, so callers decide whether
to resubmit.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional


class LotteryError(Exception):
    """Base class for expected, recoverable failures."""

    code = "lottery_error"
    default_message = "The operation could not be completed."

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, str]:
        """Return the kind and safe description for the UI layer."""
        return {"error": self.code, "message": self.message}


class BetLimitExceeded(LotteryError):
    code = "bet_limit_exceeded"
    default_message = "The bet would exceed the exposure limit for this draw."

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        draw_id: Optional[int] = None,
        bet_type: Optional[str] = None,
        combination: Optional[str] = None,
        max_amount: Optional[Decimal] = None,
        current_total: Optional[Decimal] = None,
    ) -> None:
        self.draw_id = draw_id
        self.bet_type = bet_type
        self.combination = combination
        self.max_amount = max_amount
        self.current_total = current_total
        super().__init__(message)


class DrawNotFound(LotteryError):
    code = "draw_not_found"
    default_message = "Draw not found."


class DrawNotOpen(LotteryError):
    code = "draw_not_open"
    default_message = "Draw is not open for betting."


class DrawNotClosed(LotteryError):
    code = "draw_not_closed"
    default_message = "Draw must be closed before a result can be input."


class ResultAlreadySet(LotteryError):
    code = "result_already_set"
    default_message = "A result has already been recorded for this draw."


class InvalidDrawResult(LotteryError):
    code = "invalid_draw_result"
    default_message = "Winning number must be exactly 3 digits."


class InvalidDrawTransition(LotteryError):
    code = "invalid_draw_transition"
    default_message = "Draw status cannot move to the requested state."


class InvalidTicketNumber(LotteryError):
    code = "invalid_ticket_number"
    default_message = "Ticket number must be exactly 17 digits."


class InvalidBet(LotteryError):
    code = "invalid_bet"
    default_message = "The bet is not valid."


class TicketNotFound(LotteryError):
    code = "ticket_not_found"
    default_message = "Ticket not found."


class TicketNotActive(LotteryError):
    code = "ticket_not_active"
    default_message = "Only active tickets can be voided."


class NotWinningTicket(LotteryError):
    code = "not_winning_ticket"
    default_message = "This ticket is not a winning ticket."


class TicketAlreadyClaimed(LotteryError):
    code = "ticket_already_claimed"
    default_message = "This ticket has already been claimed."


class ClaimNotFound(LotteryError):
    code = "claim_not_found"
    default_message = "Claim request not found."


class ClaimAlreadyResolved(LotteryError):
    code = "claim_already_resolved"
    default_message = "This claim has already been resolved."


class InsufficientBalance(LotteryError):
    code = "insufficient_balance"
    default_message = "Insufficient balance to perform this transaction."


class AccountNotFound(LotteryError):
    code = "account_not_found"
    default_message = "Account not found."


class PermissionDenied(LotteryError):
    code = "permission_denied"
    default_message = "Insufficient permissions."


class ImmutableRecordError(LotteryError):
    code = "immutable_record"
    default_message = "Ledger and audit records cannot be modified."


class TransientStorageError(LotteryError):
    """Storage failed mid-transaction; nothing was committed."""

    code = "transient_storage_error"
    default_message = "Temporary storage failure. The operation may be retried."


__all__ = [
    "LotteryError",
    "BetLimitExceeded",
    "DrawNotFound",
    "DrawNotOpen",
    "DrawNotClosed",
    "ResultAlreadySet",
    "InvalidDrawResult",
    "InvalidDrawTransition",
    "InvalidTicketNumber",
    "InvalidBet",
    "TicketNotFound",
    "TicketNotActive",
    "NotWinningTicket",
    "TicketAlreadyClaimed",
    "ClaimNotFound",
    "ClaimAlreadyResolved",
    "InsufficientBalance",
    "AccountNotFound",
    "PermissionDenied",
    "ImmutableRecordError",
    "TransientStorageError",
]

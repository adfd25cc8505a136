"""Utility helpers for the models package."""

from __future__ import annotations

import re
import secrets
import time
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..errors import InvalidTicketNumber

TICKET_NUMBER_LENGTH = 17
_TICKET_NUMBER_RE = re.compile(r"^\d{17}$")
_COMBINATION_RE = re.compile(r"^\d{3}$")


def validate_ticket_number(value: object) -> str:
    """Return ``value`` stripped if it is exactly 17 ASCII digits.

    Raises
    ------
    InvalidTicketNumber
        For anything else, including ``None`` and non-strings.
    """
    if not isinstance(value, str):
        raise InvalidTicketNumber()
    candidate = value.strip()
    if not _TICKET_NUMBER_RE.match(candidate):
        raise InvalidTicketNumber(
            f"Ticket number must be exactly {TICKET_NUMBER_LENGTH} digits."
        )
    return candidate


def is_three_digits(value: object) -> bool:
    return isinstance(value, str) and bool(_COMBINATION_RE.match(value))


def generate_ticket_number(
    session: Optional[Session] = None,
    max_attempts: int = 32,
) -> str:
    """Return a unique 17-digit ticket number.

    The first 13 digits are the current Unix time in milliseconds and the
    last 4 are random. When a session is provided, the helper retries if the
    generated value is already present (or pending) in ``Ticket.ticket_number``.
    """

    ticket_cls = None
    if session is not None:
        from .ticket import Ticket

        ticket_cls = Ticket

    attempts = 0
    while attempts < max_attempts:
        millis = str(time.time_ns() // 1_000_000).zfill(13)[-13:]
        suffix = "".join(secrets.choice("0123456789") for _ in range(4))
        candidate = f"{millis}{suffix}"

        if session is not None and ticket_cls is not None:
            collision = False
            for obj in session.new:
                if isinstance(obj, ticket_cls) and obj.ticket_number == candidate:
                    collision = True
                    break
            if collision:
                attempts += 1
                continue

            exists = session.scalar(
                select(ticket_cls.id).where(ticket_cls.ticket_number == candidate)
            )
            if exists is not None:
                attempts += 1
                continue

        return candidate

    raise RuntimeError("Unable to generate a unique ticket number after multiple attempts")

"""Ticket number generation."""

from __future__ import annotations

import secrets
import string
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .ticket import Ticket

# Crockford-style: no O or I, so numbers read back unambiguously.
TICKET_ALPHABET = string.digits + string.ascii_uppercase.replace("O", "").replace("I", "")
TICKET_NUMBER_MAX_LENGTH = 64


def _random_ticket_number(prefix: str, length: int) -> str:
    body = "".join(secrets.choice(TICKET_ALPHABET) for _ in range(length))
    return f"{prefix}-{body}"[:TICKET_NUMBER_MAX_LENGTH]


def _ticket_number_in_use(session: Session, candidate: str, pending: set[str]) -> bool:
    if candidate in pending:
        return True
    stmt = select(Ticket.id).where(Ticket.ticket_number == candidate)
    return session.scalar(stmt) is not None


def generate_ticket_number(
    prefix: str,
    session: Optional[Session] = None,
    length: int = 10,
    max_attempts: int = 32,
) -> str:
    """Draw a ticket number such as ``TKT-7K3M9QX2HD``.

    Without a session the first random candidate is returned. With one,
    candidates already stored or waiting to be flushed in ``session`` are
    skipped.

    Raises
    ------
    RuntimeError
        If ``max_attempts`` candidates in a row are all taken.
    """
    pending: set[str] = set()
    if session is not None:
        pending = {obj.ticket_number for obj in session.new if isinstance(obj, Ticket)}

    for _ in range(max_attempts):
        candidate = _random_ticket_number(prefix, length)
        if session is None or not _ticket_number_in_use(session, candidate, pending):
            return candidate

    raise RuntimeError(f"No free ticket number for prefix {prefix!r} after {max_attempts} attempts")

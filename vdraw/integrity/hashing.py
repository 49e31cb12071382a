"""Canonical ticket fingerprints."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Protocol

from ..db.utils import epoch_millis

HASH_ALGORITHM = "SHA-256"
_CENTS = Decimal("0.01")


class HashableTicket(Protocol):
    """Immutable ticket fields that go into the fingerprint.

    :class:`vdraw.models.Ticket` satisfies this, as does :class:`TicketSnapshot`.
    """

    id: int
    user_id: int
    draw_id: int
    selected_numbers: Iterable[int]
    cost: Decimal
    purchased_at: datetime
    agent_id: Optional[int]


@dataclass(frozen=True)
class TicketSnapshot:
    """Plain-data ticket, for hashing tickets that are not ORM rows."""

    id: int
    user_id: int
    draw_id: int
    selected_numbers: tuple[int, ...]
    cost: Decimal
    purchased_at: datetime
    agent_id: Optional[int] = None


def canonical_ticket_payload(ticket: HashableTicket) -> str:
    """Serialize the hashed ticket fields as compact JSON.

    Keys appear in a fixed order, ``selectedNumbers`` is sorted so entry
    order never changes the hash, ``cost`` is a two-decimal string and
    ``purchaseTimestamp`` is epoch milliseconds.
    """
    if ticket.id is None:
        raise ValueError("Ticket must be persisted (have an id) before hashing")
    payload = {
        "ticketId": ticket.id,
        "userId": ticket.user_id,
        "drawId": ticket.draw_id,
        "selectedNumbers": sorted(int(n) for n in ticket.selected_numbers),
        "cost": str(Decimal(str(ticket.cost)).quantize(_CENTS)),
        "purchaseTimestamp": epoch_millis(ticket.purchased_at),
        "agentId": ticket.agent_id,
    }
    return json.dumps(payload, separators=(",", ":"))


def hash_ticket(ticket: HashableTicket) -> str:
    """Return the lowercase SHA-256 hex digest of the canonical ticket payload."""
    return hashlib.sha256(canonical_ticket_payload(ticket).encode("utf-8")).hexdigest()


__all__ = [
    "HASH_ALGORITHM",
    "HashableTicket",
    "TicketSnapshot",
    "canonical_ticket_payload",
    "hash_ticket",
]

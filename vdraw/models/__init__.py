from .base import Base

# import models so Alembic/autoloaders can discover mappers
from .draw import Draw  # noqa: F401
from .ticket import Ticket  # noqa: F401
from .randomness import (  # noqa: F401
    CERTIFIED_CHAIN,
    LOCAL_SECURE,
    RandomnessAuditEntry,
)
from .integrity import MerkleBatch, TicketHashRecord  # noqa: F401
from .wallet import PayoutRecord, WalletAccount, WalletTransaction  # noqa: F401

__all__ = [
    "Base",
    "Draw",
    "Ticket",
    "RandomnessAuditEntry",
    "CERTIFIED_CHAIN",
    "LOCAL_SECURE",
    "TicketHashRecord",
    "MerkleBatch",
    "WalletAccount",
    "WalletTransaction",
    "PayoutRecord",
]

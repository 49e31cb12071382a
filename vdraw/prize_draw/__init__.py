"""Draw resolution: prize tiers, payout collaborators and the engine."""

from .collaborators import (
    PRIZE_PAYOUT,
    LoggingPayoutNotifier,
    PayoutNotifier,
    SqlWalletLedger,
    WalletLedger,
    build_prize_message,
)
from .engine import (
    DrawResolutionEngine,
    DrawSummary,
    TicketEvaluation,
    count_matches,
    resolve_draw,
)
from .tiers import (
    DEFAULT_PRIZE_TABLES,
    PrizeOutcome,
    PrizeTable,
    PrizeTableRegistry,
    PrizeTier,
    to_cents,
)

__all__ = [
    "DEFAULT_PRIZE_TABLES",
    "DrawResolutionEngine",
    "DrawSummary",
    "LoggingPayoutNotifier",
    "PRIZE_PAYOUT",
    "PayoutNotifier",
    "PrizeOutcome",
    "PrizeTable",
    "PrizeTableRegistry",
    "PrizeTier",
    "SqlWalletLedger",
    "TicketEvaluation",
    "WalletLedger",
    "build_prize_message",
    "count_matches",
    "resolve_draw",
    "to_cents",
]

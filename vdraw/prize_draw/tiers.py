"""Prize tier tables for draw resolution."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, Optional

from ..formats import DAILY, WEEKLY

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")


def to_cents(amount: Decimal) -> Decimal:
    """Round a monetary amount to two decimals, half up. Only used on output."""
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PrizeTier:
    """A single winning tier.

    Attributes
    ----------
    matched_count : int
        Number of matched numbers that lands in this tier.
    name : str
        Display name, e.g. ``"Jackpot"``.
    jackpot_share : Optional[Decimal]
        Fraction of the jackpot paid (``Decimal("0.15")`` for 15%).
    fixed_amount : Optional[Decimal]
        Flat prize. Exactly one of ``jackpot_share`` and ``fixed_amount`` is set.
    """

    matched_count: int
    name: str
    jackpot_share: Optional[Decimal] = None
    fixed_amount: Optional[Decimal] = None

    def __post_init__(self) -> None:
        if (self.jackpot_share is None) == (self.fixed_amount is None):
            raise ValueError("A prize tier needs exactly one of jackpot_share or fixed_amount")

    def amount_for(self, jackpot_amount: Decimal) -> Decimal:
        """Unrounded prize for this tier given the jackpot."""
        if self.fixed_amount is not None:
            return self.fixed_amount
        if self.jackpot_share is None:
            raise ValueError(f"Prize tier {self.name!r} has no amount rule")
        return Decimal(jackpot_amount) * self.jackpot_share


@dataclass(frozen=True)
class PrizeOutcome:
    matched_count: int
    is_winner: bool
    prize_amount: Decimal
    tier_name: Optional[str] = None


class PrizeTable:
    """Mapping of matched counts to tiers for one draw type.

    Any matched count without a tier is a losing ticket.
    """

    def __init__(self, draw_type: str, tiers: Iterable[PrizeTier]) -> None:
        self.draw_type = draw_type
        self._tiers: Dict[int, PrizeTier] = {}
        for tier in tiers:
            if tier.matched_count in self._tiers:
                raise ValueError(
                    f"Duplicate tier for {tier.matched_count} matches in {draw_type} table"
                )
            self._tiers[tier.matched_count] = tier

    def tier_for(self, matched_count: int) -> Optional[PrizeTier]:
        return self._tiers.get(matched_count)

    def tiers(self) -> list[PrizeTier]:
        return sorted(self._tiers.values(), key=lambda t: t.matched_count, reverse=True)

    def evaluate(self, matched_count: int, jackpot_amount: Decimal) -> PrizeOutcome:
        tier = self.tier_for(matched_count)
        if tier is None:
            return PrizeOutcome(matched_count, False, ZERO)
        return PrizeOutcome(
            matched_count,
            True,
            to_cents(tier.amount_for(jackpot_amount)),
            tier.name,
        )


class PrizeTableRegistry:
    """Mutable registry mapping draw types to prize tables."""

    def __init__(self) -> None:
        self._tables: Dict[str, PrizeTable] = {}

    def register(self, table: PrizeTable, *, replace: bool = False) -> None:
        """Register ``table`` under its draw type.

        Raises :class:`ValueError` on duplicates unless ``replace`` is set.
        """
        if not replace and table.draw_type in self._tables:
            raise ValueError(f"Prize table for '{table.draw_type}' is already registered")
        self._tables[table.draw_type] = table

    def get(self, draw_type: str) -> PrizeTable:
        """Return the table registered for ``draw_type``."""
        try:
            return self._tables[draw_type]
        except KeyError as exc:
            raise KeyError(f"No prize table for draw type '{draw_type}'") from exc

    def evaluate(
        self, draw_type: str, matched_count: int, jackpot_amount: Decimal
    ) -> PrizeOutcome:
        return self.get(draw_type).evaluate(matched_count, jackpot_amount)

    def available_tables(self) -> Dict[str, PrizeTable]:
        return dict(self._tables)


DEFAULT_PRIZE_TABLES = PrizeTableRegistry()
DEFAULT_PRIZE_TABLES.register(
    PrizeTable(
        DAILY,
        [
            PrizeTier(5, "Jackpot", jackpot_share=Decimal("1")),
            PrizeTier(4, "Second Prize", jackpot_share=Decimal("0.15")),
            PrizeTier(3, "Third Prize", jackpot_share=Decimal("0.05")),
            PrizeTier(2, "Fourth Prize", fixed_amount=Decimal("10.00")),
        ],
    )
)
DEFAULT_PRIZE_TABLES.register(
    PrizeTable(
        WEEKLY,
        [
            PrizeTier(6, "Jackpot", jackpot_share=Decimal("1")),
            PrizeTier(5, "Second Prize", jackpot_share=Decimal("0.20")),
            PrizeTier(4, "Third Prize", jackpot_share=Decimal("0.10")),
            PrizeTier(3, "Fourth Prize", jackpot_share=Decimal("0.03")),
            PrizeTier(2, "Fifth Prize", fixed_amount=Decimal("25.00")),
        ],
    )
)

__all__ = [
    "CENTS",
    "DEFAULT_PRIZE_TABLES",
    "PrizeOutcome",
    "PrizeTable",
    "PrizeTableRegistry",
    "PrizeTier",
    "to_cents",
]

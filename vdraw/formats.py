"""Draw formats and selection validation shared by every component."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from .errors import TicketValidationError

DAILY = "daily"
WEEKLY = "weekly"


@dataclass(frozen=True)
class DrawFormat:
    """Fixed shape of a draw type.

    Attributes
    ----------
    draw_type : str
        ``"daily"`` or ``"weekly"``.
    numbers_required : int
        How many numbers a ticket selects and a draw produces.
    max_number_value : int
        Inclusive upper bound of the number pool (the lower bound is 1).
    """

    draw_type: str
    numbers_required: int
    max_number_value: int


DRAW_FORMATS: dict[str, DrawFormat] = {
    DAILY: DrawFormat(DAILY, numbers_required=5, max_number_value=45),
    WEEKLY: DrawFormat(WEEKLY, numbers_required=6, max_number_value=49),
}


def get_draw_format(draw_type: str) -> DrawFormat:
    """Return the :class:`DrawFormat` for ``draw_type``."""
    try:
        return DRAW_FORMATS[draw_type]
    except KeyError as exc:
        raise ValueError(
            f"Unknown draw type {draw_type!r}; expected one of {sorted(DRAW_FORMATS)}"
        ) from exc


@dataclass(frozen=True)
class DrawRequest:
    """Immutable description of what a randomness request must produce."""

    draw_id: int
    draw_type: str
    numbers_required: int
    max_number_value: int

    @classmethod
    def for_draw(cls, draw_id: int, draw_type: str) -> "DrawRequest":
        fmt = get_draw_format(draw_type)
        return cls(
            draw_id=draw_id,
            draw_type=fmt.draw_type,
            numbers_required=fmt.numbers_required,
            max_number_value=fmt.max_number_value,
        )


def normalize_selection(numbers: Iterable[int], draw_format: DrawFormat) -> list[int]:
    """Validate a set of picked numbers and return them sorted ascending.

    Raises
    ------
    TicketValidationError
        On wrong cardinality, duplicates, non-integers, or out-of-range values.
    """
    picked = list(numbers)
    for value in picked:
        if isinstance(value, bool) or not isinstance(value, int):
            raise TicketValidationError(
                f"Selected numbers must be integers, got {value!r}"
            )
    if len(picked) != draw_format.numbers_required:
        raise TicketValidationError(
            f"A {draw_format.draw_type} ticket needs exactly "
            f"{draw_format.numbers_required} numbers, got {len(picked)}"
        )
    if len(set(picked)) != len(picked):
        raise TicketValidationError("Selected numbers must be unique")
    out_of_range = [n for n in picked if n < 1 or n > draw_format.max_number_value]
    if out_of_range:
        raise TicketValidationError(
            f"Numbers {out_of_range} are outside 1-{draw_format.max_number_value}"
        )
    return sorted(picked)


def validate_winning_numbers(numbers: Sequence[int], draw_format: DrawFormat) -> list[int]:
    """Check the winning-number rules and return the canonical sorted list."""
    try:
        canonical = normalize_selection(numbers, draw_format)
    except TicketValidationError as exc:
        raise ValueError(f"Invalid winning numbers: {exc.message}") from exc
    return canonical


__all__ = [
    "DAILY",
    "WEEKLY",
    "DrawFormat",
    "DRAW_FORMATS",
    "DrawRequest",
    "get_draw_format",
    "normalize_selection",
    "validate_winning_numbers",
]

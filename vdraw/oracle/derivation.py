"""Deterministic helpers turning a fulfilled seed into winning numbers."""

from __future__ import annotations

import hashlib
import logging

from ..errors import SeedExhausted

logger = logging.getLogger(__name__)

MAX_DERIVATION_ITERATIONS = 10_000


def sha256_hex(value: str) -> str:
    """Return the lowercase SHA-256 hex digest of ``value`` encoded as UTF-8."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def compute_local_proof(seed: str, request_id: str) -> str:
    """Audit proof stored for locally generated seeds: ``sha256(seed + request_id)``.

    Anyone holding the audit entry can recompute this value to confirm the
    seed was not edited after the fact. It says nothing about how
    unpredictable the seed was; it is not a VRF proof.
    """
    return sha256_hex(seed + request_id)


def derive_winning_numbers(
    seed: str,
    numbers_required: int,
    max_number_value: int,
    *,
    max_iterations: int = MAX_DERIVATION_ITERATIONS,
) -> list[int]:
    """Derive sorted unique winning numbers from ``seed``.

    Parameters
    ----------
    seed : str
        Fulfilled seed, usually a hex string.
    numbers_required : int
        How many distinct numbers to produce.
    max_number_value : int
        Numbers are drawn from ``1..max_number_value``.
    max_iterations : int, default: 10000
        Hash-chain steps allowed before giving up.

    Returns
    -------
    list[int]
        Winning numbers in ascending order.

    Notes
    -----
    Each step replaces the running value with its SHA-256 hex digest and
    reads the first eight hex characters (four digest bytes) as an unsigned
    integer ``v``; the candidate is ``v % max_number_value + 1``. Repeats are
    skipped. The sequence must stay bit-exact so past draws can be replayed.

    Raises
    ------
    ValueError
        If more numbers are requested than the pool holds.
    SeedExhausted
        If ``max_iterations`` steps did not yield enough distinct numbers.
    """
    if numbers_required < 1 or max_number_value < 1:
        raise ValueError("numbers_required and max_number_value must be positive")
    if numbers_required > max_number_value:
        raise ValueError(
            f"Cannot draw {numbers_required} distinct numbers from 1-{max_number_value}"
        )

    chosen: list[int] = []
    seen: set[int] = set()
    current = seed
    for _ in range(max_iterations):
        current = sha256_hex(current)
        candidate = int(current[:8], 16) % max_number_value + 1
        if candidate in seen:
            continue
        seen.add(candidate)
        chosen.append(candidate)
        if len(chosen) == numbers_required:
            return sorted(chosen)

    logger.critical(
        f"Seed derivation exhausted {max_iterations} iterations with only "
        f"{len(chosen)}/{numbers_required} numbers"
    )
    raise SeedExhausted(
        f"Seed did not yield {numbers_required} distinct numbers within "
        f"{max_iterations} iterations",
        details={"found": sorted(chosen), "max_iterations": max_iterations},
    )


__all__ = [
    "MAX_DERIVATION_ITERATIONS",
    "compute_local_proof",
    "derive_winning_numbers",
    "sha256_hex",
]

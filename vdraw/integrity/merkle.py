"""Merkle aggregation over ordered ticket hashes.

Nodes are lowercase hex strings. A parent is ``sha256(left + right)`` over
the concatenated hex text; an unpaired node at the end of a level is paired
with itself.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Sequence

EMPTY_MERKLE_ROOT = ""


@dataclass(frozen=True)
class MerkleLevel:
    """One level of a tree, bottom (leaves) first, for audit display."""

    level: int
    hashes: tuple[str, ...]
    description: str


def _sha256_hexdigest(value: str) -> str:
    """Return the SHA-256 hex digest of ``value`` encoded as ASCII."""
    try:
        payload = value.encode("ascii")
    except UnicodeEncodeError as exc:
        raise ValueError("Merkle nodes must be ASCII hex strings") from exc
    return hashlib.sha256(payload).hexdigest()


def hash_pair(left: str, right: str) -> str:
    return _sha256_hexdigest(left + right)


def _next_level(level: Sequence[str]) -> list[str]:
    parents: list[str] = []
    for i in range(0, len(level), 2):
        left = level[i]
        right = level[i + 1] if i + 1 < len(level) else left
        parents.append(hash_pair(left, right))
    return parents


def build_merkle_root(hashes: Sequence[str]) -> str:
    """Return the Merkle root of ``hashes`` in the given order.

    An empty sequence yields :data:`EMPTY_MERKLE_ROOT`; a single hash is its
    own root.
    """
    if not hashes:
        return EMPTY_MERKLE_ROOT
    level = list(hashes)
    while len(level) > 1:
        level = _next_level(level)
    return level[0]


def generate_merkle_proof(hashes: Sequence[str], target_index: int) -> list[str]:
    """Return the sibling hashes on the path from ``target_index`` to the root.

    A node paired with itself contributes itself as the sibling, so every
    level is represented and :func:`verify_merkle_proof` can replay it.

    Raises
    ------
    ValueError
        If ``target_index`` is outside ``hashes``.
    """
    if target_index < 0 or target_index >= len(hashes):
        raise ValueError(
            f"Target index {target_index} out of bounds for {len(hashes)} hash(es)"
        )

    proof: list[str] = []
    level = list(hashes)
    index = target_index
    while len(level) > 1:
        if index % 2 == 0:
            sibling = level[index + 1] if index + 1 < len(level) else level[index]
        else:
            sibling = level[index - 1]
        proof.append(sibling)
        level = _next_level(level)
        index //= 2
    return proof


def verify_merkle_proof(
    leaf_hash: str, root: str, proof: Sequence[str], index: int
) -> bool:
    """Recombine ``leaf_hash`` with ``proof`` and compare against ``root``.

    Bit ``i`` of ``index`` says whether the running node is a right child
    at level ``i`` (``sibling + current``) or a left child (``current +
    sibling``).
    """
    if index < 0:
        return False
    current = leaf_hash
    for level, sibling in enumerate(proof):
        if (index >> level) & 1:
            current = hash_pair(sibling, current)
        else:
            current = hash_pair(current, sibling)
    return current == root


def build_merkle_levels(hashes: Sequence[str]) -> list[MerkleLevel]:
    """Every level of the tree, leaves first; handy for audit pages."""
    if not hashes:
        return [MerkleLevel(0, (), "No tickets")]

    level = list(hashes)
    levels = [
        MerkleLevel(
            0,
            tuple(level),
            f"Level 0: Individual ticket hashes ({len(level)} tickets)",
        )
    ]
    number = 0
    while len(level) > 1:
        level = _next_level(level)
        number += 1
        levels.append(
            MerkleLevel(
                number,
                tuple(level),
                f"Level {number}: Combined hashes ({len(level)} nodes)",
            )
        )
    return levels


__all__ = [
    "EMPTY_MERKLE_ROOT",
    "MerkleLevel",
    "build_merkle_levels",
    "build_merkle_root",
    "generate_merkle_proof",
    "hash_pair",
    "verify_merkle_proof",
]

"""Ticket integrity ledger: hashing, Merkle batches and anchoring."""

from .anchoring import (
    AnchorBackend,
    AnchorReceipt,
    AnchorResult,
    ChainAnchor,
    LocalDigestAnchor,
    anchor_batch,
)
from .hashing import HASH_ALGORITHM, TicketSnapshot, canonical_ticket_payload, hash_ticket
from .merkle import (
    EMPTY_MERKLE_ROOT,
    MerkleLevel,
    build_merkle_levels,
    build_merkle_root,
    generate_merkle_proof,
    verify_merkle_proof,
)
from .service import IntegrityLedger, MerkleProof, TicketHashVerification

__all__ = [
    "AnchorBackend",
    "AnchorReceipt",
    "AnchorResult",
    "ChainAnchor",
    "EMPTY_MERKLE_ROOT",
    "HASH_ALGORITHM",
    "IntegrityLedger",
    "LocalDigestAnchor",
    "MerkleLevel",
    "MerkleProof",
    "TicketHashVerification",
    "TicketSnapshot",
    "anchor_batch",
    "build_merkle_levels",
    "build_merkle_root",
    "canonical_ticket_payload",
    "generate_merkle_proof",
    "hash_ticket",
    "verify_merkle_proof",
]

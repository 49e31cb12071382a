"""Committing Merkle roots to an external immutable ledger."""

from __future__ import annotations

import hashlib
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional, Protocol, Sequence

from ..db.utils import epoch_millis
from ..errors import AnchoringFailed
from ..retry import RetryExhausted, retry_with_backoff
from .merkle import build_merkle_root

if TYPE_CHECKING:
    from ..blockchain.api import ChainClient

logger = logging.getLogger(__name__)

DEFAULT_LEAF_PREVIEW = 10


@dataclass(frozen=True)
class AnchorReceipt:
    reference: str
    block_number: Optional[int] = None


@dataclass(frozen=True)
class AnchorResult:
    root: str
    anchor_reference: str
    block_number: Optional[int] = None


class AnchorBackend(Protocol):
    def submit(self, root: str, leaf_preview: Sequence[str]) -> AnchorReceipt: ...


class ChainAnchor:
    """Anchors roots through the chain gateway."""

    def __init__(self, client: "ChainClient") -> None:
        self._client = client

    def submit(self, root: str, leaf_preview: Sequence[str]) -> AnchorReceipt:
        response = self._client.anchor_merkle_root(root, leaf_preview)
        if not isinstance(response, dict) or not response.get("transaction_hash"):
            raise RuntimeError(f"Unexpected anchoring response: {response!r}")
        return AnchorReceipt(
            reference=str(response["transaction_hash"]),
            block_number=response.get("block_number"),
        )


class LocalDigestAnchor:
    """Offline stand-in for a chain: the reference is a digest of the commitment.

    Useful in development and tests. It provides no third-party
    immutability; anyone with the batch can recompute the reference.
    """

    def __init__(self, clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)) -> None:
        self._clock = clock

    def submit(self, root: str, leaf_preview: Sequence[str]) -> AnchorReceipt:
        commitment = json.dumps(
            {
                "merkleRoot": root,
                "ticketHashes": list(leaf_preview),
                "timestamp": epoch_millis(self._clock()),
            },
            separators=(",", ":"),
        )
        return AnchorReceipt(reference=hashlib.sha256(commitment.encode("utf-8")).hexdigest())


def anchor_batch(
    hashes: Sequence[str],
    backend: AnchorBackend,
    *,
    leaf_preview: int = DEFAULT_LEAF_PREVIEW,
    max_attempts: int = 5,
    base_delay: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
) -> AnchorResult:
    """Compute the root of ``hashes`` and commit it through ``backend``.

    The first ``leaf_preview`` leaves travel with the root for transparency.
    Submission is retried with exponential backoff.

    Raises
    ------
    ValueError
        If ``hashes`` is empty.
    AnchoringFailed
        If every attempt failed.
    """
    if not hashes:
        raise ValueError("Cannot anchor an empty batch")
    root = build_merkle_root(hashes)
    preview = list(hashes[:leaf_preview])
    try:
        receipt = retry_with_backoff(
            lambda: backend.submit(root, preview),
            max_attempts=max_attempts,
            base_delay=base_delay,
            sleep=sleep,
            description=f"anchoring root {root[:12]}",
        )
    except RetryExhausted as exc:
        raise AnchoringFailed(
            f"Anchoring root {root} failed after {exc.attempts} attempt(s): {exc.last_error}",
            details={"root": root, "attempts": exc.attempts},
        ) from exc.last_error
    logger.info(f"Anchored Merkle root {root} as {receipt.reference}")
    return AnchorResult(root=root, anchor_reference=receipt.reference, block_number=receipt.block_number)


__all__ = [
    "AnchorBackend",
    "AnchorReceipt",
    "AnchorResult",
    "ChainAnchor",
    "DEFAULT_LEAF_PREVIEW",
    "LocalDigestAnchor",
    "anchor_batch",
]

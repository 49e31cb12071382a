"""Randomness oracle: request, fulfil, derive and verify draw seeds."""

from __future__ import annotations

import hmac
import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional, Protocol

import requests
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.utils import as_utc
from ..errors import AuditEntryNotFound, OracleUnavailable, SeedExhausted
from ..formats import DrawRequest
from ..models import CERTIFIED_CHAIN, LOCAL_SECURE, Draw, RandomnessAuditEntry
from .derivation import compute_local_proof, derive_winning_numbers

if TYPE_CHECKING:
    from ..config import DrawEngineSettings

logger = logging.getLogger(__name__)

LOCAL_GUARANTEE = (
    "audit-log integrity only: the stored seed hashes to the stored proof; "
    "this is not a verifiable random function and gives no unpredictability "
    "guarantee"
)
CERTIFIED_GUARANTEE = (
    "external verifiable randomness oracle; the request transaction is "
    "confirmed on-chain"
)

# Exceptions a chain client may raise that mean "this path is unusable right now".
_CHAIN_ERRORS = (requests.RequestException, RuntimeError, KeyError, ValueError)


class CertifiedRandomnessClient(Protocol):
    """What the oracle needs from an external VRF gateway."""

    def request_randomness(self, draw_id: int, num_words: int) -> Mapping[str, Any]: ...

    def get_randomness_fulfillment(self, request_id: str) -> Mapping[str, Any]: ...

    def get_transaction_receipt(
        self, transaction_hash: str
    ) -> Optional[Mapping[str, Any]]: ...


@dataclass(frozen=True)
class RandomnessRequestReceipt:
    """Returned to callers of :meth:`RandomnessOracle.request_random_numbers`."""

    request_id: str
    estimated_fulfillment_time: datetime
    oracle_source: str


@dataclass(frozen=True)
class ProofVerification:
    is_valid: bool
    details: dict[str, Any] = field(default_factory=dict)


def _default_seed() -> str:
    return secrets.token_hex(32)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RandomnessOracle:
    """Produces audited random seeds for draws.

    One instance is built at startup with explicit configuration and shared
    by reference. The provenance mode is fixed per request: a request is
    served either entirely by the certified chain oracle or entirely by the
    local secure generator, and its audit entry records which.
    """

    def __init__(
        self,
        session: Session,
        *,
        mode: str = LOCAL_SECURE,
        certified_client: Optional[CertifiedRandomnessClient] = None,
        allow_local_fallback: bool = True,
        seed_factory: Callable[[], str] = _default_seed,
        local_fulfillment_delay: float = 0.0,
        local_fulfillment_window: timedelta = timedelta(seconds=5),
        certified_fulfillment_window: timedelta = timedelta(minutes=2),
        stale_request_grace: timedelta = timedelta(minutes=30),
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if mode not in (LOCAL_SECURE, CERTIFIED_CHAIN):
            raise ValueError(f"Unknown oracle mode {mode!r}")
        self._session = session
        self.mode = mode
        self._client = certified_client
        self._allow_local_fallback = allow_local_fallback
        self._seed_factory = seed_factory
        self._local_delay = local_fulfillment_delay
        self._local_window = local_fulfillment_window
        self._certified_window = certified_fulfillment_window
        self._stale_grace = stale_request_grace
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        session: Session,
        settings: "DrawEngineSettings",
        *,
        certified_client: Optional[CertifiedRandomnessClient] = None,
    ) -> "RandomnessOracle":
        return cls(
            session,
            mode=settings.oracle_mode,
            certified_client=certified_client,
            allow_local_fallback=settings.allow_local_fallback,
            local_fulfillment_delay=settings.local_fulfillment_delay,
            local_fulfillment_window=settings.local_fulfillment_window,
            certified_fulfillment_window=settings.certified_fulfillment_window,
            stale_request_grace=settings.stale_request_grace,
        )

    # -------- requesting --------
    def request_random_numbers(
        self, draw_id: int, draw_type: str
    ) -> RandomnessRequestReceipt:
        """Open a randomness request for ``draw_id``.

        Creates a ``pending`` :class:`RandomnessAuditEntry`. Local requests
        are fulfilled before this method returns; certified requests stay
        pending until :meth:`fulfill` or :meth:`poll_certified` records the
        oracle's answer.

        Raises
        ------
        ValueError
            If the draw does not exist or has a different draw type, or
            it already has a pending or fulfilled request. A new request is
            only accepted once every earlier one has failed.
        OracleUnavailable
            If neither the certified path nor the local generator can serve
            the request.
        """
        draw = self._session.get(Draw, draw_id)
        if draw is None:
            raise ValueError(f"Draw {draw_id} must be persisted before requesting randomness")
        if draw.draw_type != draw_type:
            raise ValueError(
                f"Draw {draw_id} is a {draw.draw_type} draw, not {draw_type}"
            )
        for earlier in RandomnessAuditEntry.list_by_draw(self._session, draw_id):
            if earlier.status != "failed":
                raise ValueError(
                    f"Draw {draw_id} already has {earlier.status} randomness request "
                    f"{earlier.request_id}"
                )
        request = DrawRequest.for_draw(draw.id, draw.draw_type)

        if self.mode == CERTIFIED_CHAIN:
            if self._client is not None:
                try:
                    return self._request_certified(self._client, request)
                except _CHAIN_ERRORS as exc:
                    if not self._allow_local_fallback:
                        raise OracleUnavailable(
                            f"Certified oracle request failed for draw {draw_id}: {exc}"
                        ) from exc
                    logger.warning(
                        f"Certified oracle unavailable for draw {draw_id} ({exc}); "
                        "using local secure generator"
                    )
            elif not self._allow_local_fallback:
                raise OracleUnavailable(
                    "Certified mode configured without a chain client and local "
                    "fallback is disabled"
                )
            else:
                logger.warning(
                    f"No chain client configured; draw {draw_id} uses the local secure generator"
                )

        return self._request_local(request)

    def _request_certified(
        self, client: CertifiedRandomnessClient, request: DrawRequest
    ) -> RandomnessRequestReceipt:
        receipt = client.request_randomness(request.draw_id, request.numbers_required)
        request_id = str(receipt["request_id"])
        now = self._clock()
        entry = RandomnessAuditEntry(
            request_id=request_id,
            draw_id=request.draw_id,
            oracle_source=CERTIFIED_CHAIN,
            status="pending",
            transaction_hash=receipt.get("transaction_hash"),
            block_number=receipt.get("block_number"),
            oracle_address=receipt.get("oracle_address"),
            created_at=now,
            estimated_fulfillment_at=now + self._certified_window,
        )
        self._session.add(entry)
        self._session.flush()
        logger.info(
            f"Certified randomness requested for draw {request.draw_id}: {request_id} "
            f"(tx {entry.transaction_hash}, block {entry.block_number})"
        )
        return RandomnessRequestReceipt(
            request_id=request_id,
            estimated_fulfillment_time=entry.estimated_fulfillment_at,
            oracle_source=CERTIFIED_CHAIN,
        )

    def _request_local(self, request: DrawRequest) -> RandomnessRequestReceipt:
        try:
            seed = self._seed_factory()
        except Exception as exc:
            raise OracleUnavailable(f"Local secure generator failed: {exc}") from exc
        if not seed:
            raise OracleUnavailable("Local secure generator returned an empty seed")

        request_id = f"vrf_{int(time.time() * 1000)}_{secrets.token_hex(6)}"
        now = self._clock()
        entry = RandomnessAuditEntry(
            request_id=request_id,
            draw_id=request.draw_id,
            oracle_source=LOCAL_SECURE,
            status="pending",
            oracle_address="secure_local_oracle",
            created_at=now,
            estimated_fulfillment_at=now + self._local_window,
        )
        self._session.add(entry)
        self._session.flush()
        logger.info(f"Local randomness requested for draw {request.draw_id}: {request_id}")

        if self._local_delay > 0:
            self._sleep(self._local_delay)
        self.fulfill(request_id, seed)

        return RandomnessRequestReceipt(
            request_id=request_id,
            estimated_fulfillment_time=entry.estimated_fulfillment_at,
            oracle_source=LOCAL_SECURE,
        )

    # -------- fulfilment --------
    def fulfill(
        self, request_id: str, seed: str, *, proof: Optional[str] = None
    ) -> RandomnessAuditEntry:
        """Record the seed for a pending request, at most once.

        A replay against an entry that is already ``fulfilled`` or ``failed``
        returns the entry unchanged.

        Raises
        ------
        AuditEntryNotFound
            If ``request_id`` is unknown.
        SeedExhausted
            If the seed cannot produce a full set of numbers; the entry is
            marked ``failed`` first.
        """
        entry = self.require_entry(request_id)
        if not entry.is_pending:
            logger.debug(f"Request {request_id} already {entry.status}; ignoring replay")
            return entry

        fmt = entry.draw.format
        try:
            derive_winning_numbers(seed, fmt.numbers_required, fmt.max_number_value)
        except SeedExhausted:
            entry.mark_failed("seed exhausted during derivation", when=self._clock())
            self._session.flush()
            raise

        if entry.oracle_source == LOCAL_SECURE:
            proof = compute_local_proof(seed, request_id)
        entry.mark_fulfilled(seed, proof, when=self._clock())
        self._session.flush()
        logger.info(f"Randomness request {request_id} fulfilled ({entry.oracle_source})")
        return entry

    def fulfill_certified(
        self, request_id: str, seed: str, proof: Optional[str] = None
    ) -> RandomnessAuditEntry:
        """Callback entry point for the certified oracle's answer."""
        entry = self.require_entry(request_id)
        if entry.oracle_source != CERTIFIED_CHAIN:
            raise ValueError(f"Request {request_id} is not a certified request")
        return self.fulfill(request_id, seed, proof=proof)

    def fail_request(self, request_id: str, reason: str) -> RandomnessAuditEntry:
        entry = self.require_entry(request_id)
        if entry.mark_failed(reason, when=self._clock()):
            self._session.flush()
            logger.warning(f"Randomness request {request_id} failed: {reason}")
        return entry

    def poll_certified(self, request_id: str) -> RandomnessAuditEntry:
        """Ask the chain gateway whether a certified request has been answered."""
        entry = self.require_entry(request_id)
        if not entry.is_pending:
            return entry
        if entry.oracle_source != CERTIFIED_CHAIN:
            raise ValueError(f"Request {request_id} is not a certified request")
        if self._client is None:
            raise OracleUnavailable("No chain client configured to poll certified requests")

        payload = self._client.get_randomness_fulfillment(request_id)
        status = payload.get("status")
        if status == "fulfilled":
            return self.fulfill(request_id, str(payload["seed"]), proof=payload.get("proof"))
        if status == "failed":
            return self.fail_request(
                request_id, str(payload.get("reason") or "oracle reported failure")
            )
        logger.debug(f"Certified request {request_id} still pending")
        return entry

    def expire_stale_requests(
        self, now: Optional[datetime] = None
    ) -> list[RandomnessAuditEntry]:
        """Fail certified requests that are well past their estimated fulfilment."""
        now = as_utc(now or self._clock())
        stmt = select(RandomnessAuditEntry).where(
            RandomnessAuditEntry.status == "pending",
            RandomnessAuditEntry.oracle_source == CERTIFIED_CHAIN,
        )
        expired: list[RandomnessAuditEntry] = []
        for entry in self._session.scalars(stmt):
            deadline = entry.estimated_fulfillment_at
            if deadline is None or as_utc(deadline) + self._stale_grace > now:
                continue
            entry.mark_failed("fulfilment not received before deadline", when=now)
            expired.append(entry)
        if expired:
            self._session.flush()
            logger.warning(f"Expired {len(expired)} stale certified randomness request(s)")
        return expired

    # -------- reading --------
    def require_entry(self, request_id: str) -> RandomnessAuditEntry:
        entry = RandomnessAuditEntry.get_by_request_id(self._session, request_id)
        if entry is None:
            raise AuditEntryNotFound(request_id)
        return entry

    def winning_numbers_for(self, request_id: str) -> Optional[list[int]]:
        """Winning numbers for a fulfilled request, ``None`` while not fulfilled."""
        entry = self.require_entry(request_id)
        if entry.status != "fulfilled" or entry.seed is None:
            return None
        fmt = entry.draw.format
        return derive_winning_numbers(entry.seed, fmt.numbers_required, fmt.max_number_value)

    # -------- verification --------
    def verify_proof(self, request_id: str, *, strict: bool = False) -> ProofVerification:
        """Check that an audit entry's randomness is what was recorded.

        Local entries recompute ``sha256(seed + request_id)``; this proves
        only that the audit log was not edited. Certified entries require
        the oracle request transaction to be present and successful.

        With ``strict`` an unknown ``request_id`` raises
        :class:`~vdraw.errors.AuditEntryNotFound` instead of returning an
        invalid result.
        """
        entry = RandomnessAuditEntry.get_by_request_id(self._session, request_id)
        if entry is None:
            if strict:
                raise AuditEntryNotFound(request_id)
            return ProofVerification(
                False, {"error": "Audit entry not found", "request_id": request_id}
            )

        if entry.oracle_source == LOCAL_SECURE:
            return self._verify_local(entry)
        return self._verify_certified(entry)

    def _verify_local(self, entry: RandomnessAuditEntry) -> ProofVerification:
        details: dict[str, Any] = {
            "type": LOCAL_SECURE,
            "guarantee": LOCAL_GUARANTEE,
            "status": entry.status,
        }
        if entry.seed is None or entry.proof is None:
            details["error"] = "Entry is not fulfilled"
            return ProofVerification(False, details)
        expected = compute_local_proof(entry.seed, entry.request_id)
        details["expected_proof"] = expected
        details["stored_proof"] = entry.proof
        return ProofVerification(hmac.compare_digest(expected, entry.proof), details)

    def _verify_certified(self, entry: RandomnessAuditEntry) -> ProofVerification:
        details: dict[str, Any] = {
            "type": CERTIFIED_CHAIN,
            "guarantee": CERTIFIED_GUARANTEE,
            "status": entry.status,
            "transaction_hash": entry.transaction_hash,
            "block_number": entry.block_number,
        }
        if not entry.transaction_hash:
            details["error"] = "No oracle transaction recorded"
            return ProofVerification(False, details)
        if self._client is None:
            details["error"] = "No chain client configured"
            return ProofVerification(False, details)
        try:
            receipt = self._client.get_transaction_receipt(entry.transaction_hash)
        except _CHAIN_ERRORS as exc:
            logger.warning(f"Receipt lookup failed for {entry.transaction_hash}: {exc}")
            details["error"] = str(exc)
            return ProofVerification(False, details)
        if not receipt:
            details["error"] = "Transaction not found"
            return ProofVerification(False, details)
        details["receipt_status"] = receipt.get("status")
        return ProofVerification(receipt.get("status") in (1, "1", "success", True), details)


def verify_oracle_proof(
    oracle: RandomnessOracle, request_id: str, *, strict: bool = False
) -> ProofVerification:
    """Module-level alias of :meth:`RandomnessOracle.verify_proof`."""
    return oracle.verify_proof(request_id, strict=strict)


__all__ = [
    "CERTIFIED_GUARANTEE",
    "LOCAL_GUARANTEE",
    "CertifiedRandomnessClient",
    "ProofVerification",
    "RandomnessOracle",
    "RandomnessRequestReceipt",
    "verify_oracle_proof",
]

"""Exception taxonomy for the draw engine."""

from __future__ import annotations

from typing import Any, Optional


class VDrawError(Exception):
    """Base class for all draw engine errors."""

    code = "vdraw_error"

    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class OracleUnavailable(VDrawError):
    """No randomness source could be reached or initialised for a request."""

    code = "oracle_unavailable"


class SeedExhausted(VDrawError):
    """The seed derivation loop exceeded its iteration cap."""

    code = "seed_exhausted"


class AuditEntryNotFound(VDrawError):
    """Verification was requested for an unknown randomness request id."""

    code = "audit_entry_not_found"

    def __init__(self, request_id: str) -> None:
        super().__init__(
            f"No randomness audit entry for request '{request_id}'",
            details={"request_id": request_id},
        )
        self.request_id = request_id


class BatchIntegrityMismatch(VDrawError):
    """A recomputed Merkle root differs from the stored one.

    Any payout flow depending on the batch must halt until investigated.
    """

    code = "batch_integrity_mismatch"

    def __init__(self, batch_id: Optional[int], stored_root: str, computed_root: str) -> None:
        super().__init__(
            f"Merkle batch {batch_id} root mismatch: stored {stored_root!r}, "
            f"computed {computed_root!r}",
            details={
                "batch_id": batch_id,
                "stored_root": stored_root,
                "computed_root": computed_root,
            },
        )
        self.batch_id = batch_id
        self.stored_root = stored_root
        self.computed_root = computed_root


class TicketIntegrityMismatch(VDrawError):
    """An unbatched ticket no longer matches its purchase-time hash, or has none.

    Payouts for the ticket's draw must halt until investigated.
    """

    code = "ticket_integrity_mismatch"

    def __init__(
        self, ticket_id: int, stored_hash: Optional[str], computed_hash: Optional[str]
    ) -> None:
        super().__init__(
            f"Ticket {ticket_id} hash mismatch: stored {stored_hash!r}, "
            f"computed {computed_hash!r}",
            details={
                "ticket_id": ticket_id,
                "stored_hash": stored_hash,
                "computed_hash": computed_hash,
            },
        )
        self.ticket_id = ticket_id
        self.stored_hash = stored_hash
        self.computed_hash = computed_hash


class TicketCreditFailure(VDrawError):
    """The external wallet credit for a winning ticket failed after retries."""

    code = "ticket_credit_failure"

    def __init__(self, ticket_id: int, user_id: int, attempts: int, cause: BaseException) -> None:
        super().__init__(
            f"Crediting ticket {ticket_id} for user {user_id} failed after "
            f"{attempts} attempt(s): {cause}",
            details={"ticket_id": ticket_id, "user_id": user_id, "attempts": attempts},
        )
        self.ticket_id = ticket_id
        self.user_id = user_id
        self.attempts = attempts
        self.cause = cause


class TicketValidationError(VDrawError, ValueError):
    """Malformed ticket input, rejected before any side effect."""

    code = "ticket_validation_error"


class AnchoringFailed(VDrawError):
    """Submitting a Merkle root to the external ledger failed after retries."""

    code = "anchoring_failed"


__all__ = [
    "VDrawError",
    "OracleUnavailable",
    "SeedExhausted",
    "AuditEntryNotFound",
    "BatchIntegrityMismatch",
    "TicketIntegrityMismatch",
    "TicketCreditFailure",
    "TicketValidationError",
    "AnchoringFailed",
]

"""Randomness oracle for draws."""

from .derivation import (
    MAX_DERIVATION_ITERATIONS,
    compute_local_proof,
    derive_winning_numbers,
    sha256_hex,
)
from .oracle import (
    CertifiedRandomnessClient,
    ProofVerification,
    RandomnessOracle,
    RandomnessRequestReceipt,
    verify_oracle_proof,
)

__all__ = [
    "MAX_DERIVATION_ITERATIONS",
    "CertifiedRandomnessClient",
    "ProofVerification",
    "RandomnessOracle",
    "RandomnessRequestReceipt",
    "compute_local_proof",
    "derive_winning_numbers",
    "sha256_hex",
    "verify_oracle_proof",
]

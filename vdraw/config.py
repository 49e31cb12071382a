"""Environment-based configuration for the draw engine components."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from dotenv import load_dotenv

from .models.randomness import CERTIFIED_CHAIN, LOCAL_SECURE


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name!r} must be an integer") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name!r} must be a number") from exc


@dataclass(frozen=True)
class DrawEngineSettings:
    """Explicit settings handed to each component at construction.

    Attributes
    ----------
    oracle_mode : str
        ``"local_secure"`` or ``"certified_chain"``.
    allow_local_fallback : bool
        In certified mode, fall back to the local generator when the chain
        client cannot be used. The entry records whichever source served it.
    local_fulfillment_delay : float
        Seconds slept before a local request is fulfilled.
    local_fulfillment_window : timedelta
        Estimate returned to callers for local requests.
    certified_fulfillment_window : timedelta
        Estimate returned to callers for certified requests; pending
        certified requests older than this plus ``stale_request_grace`` are
        swept to ``failed``.
    credit_max_attempts : int
        Attempts per ticket for the wallet credit.
    anchor_max_attempts : int
        Attempts per batch when anchoring.
    retry_base_delay : float
        Base seconds for exponential backoff.
    anchor_leaf_preview : int
        How many leaf hashes accompany an anchored root.
    chain_fqdn : Optional[str]
        Chain gateway host, if any.
    """

    oracle_mode: str = LOCAL_SECURE
    allow_local_fallback: bool = True
    local_fulfillment_delay: float = 0.0
    local_fulfillment_window: timedelta = timedelta(seconds=5)
    certified_fulfillment_window: timedelta = timedelta(minutes=2)
    stale_request_grace: timedelta = timedelta(minutes=30)
    credit_max_attempts: int = 3
    anchor_max_attempts: int = 5
    retry_base_delay: float = 0.5
    anchor_leaf_preview: int = 10
    chain_fqdn: Optional[str] = None

    def __post_init__(self) -> None:
        if self.oracle_mode not in (LOCAL_SECURE, CERTIFIED_CHAIN):
            raise ValueError(
                f"oracle_mode must be {LOCAL_SECURE!r} or {CERTIFIED_CHAIN!r}, "
                f"got {self.oracle_mode!r}"
            )
        if self.credit_max_attempts < 1 or self.anchor_max_attempts < 1:
            raise ValueError("retry attempt counts must be at least 1")
        if self.retry_base_delay < 0 or self.local_fulfillment_delay < 0:
            raise ValueError("delays must not be negative")

    @classmethod
    def from_env(cls) -> "DrawEngineSettings":
        load_dotenv()
        return cls(
            oracle_mode=os.getenv("VDRAW_ORACLE_MODE", LOCAL_SECURE),
            allow_local_fallback=os.getenv("VDRAW_ALLOW_LOCAL_FALLBACK", "1") != "0",
            local_fulfillment_delay=_env_float("VDRAW_LOCAL_FULFILLMENT_DELAY", 0.0),
            local_fulfillment_window=timedelta(
                seconds=_env_int("VDRAW_LOCAL_FULFILLMENT_SECONDS", 5)
            ),
            certified_fulfillment_window=timedelta(
                seconds=_env_int("VDRAW_CERTIFIED_FULFILLMENT_SECONDS", 120)
            ),
            credit_max_attempts=_env_int("VDRAW_CREDIT_MAX_ATTEMPTS", 3),
            anchor_max_attempts=_env_int("VDRAW_ANCHOR_MAX_ATTEMPTS", 5),
            retry_base_delay=_env_float("VDRAW_RETRY_BASE_DELAY", 0.5),
            anchor_leaf_preview=_env_int("VDRAW_ANCHOR_LEAF_PREVIEW", 10),
            chain_fqdn=os.getenv("BLOCKCHAIN_BASE_FQDN") or None,
        )


__all__ = ["DrawEngineSettings"]

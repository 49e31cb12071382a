import os
from urllib.parse import urljoin
from dotenv import load_dotenv
from .utils import open_session, get_jwt_token
from typing import Any, Optional, Mapping, Sequence


class ChainClient:
    """Client for the chain gateway that fronts the VRF oracle and anchoring.

    The gateway owns the oracle's cryptography; this client only submits
    requests and reads back receipts.
    """

    def __init__(self, base_fqdn: Optional[str] = None, timeout: int = 45):
        load_dotenv()
        fqdn = base_fqdn or os.getenv("BLOCKCHAIN_BASE_FQDN")
        if not fqdn:
            raise ValueError("Environment variable 'BLOCKCHAIN_BASE_FQDN' is not set")

        self.base_url = f"https://{fqdn}".rstrip("/")
        session_info = open_session(fqdn)
        if not session_info or len(session_info) != 2:
            raise ValueError("open_session() must return (session, csrf_token)")
        self.session, self.csrf = session_info
        self.jwt = get_jwt_token(self.session, fqdn)
        self.timeout = timeout

    # -------- headers --------
    @property
    def public_headers(self) -> Mapping[str, str]:
        return {"Accept": "application/json"}

    @property
    def auth_headers(self) -> Mapping[str, str]:
        return {"Accept": "application/json", "Authorization": f"Bearer {self.jwt}"}

    @property
    def auth_csrf_headers(self) -> Mapping[str, str]:
        return {**self.auth_headers, "X-CSRFTOKEN": self.csrf}

    # -------- core request --------
    def _request(
        self,
        method: str,
        path: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
        return_in_json: bool = True,
    ) -> Any:
        url = urljoin(self.base_url + "/", path.lstrip("/"))
        r = self.session.request(
            method=method.upper(),
            url=url,
            headers=headers or self.public_headers,
            params=params,
            json=json,
            timeout=self.timeout,
        )
        r.raise_for_status()
        if not return_in_json:
            return r.content
        return r.json() if r.content else None

    # -------- oracle --------
    def request_randomness(self, draw_id: int, num_words: int) -> dict:
        """Submit a VRF request and return its on-chain receipt.

        The receipt carries ``request_id``, ``transaction_hash``,
        ``block_number`` and ``oracle_address``.
        """
        return self._request(
            "POST",
            "/api/v1/vrf/requests",
            json={"draw_id": draw_id, "num_words": num_words},
            headers=self.auth_csrf_headers,
        )

    def get_randomness_fulfillment(self, request_id: str) -> dict:
        """Poll a VRF request; ``status`` is pending, fulfilled or failed."""
        return self._request(
            "GET",
            f"/api/v1/vrf/requests/{request_id}",
            headers=self.auth_headers,
        )

    def get_transaction_receipt(self, transaction_hash: str) -> Optional[dict]:
        return self._request(
            "GET",
            f"/api/v1/transactions/{transaction_hash}/receipt",
            headers=self.auth_headers,
        )

    # -------- anchoring --------
    def anchor_merkle_root(self, merkle_root: str, leaf_hashes: Sequence[str]) -> dict:
        """Publish a Merkle root (and a preview of its leaves) on-chain."""
        return self._request(
            "POST",
            "/api/v1/anchors",
            json={"merkle_root": merkle_root, "ticket_hashes": list(leaf_hashes)},
            headers=self.auth_csrf_headers,
        )

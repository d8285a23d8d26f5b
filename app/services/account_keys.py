"""
Account Key Resolution

Flow accounts can hold several keys, identified by index, any of which may be
revoked. A wallet signature is made with one of them, and the login request does
not say which. This module asks the Flow access node for the account's key list
and turns it into verification candidates.

Lookup failures are soft: primary_key() returns None and all_active_keys()
returns [] so the caller can fall back to the default key index instead of
failing the login. Keys are fetched per call and never cached, since they can be
rotated between requests.
"""

import logging
from typing import Any, Dict, List, Optional, Protocol

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from app.core.auth_types import AccountKey, FlowAccount
from app.core.config import settings
from app.core.errors import AccountLookupError

logger = logging.getLogger(__name__)

ACCESS_NODES = {
    "mainnet": "https://rest-mainnet.onflow.org",
    "testnet": "https://rest-testnet.onflow.org",
}


class AccountDirectory(Protocol):
    def get_account(self, address: str) -> FlowAccount:
        ...


def _parse_key(raw: Dict[str, Any]) -> AccountKey:
    return AccountKey(
        index=int(raw["index"]),
        public_key=str(raw["public_key"]),
        revoked=bool(raw.get("revoked", False)),
        signing_algorithm=str(raw.get("signing_algorithm", "ECDSA_P256")),
        hashing_algorithm=str(raw.get("hashing_algorithm", "SHA3_256")),
        weight=int(raw.get("weight", 0)),
    )


class FlowAccessClient:
    """Minimal client for the Flow Access REST API (accounts endpoint only)."""

    def __init__(
        self,
        access_node: Optional[str] = settings.FLOW_ACCESS_NODE,
        timeout: float = settings.FLOW_REQUEST_TIMEOUT_SECONDS,
        retries: int = settings.FLOW_REQUEST_RETRIES,
        session: Optional[requests.Session] = None,
        network: str = settings.FLOW_NETWORK,
    ) -> None:
        if not access_node:
            if network not in ACCESS_NODES:
                raise ValueError(f"unknown Flow network: {network}")
            access_node = ACCESS_NODES[network]
        self.base_url = access_node.rstrip("/")
        self.timeout = timeout
        if session is None:
            session = requests.Session()
            retry = Retry(
                total=retries,
                backoff_factor=0.2,
                status_forcelist=(429, 502, 503, 504),
                allowed_methods=("GET",),
            )
            session.mount("https://", HTTPAdapter(max_retries=retry))
            session.mount("http://", HTTPAdapter(max_retries=retry))
        self.session = session

    def get_account(self, address: str) -> FlowAccount:
        """
        Fetch an account with its keys.

        Raises:
            AccountLookupError: on network errors, timeouts, non-200 responses
                or a payload that does not look like an account
        """
        url = f"{self.base_url}/v1/accounts/{address.removeprefix('0x')}"
        try:
            response = self.session.get(url, params={"expand": "keys"}, timeout=self.timeout)
        except requests.RequestException as exc:
            raise AccountLookupError(f"account lookup failed for {address}: {exc}") from exc

        if response.status_code != 200:
            raise AccountLookupError(
                f"account lookup failed for {address}: {response.status_code} {response.text[:200]}"
            )
        try:
            data = response.json()
            keys = [_parse_key(k) for k in data.get("keys") or []]
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise AccountLookupError(f"malformed account payload for {address}") from exc
        return FlowAccount(address=address, keys=keys)


class AccountKeyResolver:
    def __init__(self, directory: AccountDirectory) -> None:
        self.directory = directory

    def _active_keys(self, address: str) -> Optional[List[AccountKey]]:
        try:
            account = self.directory.get_account(address)
        except AccountLookupError as exc:
            logger.warning("key lookup degraded to fallback: %s", exc)
            return None
        active = [key for key in account.keys if not key.revoked]
        if not active:
            logger.warning("no active keys found for address %s", address)
        return active

    def primary_key(self, address: str) -> Optional[int]:
        """Index of the first non-revoked key in ledger order, or None."""
        active = self._active_keys(address)
        if not active:
            return None
        return active[0].index

    def all_active_keys(self, address: str) -> List[int]:
        """Indices of all non-revoked keys in ledger order ([] on failure)."""
        return [key.index for key in self._active_keys(address) or []]

"""Client for the token-state JSON-RPC service."""

from __future__ import annotations

import base64
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import requests

from tokenstate.ids import encode_id
from tokenstate.server import (
    JSONRPC_ENDPOINT,
    SERVER_ERROR,
    AssetNotFoundError,
    RPCError,
    TxNotFoundError,
)

_log = logging.getLogger(__name__)

_TX_NOT_FOUND = TxNotFoundError().message
_ASSET_NOT_FOUND = AssetNotFoundError().message


@dataclass(frozen=True)
class TxStatus:
    success: bool
    timestamp: int
    units: int = 0


@dataclass(frozen=True)
class AssetInfo:
    metadata: bytes
    supply: int
    owner: str
    warp: bool


class JSONRPCClient:
    """Queries a node's token-state endpoint."""

    def __init__(
        self,
        uri: str,
        chain_id: bytes,
        namespace: str,
        *,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
        poll_interval: float = 1.0,
        wait_timeout: Optional[float] = None,
    ) -> None:
        self.uri = uri.removesuffix("/") + JSONRPC_ENDPOINT
        self.chain_id = bytes(chain_id)
        self.namespace = namespace
        self.poll_interval = poll_interval
        self.wait_timeout = wait_timeout
        self._session = session or requests.Session()
        self._timeout = timeout
        self._ids = itertools.count(1)
        self._genesis: Any = None

    def _request(self, method: str, params: Optional[dict]) -> dict:
        payload = {
            "jsonrpc": "2.0",
            "method": f"{self.namespace}.{method}",
            "params": params,
            "id": next(self._ids),
        }
        response = self._session.post(self.uri, json=payload, timeout=self._timeout)
        if response.status_code != 200:
            raise RPCError(f"received status code: {response.status_code}")
        reply = response.json()
        error = reply.get("error")
        if error:
            raise RPCError(str(error.get("message", "")), error.get("code", SERVER_ERROR))
        return reply.get("result") or {}

    def genesis(self) -> Any:
        """Return the chain's genesis, fetched once and then cached."""
        if self._genesis is None:
            self._genesis = self._request("genesis", None).get("genesis")
        return self._genesis

    def tx(self, tx_id: bytes) -> Optional[TxStatus]:
        """Return a transaction's outcome, or None if the node does not know it."""
        try:
            result = self._request("tx", {"txId": encode_id(tx_id)})
        except RPCError as exc:
            if _TX_NOT_FOUND in exc.message:
                return None
            raise
        return TxStatus(
            success=bool(result.get("success")),
            timestamp=int(result.get("timestamp", 0)),
            units=int(result.get("units", 0)),
        )

    def asset(self, asset: bytes) -> Optional[AssetInfo]:
        """Return an asset's details, or None if it does not exist."""
        try:
            result = self._request("asset", {"asset": encode_id(asset)})
        except RPCError as exc:
            if _ASSET_NOT_FOUND in exc.message:
                return None
            raise
        metadata = result.get("metadata")
        return AssetInfo(
            metadata=base64.b64decode(metadata) if metadata else b"",
            supply=int(result.get("supply", 0)),
            owner=str(result.get("owner", "")),
            warp=bool(result.get("warp")),
        )

    def balance(self, address: str, asset: bytes) -> int:
        result = self._request("balance", {"address": address, "asset": encode_id(asset)})
        return int(result.get("amount", 0))

    def orders(self, pair: str) -> list:
        result = self._request("orders", {"pair": pair})
        return list(result.get("orders") or [])

    def loan(self, asset: bytes, destination: bytes) -> int:
        result = self._request(
            "loan", {"asset": encode_id(asset), "destination": encode_id(destination)}
        )
        return int(result.get("amount", 0))

    def _wait(self, check: Callable[[], bool]) -> None:
        timeout = self.wait_timeout
        deadline = None if timeout is None else time.monotonic() + timeout
        while not check():
            if deadline is not None and time.monotonic() >= deadline:
                raise TimeoutError("condition not met before the deadline")
            time.sleep(self.poll_interval)

    def wait_for_balance(self, address: str, asset: bytes, minimum: int) -> None:
        """Poll until the balance of an address reaches at least ``minimum``."""

        def reached() -> bool:
            if self.balance(address, asset) >= minimum:
                return True
            _log.info("waiting for %d balance: %s", minimum, address)
            return False

        self._wait(reached)

    def wait_for_transaction(self, tx_id: bytes) -> bool:
        """Poll until a transaction is known and return whether it succeeded."""
        found: list[TxStatus] = []

        def known() -> bool:
            status = self.tx(tx_id)
            if status is None:
                return False
            found.append(status)
            return True

        self._wait(known)
        return found[-1].success
"""JSON-RPC ledger gateway over HTTP.

Minimal client for a node exposing the four gateway calls as JSON-RPC 2.0
methods:

- ``submit_transaction`` ``{"envelope": <envelope dict>}`` -> receipt
- ``get_transaction`` ``{"tx_hash": ...}`` -> receipt
- ``get_account_state`` ``{"account_id": ...}`` -> account state
- ``get_contract_state`` ``{"address": ...}`` -> contract state

Requests are blocking (urllib) and run in a worker thread so the event loop
stays free while a node is slow. Transport failures are LedgerError
(retryable for reads; for submissions, query before resubmitting). Replies
that are not JSON-RPC are MalformedResponse.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import threading
import urllib.error
import urllib.request
from typing import Any, Dict, Optional

from .config import TrialConfig
from .envelope import TransactionEnvelope
from .errors import LedgerError, MalformedResponse
from .responses import AccountState, ContractState, Receipt, parse_model, parse_receipt

logger = logging.getLogger("trial_accounts")


class JsonRpcLedgerGateway:
    """LedgerGateway backed by a JSON-RPC node."""

    def __init__(self, rpc_url: str, *, network_id: str = "testnet", timeout_s: float = 10.0, api_key: Optional[str] = None):
        if not rpc_url:
            raise ValueError("rpc_url must be non-empty")
        self.rpc_url = rpc_url.rstrip("/")
        self.network_id = network_id
        self.timeout_s = float(timeout_s)
        self.api_key = api_key
        self._ids = itertools.count(1)
        self._ids_lock = threading.Lock()

    def _headers(self) -> Dict[str, str]:
        h: Dict[str, str] = {"Content-Type": "application/json"}
        if self.api_key:
            h["X-Api-Key"] = self.api_key
        return h

    def _next_id(self) -> int:
        with self._ids_lock:
            return next(self._ids)

    def _call(self, method: str, params: Dict[str, Any]) -> Any:
        req_id = self._next_id()
        payload = {"jsonrpc": "2.0", "id": req_id, "method": method, "params": params}
        data = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        req = urllib.request.Request(self.rpc_url, data=data, headers=self._headers(), method="POST")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_s) as resp:
                raw = resp.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace")
            raise LedgerError(f"{method}: HTTP {e.code}", method=method, http_status=int(e.code), body=body[:512]) from e
        except (urllib.error.URLError, OSError) as e:
            raise LedgerError(f"{method}: {e}", method=method, rpc_url=self.rpc_url) from e

        try:
            reply = json.loads(raw)
        except ValueError as e:
            raise MalformedResponse(f"{method}: reply is not JSON", method=method) from e
        if not isinstance(reply, dict) or reply.get("id") != req_id:
            raise MalformedResponse(f"{method}: reply is not a JSON-RPC response for request {req_id}", method=method)

        err = reply.get("error")
        if err is not None:
            if not isinstance(err, dict):
                raise MalformedResponse(f"{method}: invalid error object", method=method)
            raise LedgerError(
                f"{method}: {err.get('message', 'rpc error')}",
                method=method,
                rpc_code=err.get("code"),
                data=err.get("data"),
            )
        if "result" not in reply:
            raise MalformedResponse(f"{method}: reply has neither result nor error", method=method)
        return reply["result"]

    async def _acall(self, method: str, params: Dict[str, Any]) -> Any:
        return await asyncio.to_thread(self._call, method, params)

    async def submit_transaction(self, envelope: TransactionEnvelope) -> Receipt:
        if envelope.body.network_id and envelope.body.network_id != self.network_id:
            raise ValueError(
                f"envelope is for network {envelope.body.network_id!r}, gateway is {self.network_id!r}"
            )
        logger.debug("submit signer=%s nonce=%s hash=%s", envelope.signer_id, envelope.nonce, envelope.content_hash)
        return parse_receipt(await self._acall("submit_transaction", {"envelope": envelope.to_dict()}))

    async def get_transaction(self, tx_hash: str) -> Receipt:
        return parse_receipt(await self._acall("get_transaction", {"tx_hash": tx_hash}))

    async def get_account_state(self, account_id: str) -> AccountState:
        return parse_model(AccountState, await self._acall("get_account_state", {"account_id": account_id}))

    async def get_contract_state(self, address: str) -> ContractState:
        return parse_model(ContractState, await self._acall("get_contract_state", {"address": address}))


def connect(config: Optional[TrialConfig] = None, *, api_key: Optional[str] = None) -> JsonRpcLedgerGateway:
    """Return a gateway for ``config.rpc_url`` / ``config.network_id``."""
    config = config or TrialConfig.from_env()
    logger.info("connecting to %s (%s)", config.rpc_url, config.network_id)
    return JsonRpcLedgerGateway(
        config.rpc_url,
        network_id=config.network_id,
        timeout_s=config.rpc_timeout_seconds,
        api_key=api_key,
    )

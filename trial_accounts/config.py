"""Runtime configuration.

Environment variables:
- TRIAL_RPC_URL: ledger JSON-RPC endpoint.
- TRIAL_NETWORK_ID: network id bound into every signed transaction.
- TRIAL_OWNER_ID: funding/owner account that deploys and registers.
- TRIAL_BATCH_SIZE: max accounts per registration transaction.
- TRIAL_BATCH_PAYLOAD_BYTES: max serialized args per registration transaction.
- TRIAL_MAX_CONCURRENCY: chunks/activations in flight at once.
- TRIAL_BROADCAST_TIMEOUT_SECONDS: default wait for finality.
- TRIAL_POLL_INTERVAL_SECONDS: finality polling interval.
- TRIAL_RPC_TIMEOUT_SECONDS: per-request HTTP timeout.
- TRIAL_DEFAULT_GAS: gas attached to lifecycle contract calls.
"""

from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class TrialConfig:
    rpc_url: str = "http://127.0.0.1:3030"
    network_id: str = "testnet"
    owner_id: str = ""
    batch_size: int = 50
    batch_payload_bytes: int = 32 * 1024
    max_concurrency: int = 4
    broadcast_timeout_seconds: float = 30.0
    poll_interval_seconds: float = 0.5
    rpc_timeout_seconds: float = 10.0
    default_gas: int = 30_000_000_000_000

    @classmethod
    def from_env(cls) -> "TrialConfig":
        def _get_str(name: str, default: str) -> str:
            v = (os.getenv(name, "") or "").strip()
            return v or default

        def _get_int(name: str, default: int) -> int:
            try:
                return int(os.getenv(name, str(default)).strip())
            except ValueError:
                return default

        def _get_float(name: str, default: float) -> float:
            try:
                return float(os.getenv(name, str(default)).strip())
            except ValueError:
                return default

        batch_size = _get_int("TRIAL_BATCH_SIZE", cls.batch_size)
        payload = _get_int("TRIAL_BATCH_PAYLOAD_BYTES", cls.batch_payload_bytes)
        concurrency = _get_int("TRIAL_MAX_CONCURRENCY", cls.max_concurrency)
        timeout = _get_float("TRIAL_BROADCAST_TIMEOUT_SECONDS", cls.broadcast_timeout_seconds)
        poll = _get_float("TRIAL_POLL_INTERVAL_SECONDS", cls.poll_interval_seconds)
        rpc_timeout = _get_float("TRIAL_RPC_TIMEOUT_SECONDS", cls.rpc_timeout_seconds)
        gas = _get_int("TRIAL_DEFAULT_GAS", cls.default_gas)

        # Clamp
        if batch_size < 1:
            batch_size = cls.batch_size
        if payload < 512:
            payload = cls.batch_payload_bytes
        concurrency = max(1, min(concurrency, 64))
        if timeout <= 0:
            timeout = cls.broadcast_timeout_seconds
        if poll <= 0:
            poll = cls.poll_interval_seconds
        if rpc_timeout <= 0:
            rpc_timeout = cls.rpc_timeout_seconds
        if gas <= 0:
            gas = cls.default_gas

        return cls(
            rpc_url=_get_str("TRIAL_RPC_URL", cls.rpc_url),
            network_id=_get_str("TRIAL_NETWORK_ID", cls.network_id),
            owner_id=_get_str("TRIAL_OWNER_ID", cls.owner_id),
            batch_size=batch_size,
            batch_payload_bytes=payload,
            max_concurrency=concurrency,
            broadcast_timeout_seconds=timeout,
            poll_interval_seconds=poll,
            rpc_timeout_seconds=rpc_timeout,
            default_gas=gas,
        )

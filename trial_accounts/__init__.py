"""Trial Accounts package.

Provision short-lived, capability-limited ledger accounts from one owner
account:

- Deploy the controlling contract (idempotent by code hash)
- Create trials (action allowlist, per-account cap, expiry)
- Register trial account keys in chunks, then activate them
- Sign and broadcast actions within each account's remaining capability

Convenience imports
------------------
These are available as top-level imports and are loaded lazily:

    from trial_accounts import TrialAccounts, TrialContext, TrialConfig, connect

Error types live in ``trial_accounts.errors``; the most common are
re-exported here as well.
"""

from __future__ import annotations

import re
from importlib import import_module
from pathlib import Path
from typing import Any


def _read_version_from_pyproject() -> str | None:
    """Best-effort version discovery for dev/test environments."""

    try:
        pyproject = Path(__file__).resolve().parents[1] / "pyproject.toml"
        txt = pyproject.read_text(encoding="utf-8")
        m = re.search(r"^version\s*=\s*\"([^\"]+)\"\s*$", txt, flags=re.MULTILINE)
        return m.group(1) if m else None
    except Exception:
        return None


__version__ = _read_version_from_pyproject() or "0.1.0"

# Lazy export map: name -> (module, attribute)
_LAZY_EXPORTS: dict[str, tuple[str, str]] = {
    "TrialAccounts": ("trial_accounts.client", "TrialAccounts"),
    "TrialContext": ("trial_accounts.context", "TrialContext"),
    "TrialConfig": ("trial_accounts.config", "TrialConfig"),
    "connect": ("trial_accounts.rpc", "connect"),
    "JsonRpcLedgerGateway": ("trial_accounts.rpc", "JsonRpcLedgerGateway"),
    "LedgerGateway": ("trial_accounts.ledger", "LedgerGateway"),
    "NearAction": ("trial_accounts.models", "NearAction"),
    "EvmAction": ("trial_accounts.models", "EvmAction"),
    "transfer": ("trial_accounts.models", "transfer"),
    "AccountStatus": ("trial_accounts.models", "AccountStatus"),
    "TrialError": ("trial_accounts.errors", "TrialError"),
    "CapacityExceeded": ("trial_accounts.errors", "CapacityExceeded"),
    "PartialBatchFailure": ("trial_accounts.errors", "PartialBatchFailure"),
}

__all__ = ["__version__", *_LAZY_EXPORTS]


def __getattr__(name: str) -> Any:
    if name in _LAZY_EXPORTS:
        module_name, attr = _LAZY_EXPORTS[name]
        value = getattr(import_module(module_name), attr)
        globals()[name] = value
        return value
    raise AttributeError(f"module 'trial_accounts' has no attribute {name!r}")


def __dir__() -> list[str]:
    return sorted(set(list(globals().keys()) + list(_LAZY_EXPORTS.keys())))

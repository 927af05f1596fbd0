"""Trial Registrar: defines a trial inside the deployed contract."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Union

from .context import TrialContext
from .crypto import _now_utc
from .errors import InvalidTrialSpec
from .models import Trial
from .ops_stats import OPS_STATS
from .responses import TrialCreated, parse_result

logger = logging.getLogger("trial_accounts")

Expiry = Union[datetime, timedelta, None]


def _resolve_expiry(expiry: Expiry) -> Optional[datetime]:
    if expiry is None:
        return None
    if isinstance(expiry, timedelta):
        if expiry <= timedelta(0):
            raise InvalidTrialSpec("expiry must be in the future", expiry=str(expiry))
        return _now_utc() + expiry
    if isinstance(expiry, datetime):
        dt = expiry if expiry.tzinfo else expiry.replace(tzinfo=timezone.utc)
        if dt <= _now_utc():
            raise InvalidTrialSpec("expiry must be in the future", expiry=dt.isoformat())
        return dt.astimezone(timezone.utc)
    raise InvalidTrialSpec(f"unsupported expiry type {type(expiry).__name__}")


def _positive_or_none(name: str, value: Optional[int]) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidTrialSpec(f"{name} must be a positive integer", **{name: value})
    return value


class TrialRegistrar:
    def __init__(self, ctx: TrialContext):
        self.ctx = ctx

    async def create_trial(
        self,
        contract_id: str,
        allowed_actions: Iterable[str],
        per_account_cap: int,
        expiry: Expiry = None,
        *,
        allowed_contracts: Iterable[str] = (),
        max_gas: Optional[int] = None,
        max_deposit: Optional[int] = None,
        transaction_limit: Optional[int] = None,
        chain_id: int = 0,
        timeout: Optional[float] = None,
    ) -> str:
        """Create a trial and return the id assigned by the contract."""
        if isinstance(allowed_actions, (str, bytes)):
            raise InvalidTrialSpec("allowed_actions must be a collection of method names, not a string")
        allowed_actions = list(allowed_actions or ())
        if any(not isinstance(a, str) for a in allowed_actions):
            raise InvalidTrialSpec("allowed_actions entries must be strings")
        actions = sorted({a.strip() for a in allowed_actions if a.strip()})
        if not actions:
            raise InvalidTrialSpec("allowed_actions must be non-empty")
        if isinstance(per_account_cap, bool) or not isinstance(per_account_cap, int) or per_account_cap <= 0:
            raise InvalidTrialSpec("per_account_cap must be > 0", per_account_cap=per_account_cap)
        if not contract_id:
            raise InvalidTrialSpec("contract_id must be non-empty")
        expires_at = _resolve_expiry(expiry)
        max_gas = _positive_or_none("max_gas", max_gas)
        max_deposit = _positive_or_none("max_deposit", max_deposit)
        transaction_limit = _positive_or_none("transaction_limit", transaction_limit)
        if isinstance(allowed_contracts, (str, bytes)):
            raise InvalidTrialSpec("allowed_contracts must be a collection of contract ids, not a string")
        contracts = sorted({str(c) for c in allowed_contracts})

        args = {
            "allowed_methods": actions,
            "allowed_contracts": contracts,
            "per_account_cap": str(per_account_cap),
            "max_gas": str(max_gas) if max_gas is not None else None,
            "max_deposit": str(max_deposit) if max_deposit is not None else None,
            # Nanoseconds since epoch, matching ledger block timestamps.
            "expiration_time": str(int(expires_at.timestamp() * 1_000_000_000)) if expires_at else None,
            "exit_conditions": {"transaction_limit": transaction_limit} if transaction_limit else None,
            "chain_id": int(chain_id),
        }

        await self.ctx.ensure_nonce_seeded(self.ctx.owner_id)
        envelope = self.ctx.sign_owner_call(contract_id, "create_trial", args)
        receipt = await self.ctx.broadcaster.broadcast(envelope, timeout=timeout)
        # Ids are assigned by the contract; never assume they are sequential.
        created = parse_result(receipt, TrialCreated)

        self.ctx.registry.add_trial(Trial(
            trial_id=created.trial_id,
            owner_id=self.ctx.owner_id,
            contract_id=contract_id,
            allowed_methods=frozenset(actions),
            per_account_cap=per_account_cap,
            expires_at=expires_at,
            allowed_contracts=frozenset(contracts),
            max_gas=max_gas,
            max_deposit=max_deposit,
            transaction_limit=transaction_limit,
            chain_id=int(chain_id),
        ))
        OPS_STATS.record_trial_created()
        logger.info("created trial %s on %s tx=%s", created.trial_id, contract_id, receipt.tx_hash)
        return created.trial_id

"""Activator: move provisioned accounts from ``registered`` to ``active``.

Each account is activated by its own transaction, signed with the account's
trial key (proving possession). Results are reported per account; one failure
never fails the batch. Activating an already-active account is a success.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Sequence

from .context import TrialContext
from .errors import AlreadyActive, NotRegistered, TransactionFailed, TrialError, TrialExpired
from .models import AccountStatus, ActivationResult, Trial
from .ops_stats import OPS_STATS
from .responses import AccountActivated, parse_result

logger = logging.getLogger("trial_accounts")


class Activator:
    def __init__(self, ctx: TrialContext):
        self.ctx = ctx

    async def activate_trial_accounts(
        self,
        trial_id: str,
        account_ids: Sequence[str],
        *,
        timeout: Optional[float] = None,
    ) -> List[ActivationResult]:
        trial = self.ctx.registry.trial(trial_id)
        unique = list(dict.fromkeys(account_ids))
        sem = asyncio.Semaphore(self.ctx.config.max_concurrency)

        async def _run(account_id: str) -> ActivationResult:
            async with sem:
                return await self._activate_one(trial, account_id, timeout)

        done = await asyncio.gather(*(_run(a) for a in unique))
        by_id: Dict[str, ActivationResult] = dict(zip(unique, done))

        for r in done:
            if r.ok:
                OPS_STATS.record_activation("already_active" if isinstance(r.error, AlreadyActive) else "activated")
            else:
                OPS_STATS.record_activation(r.error.code if r.error else "error")
        failed = [r.account_id for r in done if not r.ok]
        if failed:
            logger.warning("trial %s: %d of %d activations failed: %s", trial_id, len(failed), len(unique), failed)
        return [by_id[a] for a in account_ids]

    async def _activate_one(self, trial: Trial, account_id: str, timeout: Optional[float]) -> ActivationResult:
        acct = self.ctx.registry.find(account_id)
        if acct is None or acct.trial_id != trial.trial_id:
            return ActivationResult(
                account_id, ok=False,
                error=NotRegistered(f"{account_id} is not registered under trial {trial.trial_id}",
                                    account_id=account_id, trial_id=trial.trial_id),
            )
        if acct.status is AccountStatus.ACTIVE:
            return ActivationResult(
                account_id, ok=True, status=AccountStatus.ACTIVE,
                error=AlreadyActive(f"{account_id} is already active", account_id=account_id),
            )
        if acct.status is not AccountStatus.REGISTERED:
            return ActivationResult(
                account_id, ok=False, status=acct.status,
                error=NotRegistered(f"{account_id} is {acct.status.value}", account_id=account_id,
                                    status=acct.status.value),
            )
        if trial.is_expired():
            return ActivationResult(
                account_id, ok=False, status=acct.status,
                error=TrialExpired(f"trial {trial.trial_id} has expired", trial_id=trial.trial_id),
            )

        envelope = self.ctx.sign_call(
            account_id,
            self.ctx.keys.signer_for(account_id),
            trial.contract_id,
            "activate_trial",
            {"trial_id": trial.trial_id, "account_id": account_id},
        )
        try:
            receipt = await self.ctx.broadcaster.broadcast(envelope, timeout=timeout)
            activated = parse_result(receipt, AccountActivated)
        except TransactionFailed as e:
            if "already active" in e.message.lower():
                self.ctx.registry.transition(account_id, AccountStatus.ACTIVE)
                return ActivationResult(
                    account_id, ok=True, status=AccountStatus.ACTIVE,
                    tx_hash=e.details.get("tx_hash"),
                    error=AlreadyActive(e.message, account_id=account_id),
                )
            return ActivationResult(account_id, ok=False, status=acct.status, error=e)
        except TrialError as e:
            return ActivationResult(account_id, ok=False, status=acct.status, error=e)

        if activated.account_id != account_id:
            return ActivationResult(
                account_id, ok=False, status=acct.status, tx_hash=receipt.tx_hash,
                error=TransactionFailed("contract activated a different account", tx_hash=receipt.tx_hash,
                                        got=activated.account_id),
            )
        updated = self.ctx.registry.transition(account_id, AccountStatus.ACTIVE)
        logger.info("activated %s tx=%s", account_id, receipt.tx_hash)
        return ActivationResult(account_id, ok=True, status=updated.status, tx_hash=receipt.tx_hash)

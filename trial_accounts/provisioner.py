"""
Account Provisioner: generate trial keys and register them in chunks.

Batching policy
---------------
- Accounts are split into chunks bounded by ``config.batch_size`` and by the
  serialized size of their registration args (``config.batch_payload_bytes``).
- Each chunk is one ``add_trial_accounts`` transaction signed by the owner.
- Chunks are dispatched concurrently (``config.max_concurrency``).
- A failed chunk never rolls back committed chunks and is never retried here:
  re-registering risks duplicate accounts. Its keys are discarded and its
  indices are reported so the caller can resubmit them explicitly.
- A chunk whose outcome is unknown (timeout, duplicate nonce) keeps its keys
  unbound and is flagged ``ambiguous``; ``reconcile`` settles it from ledger
  state.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .context import TrialContext
from .crypto import canonical_json_dumps
from .errors import (
    DuplicateSubmission, InvalidTrialSpec, LedgerError, MalformedResponse,
    Timeout, TrialError, TrialExpired,
)
from .models import ChunkFailure, ProvisionedAccount, ProvisioningResult, Trial
from .ops_stats import OPS_STATS
from .responses import AccountsAdded, parse_result

logger = logging.getLogger("trial_accounts")

# Bytes of framing around the entries list in a registration call.
_CHUNK_OVERHEAD_BYTES = 256


@dataclass(frozen=True)
class _Entry:
    index: int
    account_id: str
    public_key: str

    def to_arg(self) -> dict:
        return {"account_id": self.account_id, "public_key": self.public_key}


def plan_chunks(entries: Sequence[_Entry], max_items: int, max_bytes: int) -> List[List[_Entry]]:
    """Split entries into ordered chunks within item and payload limits."""
    chunks: List[List[_Entry]] = []
    current: List[_Entry] = []
    size = _CHUNK_OVERHEAD_BYTES
    for e in entries:
        e_size = len(canonical_json_dumps(e.to_arg()).encode("utf-8")) + 1
        if current and (len(current) >= max_items or size + e_size > max_bytes):
            chunks.append(current)
            current, size = [], _CHUNK_OVERHEAD_BYTES
        current.append(e)
        size += e_size
    if current:
        chunks.append(current)
    return chunks


def new_account_id(trial: Trial) -> str:
    return f"t{secrets.token_hex(6)}.{trial.contract_id}"


class AccountProvisioner:
    def __init__(self, ctx: TrialContext):
        self.ctx = ctx

    async def add_trial_accounts(
        self,
        trial_id: str,
        count: int,
        *,
        account_ids: Optional[Sequence[str]] = None,
        timeout: Optional[float] = None,
    ) -> ProvisioningResult:
        """Provision ``count`` accounts under ``trial_id``.

        Returns the accounts actually registered plus per-chunk failures.
        ``len(result.accounts) + len(result.failed_indices) == count``.
        """
        if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
            raise InvalidTrialSpec("count must be a positive integer", count=count)
        if account_ids is not None and len(account_ids) != count:
            raise InvalidTrialSpec("account_ids must have exactly count entries", count=count)

        trial = self.ctx.registry.trial(trial_id)
        if trial.is_expired():
            raise TrialExpired(f"trial {trial_id} has expired", trial_id=trial_id)

        ids = list(account_ids) if account_ids is not None else [new_account_id(trial) for _ in range(count)]
        self._check_ids(ids)
        entries = []
        try:
            for i, account_id in enumerate(ids):
                key = self.ctx.keys.generate(trial_id, account_id)
                entries.append(_Entry(i, account_id, key.public_key))
        except BaseException:
            for e in entries:
                self.ctx.keys.discard(e.account_id)
            raise

        chunks = plan_chunks(entries, self.ctx.config.batch_size, self.ctx.config.batch_payload_bytes)
        logger.info("provisioning %d accounts for trial %s in %d chunks", count, trial_id, len(chunks))

        await self.ctx.ensure_nonce_seeded(self.ctx.owner_id)
        # Sign in chunk order so owner nonces follow submission order.
        envelopes = [
            self.ctx.sign_owner_call(
                trial.contract_id,
                "add_trial_accounts",
                {"trial_id": trial_id, "keys": [e.to_arg() for e in chunk]},
            )
            for chunk in chunks
        ]

        sem = asyncio.Semaphore(self.ctx.config.max_concurrency)

        async def _run(n: int) -> Optional[ChunkFailure]:
            async with sem:
                return await self._register_chunk(n, trial, chunks[n], envelopes[n], timeout)

        outcomes = await asyncio.gather(*(_run(n) for n in range(len(chunks))))

        result = ProvisioningResult(trial_id=trial_id, requested=count)
        for n, failure in enumerate(outcomes):
            if failure is None:
                for e in chunks[n]:
                    result.accounts.append(self.ctx.registry.get(e.account_id))
            else:
                result.failures.append(failure)
        order = {account_id: i for i, account_id in enumerate(ids)}
        result.accounts.sort(key=lambda a: order[a.account_id])

        OPS_STATS.record_provisioning(len(result.accounts), len(result.failed_indices))
        if result.failures:
            logger.warning(
                "trial %s: %d of %d accounts not provisioned (indices %s)",
                trial_id, len(result.failed_indices), count, result.failed_indices,
            )
        return result

    def _check_ids(self, ids: Sequence[str]) -> None:
        seen = set()
        for account_id in ids:
            if not isinstance(account_id, str) or not account_id:
                raise InvalidTrialSpec("account ids must be non-empty strings", account_id=account_id)
            if account_id in seen:
                raise InvalidTrialSpec(f"duplicate account id {account_id}", account_id=account_id)
            seen.add(account_id)
            # Unbound keys from an ambiguous chunk are settled by reconcile().
            if account_id in self.ctx.keys:
                raise InvalidTrialSpec(f"a key already exists for {account_id}", account_id=account_id)

    async def _register_chunk(self, n, trial, chunk, envelope, timeout) -> Optional[ChunkFailure]:
        try:
            receipt = await self.ctx.broadcaster.broadcast(envelope, timeout=timeout)
            added = parse_result(receipt, AccountsAdded)
            expected = {e.account_id for e in chunk}
            if set(added.account_ids) != expected:
                raise MalformedResponse(
                    "contract registered a different set of accounts",
                    tx_hash=receipt.tx_hash,
                    expected=sorted(expected),
                    got=sorted(added.account_ids),
                )
        except (Timeout, DuplicateSubmission) as e:
            # The chunk may have landed; keep its keys until reconcile() decides.
            logger.warning("registration chunk %d outcome unknown: %s", n, e)
            return ChunkFailure(chunk=n, indices=[x.index for x in chunk], error=e, ambiguous=True)
        except TrialError as e:
            return self._fail_chunk(n, chunk, e)
        except Exception as e:
            return self._fail_chunk(n, chunk, LedgerError(f"chunk {n} submission failed: {e}", chunk=n))

        for e in chunk:
            self._record(trial.trial_id, e.account_id)
        return None

    def _record(self, trial_id: str, account_id: str) -> ProvisionedAccount:
        key = self.ctx.keys.bind(account_id)
        account = ProvisionedAccount(trial_id=trial_id, account_id=account_id, public_key=key.public_key)
        self.ctx.registry.add_account(account)
        # Fresh access key: nothing signed yet.
        self.ctx.nonces.seed(account_id, 0)
        return account

    def _fail_chunk(self, n: int, chunk: List[_Entry], error: TrialError) -> ChunkFailure:
        # Keys of unregistered accounts must not outlive the attempt.
        for e in chunk:
            self.ctx.keys.discard(e.account_id)
        logger.warning("registration chunk %d failed: %s", n, error)
        return ChunkFailure(chunk=n, indices=[e.index for e in chunk], error=error)

    async def reconcile(self, trial_id: str, account_ids: Sequence[str]) -> List[ProvisionedAccount]:
        """Resolve accounts from chunks whose outcome was unknown.

        Accounts the ledger reports as registered under ``trial_id`` are
        recorded locally; the keys of accounts it does not know are discarded.
        """
        found: List[ProvisionedAccount] = []
        for account_id in account_ids:
            key = self.ctx.keys.find(account_id)
            if key is None or key.bound:
                continue
            state = await self.ctx.account_state(account_id)
            if state.exists and state.trial_id == trial_id and state.status is not None:
                found.append(self._record(trial_id, account_id))
            else:
                self.ctx.keys.discard(account_id)
        if found:
            OPS_STATS.record_provisioning(len(found), 0)
        return found

"""
Action Executor: authorize, reserve, sign and broadcast trial account actions.

``perform_actions`` is the only place a trial key signs an action, and it
refuses before any signing or nonce allocation unless:

1) the account is ``active``
2) its trial has not expired (local view)
3) every action's method and target contract are allowed by the trial
4) every action fits the remaining capability (reserved atomically)

A call is all-or-nothing: if any action is rejected, the reservations made
for earlier actions in the same call are released and nothing is signed.
Args are checked for canonical encoding before anything is reserved; if
signing still fails partway, every reservation of the call is released and
no envelope is returned.

``broadcast_transaction`` settles a reservation when the action lands and
releases it when the ledger definitively rejects it. Any other outcome
(timeout, duplicate nonce, transport error) keeps it until ``sync_account``
reads ledger state and rebuilds usage as on-chain usage plus the
reservations still open.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union

from .budget import AccountBudget, Reservation, UsageStats
from .context import TrialContext
from .crypto import canonical_json_dumps
from .envelope import TransactionEnvelope
from .errors import (
    AccountNotActive, ActionNotAllowed, CapacityExceeded, InvalidTransition,
    MalformedResponse, TransactionFailed, TrialExpired,
)
from .models import AccountStatus, Action, ActionRequest, EvmAction, NearAction, ProvisionedAccount, Trial
from .ops_stats import OPS_STATS
from .responses import ActionPerformed, Receipt, parse_result

logger = logging.getLogger("trial_accounts")


def _as_list(actions: Union[Action, Sequence[Action]]) -> List[Action]:
    if isinstance(actions, (NearAction, EvmAction)):
        return [actions]
    out = list(actions)
    for a in out:
        if not isinstance(a, (NearAction, EvmAction)):
            raise TypeError(f"unsupported action type: {type(a).__name__}")
    return out


class ActionExecutor:
    def __init__(self, ctx: TrialContext):
        self.ctx = ctx
        self._lock = threading.Lock()
        # envelope content_hash -> (request, open reservation)
        self._pending: Dict[str, Tuple[ActionRequest, Reservation]] = {}
        # content hashes with a broadcast in progress
        self._inflight: Set[str] = set()

    # ---------------------------
    # Authorization
    # ---------------------------

    def _authorize(self, account_id: str) -> Tuple[ProvisionedAccount, Trial]:
        account = self.ctx.registry.get(account_id)
        if account.status is not AccountStatus.ACTIVE:
            raise AccountNotActive(
                f"{account_id} is {account.status.value}; only active accounts may act",
                account_id=account_id,
                status=account.status.value,
            )
        trial = self.ctx.registry.trial(account.trial_id)
        if trial.is_expired():
            raise TrialExpired(f"trial {trial.trial_id} has expired", trial_id=trial.trial_id)
        return account, trial

    @staticmethod
    def _check_allowed(trial: Trial, action: Action) -> None:
        if not trial.allows_method(action.method_name):
            raise ActionNotAllowed(
                f"method {action.method_name!r} is not allowed by trial {trial.trial_id}",
                trial_id=trial.trial_id,
                method_name=action.method_name,
            )
        if not trial.allows_contract(action.target):
            raise ActionNotAllowed(
                f"contract {action.target!r} is not allowed by trial {trial.trial_id}",
                trial_id=trial.trial_id,
                contract=action.target,
            )

    # ---------------------------
    # Signing
    # ---------------------------

    def perform_actions(
        self,
        account_id: str,
        actions: Union[Action, Sequence[Action]],
    ) -> List[TransactionEnvelope]:
        """Authorize, reserve and sign ``actions`` for one active account."""
        items = _as_list(actions)
        if not items:
            return []
        _, trial = self._authorize(account_id)
        calls: List[Dict[str, Any]] = []
        for action in items:
            self._check_allowed(trial, action)
            args = {"trial_id": trial.trial_id, "action": action.to_call_args()}
            # Raises TypeError/ValueError for args that cannot be signed.
            canonical_json_dumps(args)
            calls.append(args)

        budget = AccountBudget.for_trial(trial)
        reservations: List[Reservation] = []
        try:
            for action in items:
                reservations.append(
                    self.ctx.usage.reserve(account_id, budget, spend=action.cost, gas=action.gas)
                )
        except CapacityExceeded:
            for r in reservations:
                self.ctx.usage.release(r)
            OPS_STATS.record_capacity_rejection()
            logger.info("capacity check rejected action for %s", account_id)
            raise

        envelopes: List[TransactionEnvelope] = []
        try:
            signer = self.ctx.keys.signer_for(account_id)
            for action, args, reservation in zip(items, calls, reservations):
                env = self.ctx.sign_call(account_id, signer, trial.contract_id, "perform_action", args)
                request = ActionRequest(trial.trial_id, account_id, action, env.nonce)
                with self._lock:
                    self._pending[env.content_hash] = (request, reservation)
                envelopes.append(env)
        except BaseException:
            # Envelopes signed so far are never returned; their nonces stay burned.
            with self._lock:
                for env in envelopes:
                    self._pending.pop(env.content_hash, None)
            for r in reservations:
                self.ctx.usage.release(r)
            logger.warning("signing failed for %s; released %d reservations", account_id, len(reservations))
            raise
        return envelopes

    def remaining_capacity(self, account_id: str) -> Optional[int]:
        """Remaining spend for the account, or None when the trial is uncapped."""
        account = self.ctx.registry.get(account_id)
        trial = self.ctx.registry.trial(account.trial_id)
        return self.ctx.usage.remaining(account_id, AccountBudget.for_trial(trial))

    # ---------------------------
    # Broadcast
    # ---------------------------

    def pending(self, account_id: str) -> List[ActionRequest]:
        """Signed actions whose outcome has not been observed, by nonce."""
        with self._lock:
            out = [req for req, _ in self._pending.values() if req.account_id == account_id]
        return sorted(out, key=lambda r: r.nonce)

    def _take(self, content_hash: str) -> Optional[Reservation]:
        with self._lock:
            entry = self._pending.pop(content_hash, None)
        return entry[1] if entry else None

    async def broadcast_transaction(self, envelope: TransactionEnvelope, timeout: Optional[float] = None) -> Receipt:
        """Submit a signed action and wait for finality.

        Raises Timeout or DuplicateSubmission when the outcome is unknown; the
        caller must check ledger state (``sync_account``) before resubmitting.
        """
        with self._lock:
            self._inflight.add(envelope.content_hash)
        try:
            receipt = await self.ctx.broadcaster.broadcast(envelope, timeout=timeout)
        except (TransactionFailed, CapacityExceeded) as e:
            reservation = self._take(envelope.content_hash)
            if reservation is not None:
                self.ctx.usage.release(reservation)
            if isinstance(e, CapacityExceeded):
                OPS_STATS.record_capacity_rejection()
            raise
        finally:
            with self._lock:
                self._inflight.discard(envelope.content_hash)

        reservation = self._take(envelope.content_hash)
        if reservation is not None:
            self.ctx.usage.settle(reservation)
        if envelope.body.method_name == "perform_action":
            try:
                performed = parse_result(receipt, ActionPerformed)
            except MalformedResponse:
                logger.warning("tx=%s landed with an unrecognized result", receipt.tx_hash)
                raise
            self.ctx.usage.sync(envelope.signer_id, UsageStats(**performed.usage.model_dump()))
        return receipt

    # ---------------------------
    # Ledger sync
    # ---------------------------

    def _resolve_pending(self, account_id: str, ledger_nonce: int, onchain: UsageStats) -> None:
        """Close open reservations against a ledger snapshot.

        A nonce at or below the ledger's was consumed there, so on-chain usage
        already reflects that action or its failure. A higher nonce has not
        reached the ledger: unless it is being broadcast right now, its
        reservation is released, and the envelope may still be broadcast later.
        """
        resolved: List[Tuple[ActionRequest, Reservation]] = []
        with self._lock:
            for content_hash, (request, reservation) in list(self._pending.items()):
                if request.account_id != account_id:
                    continue
                if request.nonce > ledger_nonce and content_hash in self._inflight:
                    continue
                del self._pending[content_hash]
                resolved.append((request, reservation))
        self.ctx.usage.rebase(account_id, onchain, [r for _, r in resolved])
        for request, _ in resolved:
            if request.nonce <= ledger_nonce:
                logger.info("%s nonce %d resolved from ledger state", account_id, request.nonce)
            else:
                logger.warning("%s nonce %d never reached the ledger; reservation released", account_id, request.nonce)

    async def sync_account(self, account_id: str) -> ProvisionedAccount:
        """Fold on-chain status, nonce and usage into the local view."""
        account = self.ctx.registry.get(account_id)
        state = await self.ctx.account_state(account_id)
        if not state.exists:
            return account

        self.ctx.nonces.observe(account_id, state.nonce)
        if state.usage is not None:
            self._resolve_pending(account_id, state.nonce, UsageStats(**state.usage.model_dump()))

        if state.status is not None and state.status != account.status.value:
            target = AccountStatus(state.status)
            try:
                account = self.ctx.registry.transition(account_id, target)
                logger.info("%s is now %s on-chain", account_id, target.value)
            except InvalidTransition:
                # Expired/revoked may be reported while we still see registered.
                if target.is_terminal and account.status is AccountStatus.REGISTERED:
                    self.ctx.registry.transition(account_id, AccountStatus.ACTIVE)
                    account = self.ctx.registry.transition(account_id, target)
                else:
                    logger.warning(
                        "ignoring on-chain status %s for %s (local %s)",
                        target.value, account_id, account.status.value,
                    )
        return account

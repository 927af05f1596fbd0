"""In-memory registry of trials and provisioned accounts.

The registry is the single place account status changes. Every change goes
through ``transition``, which enforces the monotonic lifecycle.
"""

from __future__ import annotations

import dataclasses
import threading
from typing import Dict, List, Optional

from .errors import InvalidTransition, KeyConflict, UnknownAccount, UnknownTrial
from .models import AccountStatus, ProvisionedAccount, Trial, TrialStatus


class AccountRegistry:
    def __init__(self):
        self._lock = threading.Lock()
        self._trials: Dict[str, Trial] = {}
        self._accounts: Dict[str, ProvisionedAccount] = {}
        self._by_public_key: Dict[str, str] = {}

    # Trials

    def add_trial(self, trial: Trial) -> None:
        with self._lock:
            if trial.trial_id in self._trials:
                raise KeyConflict(f"trial {trial.trial_id} already recorded", trial_id=trial.trial_id)
            self._trials[trial.trial_id] = trial

    def trial(self, trial_id: str) -> Trial:
        with self._lock:
            t = self._trials.get(trial_id)
        if t is None:
            raise UnknownTrial(f"unknown trial {trial_id}", trial_id=trial_id)
        return t

    def set_trial_status(self, trial_id: str, status: TrialStatus) -> Trial:
        with self._lock:
            t = self._trials.get(trial_id)
            if t is None:
                raise UnknownTrial(f"unknown trial {trial_id}", trial_id=trial_id)
            if t.status is not TrialStatus.ACTIVE and status is not t.status:
                raise InvalidTransition(
                    f"trial {trial_id} is {t.status.value}; cannot become {status.value}",
                    trial_id=trial_id,
                )
            t = dataclasses.replace(t, status=status)
            self._trials[trial_id] = t
            return t

    # Accounts

    def add_account(self, account: ProvisionedAccount) -> None:
        with self._lock:
            if account.trial_id not in self._trials:
                raise UnknownTrial(f"unknown trial {account.trial_id}", trial_id=account.trial_id)
            if account.account_id in self._accounts:
                raise KeyConflict(f"account {account.account_id} already registered", account_id=account.account_id)
            owner = self._by_public_key.get(account.public_key)
            if owner is not None:
                raise KeyConflict(
                    f"public key already bound to {owner}",
                    account_id=account.account_id,
                    public_key=account.public_key,
                )
            self._accounts[account.account_id] = account
            self._by_public_key[account.public_key] = account.account_id

    def find(self, account_id: str) -> Optional[ProvisionedAccount]:
        with self._lock:
            acct = self._accounts.get(account_id)
            return dataclasses.replace(acct) if acct else None

    def get(self, account_id: str) -> ProvisionedAccount:
        acct = self.find(account_id)
        if acct is None:
            raise UnknownAccount(f"unknown account {account_id}", account_id=account_id)
        return acct

    def status(self, account_id: str) -> Optional[AccountStatus]:
        acct = self.find(account_id)
        return acct.status if acct else None

    def transition(self, account_id: str, target: AccountStatus) -> ProvisionedAccount:
        with self._lock:
            acct = self._accounts.get(account_id)
            if acct is None:
                raise UnknownAccount(f"unknown account {account_id}", account_id=account_id)
            if not acct.status.can_transition_to(target):
                raise InvalidTransition(
                    f"{account_id}: {acct.status.value} -> {target.value} is not allowed",
                    account_id=account_id,
                    current=acct.status.value,
                    target=target.value,
                )
            acct.status = target
            return dataclasses.replace(acct)

    def accounts_for(self, trial_id: str) -> List[ProvisionedAccount]:
        with self._lock:
            return [dataclasses.replace(a) for a in self._accounts.values() if a.trial_id == trial_id]

"""
Capability budgets for trial accounts.

Local, advisory enforcement of a trial's limits: the contract is the authority
and rejects over-cap actions on its own. Checking here avoids signing and
broadcasting actions that are certain to be rejected.

Usage is *reserved* when an action is signed, so concurrent callers cannot
both pass the check against the same headroom. A reservation is released when
the ledger definitively rejects the transaction, and closed by ``rebase`` once
a ledger snapshot has answered for it.
"""

from __future__ import annotations

import secrets
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple

from .errors import CapacityExceeded
from .models import Trial


@dataclass(frozen=True)
class AccountBudget:
    """
    Budget constraints for one trial account.

    None means unlimited.
    """
    max_spend: Optional[int] = None  # cumulative deposit/value
    max_calls: Optional[int] = None  # cumulative interactions
    max_gas_per_action: Optional[int] = None
    max_deposit_per_action: Optional[int] = None

    @classmethod
    def for_trial(cls, trial: Trial) -> "AccountBudget":
        return cls(
            max_spend=trial.per_account_cap,
            max_calls=trial.transaction_limit,
            max_gas_per_action=trial.max_gas,
            max_deposit_per_action=trial.max_deposit,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_spend": self.max_spend,
            "max_calls": self.max_calls,
            "max_gas_per_action": self.max_gas_per_action,
            "max_deposit_per_action": self.max_deposit_per_action,
        }


@dataclass
class UsageStats:
    """Tracks current usage against a budget."""
    total_interactions: int = 0
    gas_used: int = 0
    deposit_used: int = 0

    def check_budget(self, budget: AccountBudget, *, spend: int, gas: int) -> Tuple[bool, str]:
        """
        Check if one more action fits within budget.
        Returns (allowed, reason).
        """
        if budget.max_gas_per_action is not None and gas > budget.max_gas_per_action:
            return False, f"GAS_LIMIT: attached gas {gas} > {budget.max_gas_per_action}"

        if budget.max_deposit_per_action is not None and spend > budget.max_deposit_per_action:
            return False, f"DEPOSIT_LIMIT: attached deposit {spend} > {budget.max_deposit_per_action}"

        if budget.max_calls is not None:
            if self.total_interactions + 1 > budget.max_calls:
                return False, f"CALLS_EXCEEDED: ({self.total_interactions + 1} > {budget.max_calls})"

        if budget.max_spend is not None:
            if self.deposit_used + spend > budget.max_spend:
                return False, f"SPEND_EXCEEDED: ({self.deposit_used + spend} > {budget.max_spend})"

        return True, "OK"

    def record_usage(self, *, spend: int, gas: int, calls: int = 1) -> None:
        self.total_interactions += calls
        self.gas_used += gas
        self.deposit_used += spend


@dataclass(frozen=True)
class Reservation:
    reservation_id: str
    account_id: str
    spend: int
    gas: int


class UsageTracker:
    """
    Tracks usage per account id.

    Reservations are atomic relative to each other: check and record happen
    under one lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._usage: Dict[str, UsageStats] = {}
        self._open: Dict[str, Reservation] = {}

    def usage(self, account_id: str) -> UsageStats:
        """Snapshot of usage for an account."""
        with self._lock:
            u = self._usage.get(account_id) or UsageStats()
            return UsageStats(u.total_interactions, u.gas_used, u.deposit_used)

    def remaining(self, account_id: str, budget: AccountBudget) -> Optional[int]:
        """Remaining spend for the account, or None when unlimited."""
        if budget.max_spend is None:
            return None
        return max(0, budget.max_spend - self.usage(account_id).deposit_used)

    def reserve(self, account_id: str, budget: AccountBudget, *, spend: int, gas: int) -> Reservation:
        """Check and record one action. Raises CapacityExceeded when it does not fit."""
        if spend < 0 or gas < 0:
            raise ValueError("spend and gas must be non-negative")
        with self._lock:
            usage = self._usage.setdefault(account_id, UsageStats())
            allowed, reason = usage.check_budget(budget, spend=spend, gas=gas)
            if not allowed:
                raise CapacityExceeded(
                    reason,
                    account_id=account_id,
                    spend=spend,
                    deposit_used=usage.deposit_used,
                    budget=budget.to_dict(),
                )
            usage.record_usage(spend=spend, gas=gas)
            res = Reservation(secrets.token_hex(8), account_id, spend, gas)
            self._open[res.reservation_id] = res
            return res

    def release(self, reservation: Reservation) -> bool:
        """Give back a reservation whose transaction was definitively rejected."""
        with self._lock:
            if self._open.pop(reservation.reservation_id, None) is None:
                return False
            usage = self._usage.setdefault(reservation.account_id, UsageStats())
            usage.record_usage(spend=-reservation.spend, gas=-reservation.gas, calls=-1)
            return True

    def settle(self, reservation: Reservation) -> None:
        """The transaction landed; the reservation becomes permanent usage."""
        with self._lock:
            self._open.pop(reservation.reservation_id, None)

    def rebase(self, account_id: str, stats: UsageStats, resolved: Iterable[Reservation] = ()) -> UsageStats:
        """Adopt ledger usage as authoritative.

        ``resolved`` reservations are closed without touching usage; the
        account's usage becomes ``stats`` plus its reservations still open.
        """
        with self._lock:
            for r in resolved:
                self._open.pop(r.reservation_id, None)
            u = UsageStats(stats.total_interactions, stats.gas_used, stats.deposit_used)
            for r in self._open.values():
                if r.account_id == account_id:
                    u.record_usage(spend=r.spend, gas=r.gas)
            self._usage[account_id] = u
            return UsageStats(u.total_interactions, u.gas_used, u.deposit_used)

    def sync(self, account_id: str, stats: UsageStats) -> None:
        """Adopt on-chain usage when it is ahead of the local view."""
        with self._lock:
            u = self._usage.setdefault(account_id, UsageStats())
            u.total_interactions = max(u.total_interactions, stats.total_interactions)
            u.gas_used = max(u.gas_used, stats.gas_used)
            u.deposit_used = max(u.deposit_used, stats.deposit_used)

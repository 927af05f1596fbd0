"""
Data model for trials, provisioned accounts and actions.

State machine (per provisioned account):

    registered --activate--> active --expire/revoke--> expired | revoked

Transitions are strictly monotonic. Only ``active`` permits actions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Union

from .crypto import _now_utc
from .errors import PartialBatchFailure, TrialError


class AccountStatus(Enum):
    REGISTERED = "registered"
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"

    @property
    def is_terminal(self) -> bool:
        return self in (AccountStatus.EXPIRED, AccountStatus.REVOKED)

    def can_transition_to(self, target: "AccountStatus") -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS = {
    AccountStatus.REGISTERED: frozenset({AccountStatus.ACTIVE}),
    AccountStatus.ACTIVE: frozenset({AccountStatus.EXPIRED, AccountStatus.REVOKED}),
    AccountStatus.EXPIRED: frozenset(),
    AccountStatus.REVOKED: frozenset(),
}


class TrialStatus(Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


@dataclass(frozen=True)
class Trial:
    """
    A bounded grant of accounts/actions/spend created against a controlling contract.

    Immutable once created; ``status`` changes only by replacing the record
    after an on-chain read.
    """
    trial_id: str
    owner_id: str
    contract_id: str
    allowed_methods: FrozenSet[str]
    per_account_cap: int
    expires_at: Optional[datetime] = None
    allowed_contracts: FrozenSet[str] = frozenset()  # empty = any contract
    max_gas: Optional[int] = None  # per action
    max_deposit: Optional[int] = None  # per action
    transaction_limit: Optional[int] = None  # exit condition: total interactions
    chain_id: int = 0
    status: TrialStatus = TrialStatus.ACTIVE

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.status is not TrialStatus.ACTIVE:
            return True
        if self.expires_at is None:
            return False
        return (now or _now_utc()) >= self.expires_at

    def allows_method(self, method_name: str) -> bool:
        return method_name in self.allowed_methods

    def allows_contract(self, contract_id: str) -> bool:
        if not self.allowed_contracts:
            return True
        return contract_id in self.allowed_contracts


@dataclass
class ProvisionedAccount:
    trial_id: str
    account_id: str
    public_key: str
    status: AccountStatus = AccountStatus.REGISTERED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trial_id": self.trial_id,
            "account_id": self.account_id,
            "public_key": self.public_key,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class NearAction:
    """Function call on a NEAR contract, made through the trial contract."""
    method_name: str
    contract_id: str
    args: Dict[str, Any] = field(default_factory=dict)
    gas: int = 30_000_000_000_000
    deposit: int = 0

    @property
    def cost(self) -> int:
        return self.deposit

    @property
    def target(self) -> str:
        return self.contract_id

    def to_call_args(self) -> Dict[str, Any]:
        return {
            "chain": "near",
            "contract_id": self.contract_id,
            "method_name": self.method_name,
            "args": self.args,
            "gas": str(self.gas),
            "deposit": str(self.deposit),
        }


@dataclass(frozen=True)
class EvmAction:
    """Call on an EVM contract, signed through the trial contract."""
    method_name: str
    contract_address: str  # 0x-prefixed, 20 bytes
    args: Dict[str, Any] = field(default_factory=dict)
    gas_limit: int = 100_000
    value: int = 0

    def __post_init__(self) -> None:
        addr = self.contract_address.lower()
        if not addr.startswith("0x") or len(addr) != 42:
            raise ValueError(f"contract_address must be a 0x-prefixed 20-byte hex string: {self.contract_address!r}")
        bytes.fromhex(addr[2:])

    @property
    def cost(self) -> int:
        return self.value

    @property
    def gas(self) -> int:
        return self.gas_limit

    @property
    def target(self) -> str:
        return self.contract_address.lower()

    def to_call_args(self) -> Dict[str, Any]:
        return {
            "chain": "evm",
            "contract_address": self.contract_address.lower(),
            "method_name": self.method_name,
            "args": self.args,
            "gas_limit": str(self.gas_limit),
            "value": str(self.value),
        }


Action = Union[NearAction, EvmAction]


def transfer(amount: int, receiver_id: str = "", *, contract_id: str = "") -> NearAction:
    """Convenience constructor for a plain value transfer action."""
    return NearAction(
        method_name="transfer",
        contract_id=contract_id or receiver_id,
        args={"receiver_id": receiver_id} if receiver_id else {},
        deposit=int(amount),
    )


@dataclass(frozen=True)
class ActionRequest:
    trial_id: str
    account_id: str
    action: Action
    nonce: int


@dataclass
class DeployResult:
    contract_id: str
    code_hash: str
    already_deployed: bool = False
    tx_hash: Optional[str] = None


@dataclass
class ActivationResult:
    account_id: str
    ok: bool
    status: Optional[AccountStatus] = None
    tx_hash: Optional[str] = None
    error: Optional[TrialError] = None


@dataclass
class ChunkFailure:
    """One failed registration chunk: which request indices and why."""
    chunk: int
    indices: List[int]
    error: TrialError
    ambiguous: bool = False  # may have landed; reconcile before resubmitting


@dataclass
class ProvisioningResult:
    trial_id: str
    requested: int
    accounts: List[ProvisionedAccount] = field(default_factory=list)
    failures: List[ChunkFailure] = field(default_factory=list)

    @property
    def failed_indices(self) -> List[int]:
        return sorted(i for f in self.failures for i in f.indices)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def error(self) -> Optional[PartialBatchFailure]:
        if not self.failures:
            return None
        return PartialBatchFailure(
            f"{len(self.failed_indices)} of {self.requested} accounts were not provisioned",
            failed_indices=self.failed_indices,
            trial_id=self.trial_id,
            chunks={f.chunk: f.error.as_dict() for f in self.failures},
        )

    def raise_for_failures(self) -> None:
        err = self.error
        if err is not None:
            raise err

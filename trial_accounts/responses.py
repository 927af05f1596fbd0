"""
Boundary models for everything the ledger and the controlling contract return.

Ledger responses are JSON-like and loosely shaped. They are validated here,
once, into a closed set of typed models before reaching the lifecycle code.
Contract call results are tagged variants discriminated by ``kind``; a result
of the wrong kind for the call that produced it is a MalformedResponse.
"""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .errors import MalformedResponse


class _Model(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


# ---------------------------
# Ledger-level responses
# ---------------------------

class Receipt(_Model):
    """Outcome of a submitted transaction, as reported by the ledger."""
    tx_hash: str
    status: Literal["pending", "success", "failure", "duplicate"]
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    block_height: Optional[int] = None

    @property
    def is_final(self) -> bool:
        return self.status in ("success", "failure")


class UsageSnapshot(_Model):
    total_interactions: int = 0
    gas_used: int = 0
    deposit_used: int = 0


class AccountState(_Model):
    account_id: str
    exists: bool = True
    nonce: int = 0
    trial_id: Optional[str] = None
    status: Optional[Literal["registered", "active", "expired", "revoked"]] = None
    usage: Optional[UsageSnapshot] = None


class ContractState(_Model):
    address: str
    code_hash: Optional[str] = None

    @property
    def occupied(self) -> bool:
        return bool(self.code_hash)


# ---------------------------
# Contract call results
# ---------------------------

class Deployed(_Model):
    kind: Literal["deployed"]
    code_hash: str


class TrialCreated(_Model):
    kind: Literal["trial_created"]
    trial_id: str


class AccountsAdded(_Model):
    kind: Literal["accounts_added"]
    account_ids: List[str]


class AccountActivated(_Model):
    kind: Literal["account_activated"]
    account_id: str


class ActionPerformed(_Model):
    kind: Literal["action_performed"]
    usage: UsageSnapshot = Field(default_factory=UsageSnapshot)
    output: Optional[Any] = None


ContractResult = Annotated[
    Union[Deployed, TrialCreated, AccountsAdded, AccountActivated, ActionPerformed],
    Field(discriminator="kind"),
]

_RESULT_ADAPTER: TypeAdapter = TypeAdapter(ContractResult)
_RECEIPT_ADAPTER: TypeAdapter = TypeAdapter(Receipt)

T = TypeVar("T", bound=_Model)


def parse_receipt(raw: Any) -> Receipt:
    if isinstance(raw, Receipt):
        return raw
    try:
        return _RECEIPT_ADAPTER.validate_python(raw)
    except ValidationError as e:
        raise MalformedResponse("ledger returned an invalid receipt", errors=e.errors(include_url=False)) from e


def parse_model(model: Type[T], raw: Any) -> T:
    if isinstance(raw, model):
        return raw
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise MalformedResponse(
            f"ledger returned an invalid {model.__name__}",
            errors=e.errors(include_url=False),
        ) from e


def parse_result(receipt: Receipt, expected: Type[T]) -> T:
    """Validate a successful receipt's result as the variant ``expected``."""
    if receipt.result is None:
        raise MalformedResponse(f"{receipt.tx_hash}: receipt has no result", tx_hash=receipt.tx_hash)
    try:
        value = _RESULT_ADAPTER.validate_python(receipt.result)
    except ValidationError as e:
        raise MalformedResponse(
            f"{receipt.tx_hash}: unrecognized contract result",
            tx_hash=receipt.tx_hash,
            errors=e.errors(include_url=False),
        ) from e
    if not isinstance(value, expected):
        raise MalformedResponse(
            f"{receipt.tx_hash}: expected {expected.__name__}, got {type(value).__name__}",
            tx_hash=receipt.tx_hash,
        )
    return value

"""
Ledger Gateway boundary.

The lifecycle core talks to the ledger only through this protocol. Delivery is
at-least-once: a submission may be answered with ``status="duplicate"`` when
the ledger has already seen the signer's nonce. Implementations return raw or
validated models; callers run everything through ``responses.parse_*``.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from .envelope import TransactionEnvelope
from .responses import AccountState, ContractState, Receipt


@runtime_checkable
class LedgerGateway(Protocol):
    """Protocol implemented by ledger connections."""

    async def submit_transaction(self, envelope: TransactionEnvelope) -> Receipt | Any: ...

    async def get_transaction(self, tx_hash: str) -> Receipt | Any: ...

    async def get_account_state(self, account_id: str) -> AccountState | Any: ...

    async def get_contract_state(self, address: str) -> ContractState | Any: ...

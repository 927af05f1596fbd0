"""
Explicit per-run context shared by the lifecycle components.

There is no process-wide "current connection": every component receives a
``TrialContext`` in its constructor. The context owns the in-memory state of
a run (keys, nonces, account registry, usage) and the ledger connection.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .broadcast import Broadcaster
from .budget import UsageTracker
from .config import TrialConfig
from .envelope import TransactionBody, TransactionEnvelope, sign_transaction
from .keys import KeyManager
from .ledger import LedgerGateway
from .nonces import NonceTracker
from .registry import AccountRegistry
from .responses import AccountState, parse_model
from .signing import Signer, coerce_signer, public_key_str


@dataclass
class TrialContext:
    gateway: LedgerGateway
    owner_id: str
    owner_signer: Signer
    config: TrialConfig = field(default_factory=TrialConfig)
    keys: KeyManager = field(default_factory=KeyManager)
    nonces: NonceTracker = field(default_factory=NonceTracker)
    registry: AccountRegistry = field(default_factory=AccountRegistry)
    usage: UsageTracker = field(default_factory=UsageTracker)
    broadcaster: Optional[Broadcaster] = None

    def __post_init__(self) -> None:
        self.owner_signer = coerce_signer(self.owner_signer)
        if not self.owner_id:
            raise ValueError("owner_id is required")
        if self.broadcaster is None:
            self.broadcaster = Broadcaster(self.gateway, self.config)

    @classmethod
    def from_config(cls, config: TrialConfig, owner_key: Any, *, gateway: Optional[LedgerGateway] = None) -> "TrialContext":
        """Bootstrap a context from configuration (owner key supplied by the caller)."""
        if gateway is None:
            from .rpc import connect
            gateway = connect(config)
        return cls(gateway=gateway, owner_id=config.owner_id, owner_signer=owner_key, config=config)

    @property
    def owner_public_key(self) -> str:
        return public_key_str(self.owner_signer)

    async def account_state(self, account_id: str) -> AccountState:
        return parse_model(AccountState, await self.gateway.get_account_state(account_id))

    async def ensure_nonce_seeded(self, account_id: str) -> None:
        """Seed the local nonce counter from the ledger on first use."""
        if self.nonces.is_seeded(account_id):
            return
        state = await self.account_state(account_id)
        self.nonces.seed(account_id, state.nonce)

    def sign_call(
        self,
        signer_id: str,
        signer: Signer,
        receiver_id: str,
        method_name: str,
        args: Dict[str, Any],
        *,
        gas: Optional[int] = None,
        deposit: int = 0,
    ) -> TransactionEnvelope:
        """Allocate the signer's next nonce and sign one contract call."""
        body = TransactionBody(
            signer_id=signer_id,
            public_key=public_key_str(signer),
            nonce=self.nonces.allocate(signer_id),
            receiver_id=receiver_id,
            method_name=method_name,
            args=args,
            gas=self.config.default_gas if gas is None else int(gas),
            deposit=int(deposit),
            network_id=self.config.network_id,
        )
        return sign_transaction(body, signer)

    def sign_owner_call(self, receiver_id: str, method_name: str, args: Dict[str, Any], **kw: Any) -> TransactionEnvelope:
        return self.sign_call(self.owner_id, self.owner_signer, receiver_id, method_name, args, **kw)

"""High-level entry surface.

``TrialAccounts`` wires the lifecycle components around one explicit
``TrialContext``:

    deploy_trial_contract -> create_trial -> add_trial_accounts
        -> activate_trial_accounts -> perform_actions -> broadcast_transaction

Each method delegates to its component; the components can also be used
directly with a shared context.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from .activator import Activator
from .config import TrialConfig
from .context import TrialContext
from .deployer import ContractDeployer
from .envelope import TransactionEnvelope
from .executor import ActionExecutor
from .ledger import LedgerGateway
from .models import Action, ActivationResult, DeployResult, ProvisionedAccount, ProvisioningResult
from .provisioner import AccountProvisioner
from .registrar import Expiry, TrialRegistrar
from .responses import Receipt


class TrialAccounts:
    def __init__(self, ctx: TrialContext):
        self.ctx = ctx
        self.deployer = ContractDeployer(ctx)
        self.registrar = TrialRegistrar(ctx)
        self.provisioner = AccountProvisioner(ctx)
        self.activator = Activator(ctx)
        self.executor = ActionExecutor(ctx)

    @classmethod
    def connect(
        cls,
        owner_key: Any,
        config: Optional[TrialConfig] = None,
        *,
        gateway: Optional[LedgerGateway] = None,
    ) -> "TrialAccounts":
        """Build a client from configuration (``TrialConfig.from_env()`` by default)."""
        config = config or TrialConfig.from_env()
        return cls(TrialContext.from_config(config, owner_key, gateway=gateway))

    async def deploy_trial_contract(
        self,
        target_address: str,
        compiled_code: bytes,
        init_args: Optional[Dict[str, Any]] = None,
        **kw: Any,
    ) -> DeployResult:
        return await self.deployer.deploy(target_address, compiled_code, init_args, **kw)

    async def create_trial(
        self,
        contract_id: str,
        allowed_actions: Iterable[str],
        per_account_cap: int,
        expiry: Expiry = None,
        **kw: Any,
    ) -> str:
        return await self.registrar.create_trial(contract_id, allowed_actions, per_account_cap, expiry, **kw)

    async def add_trial_accounts(self, trial_id: str, count: int, **kw: Any) -> ProvisioningResult:
        return await self.provisioner.add_trial_accounts(trial_id, count, **kw)

    async def reconcile(self, trial_id: str, account_ids: Sequence[str]) -> List[ProvisionedAccount]:
        return await self.provisioner.reconcile(trial_id, account_ids)

    async def activate_trial_accounts(
        self,
        trial_id: str,
        account_ids: Sequence[str],
        *,
        timeout: Optional[float] = None,
    ) -> List[ActivationResult]:
        return await self.activator.activate_trial_accounts(trial_id, account_ids, timeout=timeout)

    def perform_actions(self, account_id: str, actions: Union[Action, Sequence[Action]]) -> List[TransactionEnvelope]:
        return self.executor.perform_actions(account_id, actions)

    async def broadcast_transaction(self, envelope: TransactionEnvelope, timeout: Optional[float] = None) -> Receipt:
        return await self.executor.broadcast_transaction(envelope, timeout=timeout)

    def remaining_capacity(self, account_id: str) -> Optional[int]:
        return self.executor.remaining_capacity(account_id)

    async def sync_account(self, account_id: str) -> ProvisionedAccount:
        return await self.executor.sync_account(account_id)

"""Contract Deployer: idempotent deployment of the controlling contract."""

from __future__ import annotations

import base64
import hashlib
import logging
from typing import Any, Dict, Optional

from .context import TrialContext
from .errors import ConflictError, MalformedResponse
from .models import DeployResult
from .ops_stats import OPS_STATS
from .responses import ContractState, Deployed, parse_model, parse_result

logger = logging.getLogger("trial_accounts")


def code_hash(compiled_code: bytes) -> str:
    return hashlib.sha256(bytes(compiled_code)).hexdigest()


class ContractDeployer:
    def __init__(self, ctx: TrialContext):
        self.ctx = ctx

    async def deploy(
        self,
        target_address: str,
        compiled_code: bytes,
        init_args: Optional[Dict[str, Any]] = None,
        *,
        initial_balance: int = 0,
        timeout: Optional[float] = None,
    ) -> DeployResult:
        """Deploy ``compiled_code`` to ``target_address``.

        An address already running the same code (by sha256) is a success with
        no transaction. An address running different code raises ConflictError.
        """
        if not target_address:
            raise ValueError("target_address must be non-empty")
        if not compiled_code:
            raise ValueError("compiled_code must be non-empty")

        want = code_hash(compiled_code)
        state = parse_model(ContractState, await self.ctx.gateway.get_contract_state(target_address))

        if state.code_hash == want:
            logger.info("contract %s already deployed (code_hash=%s); skipping", target_address, want)
            OPS_STATS.record_deploy(skipped=True)
            return DeployResult(contract_id=target_address, code_hash=want, already_deployed=True)

        if state.occupied:
            raise ConflictError(
                f"{target_address} already runs different code",
                contract_id=target_address,
                existing_code_hash=state.code_hash,
                code_hash=want,
            )

        await self.ctx.ensure_nonce_seeded(self.ctx.owner_id)
        envelope = self.ctx.sign_owner_call(
            target_address,
            "deploy",
            {
                "code": base64.b64encode(bytes(compiled_code)).decode("ascii"),
                "code_hash": want,
                "init_args": dict(init_args or {}),
            },
            deposit=initial_balance,
        )
        receipt = await self.ctx.broadcaster.broadcast(envelope, timeout=timeout)
        deployed = parse_result(receipt, Deployed)
        if deployed.code_hash != want:
            raise MalformedResponse(
                "ledger reports a different deployed code hash",
                tx_hash=receipt.tx_hash,
                expected=want,
                got=deployed.code_hash,
            )

        OPS_STATS.record_deploy(skipped=False)
        logger.info("deployed contract to %s tx=%s", target_address, receipt.tx_hash)
        return DeployResult(contract_id=target_address, code_hash=want, tx_hash=receipt.tx_hash)

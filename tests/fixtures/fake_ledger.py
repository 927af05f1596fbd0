"""
In-memory ledger + controlling contract for tests.

Implements the LedgerGateway protocol and simulates the contract entry points
(deploy, create_trial, add_trial_accounts, activate_trial, perform_action).

Knobs:
- ``pending_polls``: number of get_transaction calls answered "pending"
  before the receipt becomes final.
- ``hang``: receipts never become final (timeout tests).
- ``fail_accounts``: an add_trial_accounts call containing any of these ids
  fails (per-chunk failure injection).
- ``submit_error``: exception raised by submit_transaction (transport failure).

Every envelope goes through its wire form (to_dict/from_dict) and its
signature is checked, so tests exercise what a real node would receive.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import secrets
from typing import Any, Dict, List, Optional, Set

from trial_accounts.envelope import TransactionEnvelope


class FakeLedger:
    def __init__(self, *, pending_polls: int = 0, hang: bool = False):
        self.pending_polls = pending_polls
        self.hang = hang
        self.fail_accounts: Set[str] = set()
        self.submit_error: Optional[Exception] = None

        self.contracts: Dict[str, str] = {}  # address -> code hash
        self.trials: Dict[str, Dict[str, Any]] = {}
        self.accounts: Dict[str, Dict[str, Any]] = {}
        self.used_nonces: Dict[str, Set[int]] = {}
        self.receipts: Dict[str, Dict[str, Any]] = {}
        self._polls: Dict[str, int] = {}
        self.submitted: List[TransactionEnvelope] = []

    # ---------------------------
    # Helpers for tests
    # ---------------------------

    def calls(self, method_name: str) -> List[TransactionEnvelope]:
        return [e for e in self.submitted if e.body.method_name == method_name]

    def set_status(self, account_id: str, status: str) -> None:
        self.accounts[account_id]["status"] = status

    # ---------------------------
    # LedgerGateway
    # ---------------------------

    async def submit_transaction(self, envelope: TransactionEnvelope) -> Dict[str, Any]:
        await asyncio.sleep(0)
        if self.submit_error is not None:
            raise self.submit_error
        env = TransactionEnvelope.from_dict(envelope.to_dict())
        assert env.content_hash == envelope.content_hash
        assert env.verify(), "bad signature"
        self.submitted.append(env)

        tx_hash = "tx" + env.content_hash[:24]
        used = self.used_nonces.setdefault(env.signer_id, set())
        if env.nonce in used:
            return {"tx_hash": tx_hash, "status": "duplicate", "error": "nonce already used"}
        used.add(env.nonce)

        try:
            result = self._apply(env)
            receipt = {"tx_hash": tx_hash, "status": "success", "result": result}
        except ContractPanic as e:
            receipt = {"tx_hash": tx_hash, "status": "failure", "error": f"Smart contract panicked: {e}"}
        self.receipts[tx_hash] = receipt
        self._polls[tx_hash] = 0
        if self.hang or self.pending_polls:
            return {"tx_hash": tx_hash, "status": "pending"}
        return receipt

    async def get_transaction(self, tx_hash: str) -> Dict[str, Any]:
        await asyncio.sleep(0)
        if self.hang:
            return {"tx_hash": tx_hash, "status": "pending"}
        self._polls[tx_hash] += 1
        if self._polls[tx_hash] <= self.pending_polls:
            return {"tx_hash": tx_hash, "status": "pending"}
        return self.receipts[tx_hash]

    async def get_account_state(self, account_id: str) -> Dict[str, Any]:
        await asyncio.sleep(0)
        nonce = max(self.used_nonces.get(account_id) or {0})
        acct = self.accounts.get(account_id)
        if acct is None:
            return {"account_id": account_id, "exists": bool(self.used_nonces.get(account_id)), "nonce": nonce}
        return {
            "account_id": account_id,
            "exists": True,
            "nonce": nonce,
            "trial_id": acct["trial_id"],
            "status": acct["status"],
            "usage": dict(acct["usage"]),
        }

    async def get_contract_state(self, address: str) -> Dict[str, Any]:
        await asyncio.sleep(0)
        return {"address": address, "code_hash": self.contracts.get(address)}

    # ---------------------------
    # Contract
    # ---------------------------

    def _apply(self, env: TransactionEnvelope) -> Dict[str, Any]:
        body = env.body
        handler = getattr(self, f"_call_{body.method_name}", None)
        if handler is None:
            raise ContractPanic(f"unknown method {body.method_name}")
        return handler(env)

    def _call_deploy(self, env: TransactionEnvelope) -> Dict[str, Any]:
        args = env.body.args
        code = base64.b64decode(args["code"])
        digest = hashlib.sha256(code).hexdigest()
        if digest != args["code_hash"]:
            raise ContractPanic("code hash mismatch")
        self.contracts[env.body.receiver_id] = digest
        return {"kind": "deployed", "code_hash": digest}

    def _call_create_trial(self, env: TransactionEnvelope) -> Dict[str, Any]:
        if env.body.receiver_id not in self.contracts:
            raise ContractPanic("contract not deployed")
        trial_id = secrets.token_hex(4)
        self.trials[trial_id] = dict(env.body.args, contract_id=env.body.receiver_id)
        return {"kind": "trial_created", "trial_id": trial_id}

    def _call_add_trial_accounts(self, env: TransactionEnvelope) -> Dict[str, Any]:
        args = env.body.args
        if args["trial_id"] not in self.trials:
            raise ContractPanic("Trial not found")
        ids = [k["account_id"] for k in args["keys"]]
        if self.fail_accounts.intersection(ids):
            raise ContractPanic("injected registration failure")
        for k in args["keys"]:
            if k["account_id"] in self.accounts:
                raise ContractPanic(f"Account {k['account_id']} already exists")
        for k in args["keys"]:
            self.accounts[k["account_id"]] = {
                "trial_id": args["trial_id"],
                "public_key": k["public_key"],
                "status": "registered",
                "usage": {"total_interactions": 0, "gas_used": 0, "deposit_used": 0},
            }
        return {"kind": "accounts_added", "account_ids": ids}

    def _trial_account(self, env: TransactionEnvelope) -> Dict[str, Any]:
        acct = self.accounts.get(env.signer_id)
        if acct is None:
            raise ContractPanic("Account not registered")
        if acct["public_key"] != env.body.public_key:
            raise ContractPanic("Access key does not match")
        return acct

    def _call_activate_trial(self, env: TransactionEnvelope) -> Dict[str, Any]:
        acct = self._trial_account(env)
        if acct["status"] == "active":
            raise ContractPanic("Account already active")
        if acct["status"] != "registered":
            raise ContractPanic(f"Account is {acct['status']}")
        acct["status"] = "active"
        return {"kind": "account_activated", "account_id": env.signer_id}

    def _call_perform_action(self, env: TransactionEnvelope) -> Dict[str, Any]:
        acct = self._trial_account(env)
        if acct["status"] != "active":
            raise ContractPanic("Account is not active")
        trial = self.trials[acct["trial_id"]]
        action = env.body.args["action"]
        if action["method_name"] not in trial["allowed_methods"]:
            raise ContractPanic(f"Method {action['method_name']} not allowed")
        deposit = int(action.get("deposit", action.get("value", "0")))
        gas = int(action.get("gas", action.get("gas_limit", "0")))
        if trial.get("max_deposit") is not None and deposit > int(trial["max_deposit"]):
            raise ContractPanic("Attached deposit exceeds maximum allowed")
        usage = acct["usage"]
        limit = (trial.get("exit_conditions") or {}).get("transaction_limit")
        if limit is not None and usage["total_interactions"] >= int(limit):
            raise ContractPanic("Transaction limit reached")
        if usage["deposit_used"] + deposit > int(trial["per_account_cap"]):
            raise ContractPanic("Deposit exceeds cap")
        usage["total_interactions"] += 1
        usage["gas_used"] += gas
        usage["deposit_used"] += deposit
        return {"kind": "action_performed", "usage": dict(usage), "output": None}


class ContractPanic(Exception):
    pass

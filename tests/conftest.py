from datetime import timedelta

import pytest

from fixtures.fake_ledger import FakeLedger
from trial_accounts.client import TrialAccounts
from trial_accounts.config import TrialConfig
from trial_accounts.context import TrialContext
from trial_accounts.crypto import create_key_pair

OWNER_ID = "owner.testnet"
CONTRACT_ID = "trials.owner.testnet"
CODE = b"\x00asm\x01\x00\x00\x00trial-contract-v1"


@pytest.fixture
def config():
    return TrialConfig(
        owner_id=OWNER_ID,
        batch_size=2,
        max_concurrency=3,
        broadcast_timeout_seconds=2.0,
        poll_interval_seconds=0.001,
    )


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def ctx(ledger, config):
    return TrialContext(gateway=ledger, owner_id=OWNER_ID, owner_signer=create_key_pair(OWNER_ID), config=config)


@pytest.fixture
def client(ctx):
    return TrialAccounts(ctx)


async def deployed_trial(client, **kw):
    """Deploy the contract and create a transfer trial; returns the trial id."""
    await client.deploy_trial_contract(CONTRACT_ID, CODE)
    kw.setdefault("expiry", timedelta(hours=1))
    return await client.create_trial(CONTRACT_ID, kw.pop("allowed_actions", ["transfer"]), kw.pop("cap", 100), **kw)


async def active_accounts(client, n=3, **kw):
    trial_id = await deployed_trial(client, **kw)
    result = await client.add_trial_accounts(trial_id, n)
    assert result.ok
    ids = [a.account_id for a in result.accounts]
    activations = await client.activate_trial_accounts(trial_id, ids)
    assert all(r.ok for r in activations)
    return trial_id, ids

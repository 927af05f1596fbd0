import pytest

from conftest import deployed_trial
from trial_accounts.errors import AlreadyActive, NotRegistered, Timeout, TrialExpired
from trial_accounts.models import AccountStatus, TrialStatus


async def _registered(client, n=3):
    trial_id = await deployed_trial(client)
    result = await client.add_trial_accounts(trial_id, n)
    return trial_id, [a.account_id for a in result.accounts]


@pytest.mark.asyncio
async def test_activates_each_account_with_its_own_key(client, ledger):
    trial_id, ids = await _registered(client)
    results = await client.activate_trial_accounts(trial_id, ids)

    assert [r.account_id for r in results] == ids
    assert all(r.ok and r.status is AccountStatus.ACTIVE and r.error is None for r in results)
    assert all(client.ctx.registry.status(a) is AccountStatus.ACTIVE for a in ids)
    assert {e.signer_id for e in ledger.calls("activate_trial")} == set(ids)
    assert all(ledger.accounts[a]["status"] == "active" for a in ids)


@pytest.mark.asyncio
async def test_activating_an_active_account_is_success(client, ledger):
    trial_id, ids = await _registered(client, 1)
    await client.activate_trial_accounts(trial_id, ids)
    again = await client.activate_trial_accounts(trial_id, ids)

    assert again[0].ok
    assert isinstance(again[0].error, AlreadyActive)
    assert len(ledger.calls("activate_trial")) == 1


@pytest.mark.asyncio
async def test_ledger_already_active_is_success(client, ledger):
    trial_id, ids = await _registered(client, 1)
    ledger.set_status(ids[0], "active")
    results = await client.activate_trial_accounts(trial_id, ids)
    assert results[0].ok
    assert isinstance(results[0].error, AlreadyActive)
    assert client.ctx.registry.status(ids[0]) is AccountStatus.ACTIVE


@pytest.mark.asyncio
async def test_failures_are_reported_per_account(client, ledger):
    trial_id, ids = await _registered(client, 2)
    client.ctx.registry.transition(ids[1], AccountStatus.ACTIVE)
    client.ctx.registry.transition(ids[1], AccountStatus.REVOKED)

    results = await client.activate_trial_accounts(trial_id, [ids[0], "unknown.testnet", ids[1]])

    assert results[0].ok
    assert isinstance(results[1].error, NotRegistered)
    assert not results[1].ok
    assert isinstance(results[2].error, NotRegistered)
    assert results[2].status is AccountStatus.REVOKED


@pytest.mark.asyncio
async def test_account_from_another_trial_is_not_registered(client):
    trial_a, ids = await _registered(client, 1)
    trial_b = await client.create_trial("trials.owner.testnet", ["transfer"], 10)
    results = await client.activate_trial_accounts(trial_b, ids)
    assert isinstance(results[0].error, NotRegistered)
    assert client.ctx.registry.status(ids[0]) is AccountStatus.REGISTERED


@pytest.mark.asyncio
async def test_timeout_leaves_account_registered(client, ledger):
    trial_id, ids = await _registered(client, 1)
    ledger.hang = True
    results = await client.activate_trial_accounts(trial_id, ids, timeout=0.05)
    assert isinstance(results[0].error, Timeout)
    assert client.ctx.registry.status(ids[0]) is AccountStatus.REGISTERED

    # The activation landed; syncing from the ledger catches up.
    synced = await client.sync_account(ids[0])
    assert synced.status is AccountStatus.ACTIVE


@pytest.mark.asyncio
async def test_expired_trial_does_not_activate(client, ledger):
    trial_id, ids = await _registered(client, 1)
    client.ctx.registry.set_trial_status(trial_id, TrialStatus.EXPIRED)
    results = await client.activate_trial_accounts(trial_id, ids)
    assert isinstance(results[0].error, TrialExpired)
    assert not ledger.calls("activate_trial")

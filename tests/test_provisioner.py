import pytest

from conftest import OWNER_ID, deployed_trial
from trial_accounts.errors import InvalidTrialSpec, LedgerError, PartialBatchFailure, Timeout, TrialExpired
from trial_accounts.models import AccountStatus, TrialStatus
from trial_accounts.provisioner import _Entry, plan_chunks


def test_plan_chunks_respects_item_and_byte_limits():
    entries = [_Entry(i, f"acct{i}.testnet", "ed25519:" + "A" * 44) for i in range(7)]
    by_items = plan_chunks(entries, max_items=3, max_bytes=1 << 20)
    assert [len(c) for c in by_items] == [3, 3, 1]

    by_bytes = plan_chunks(entries, max_items=100, max_bytes=256 + 2 * 90)
    assert all(len(c) <= 2 for c in by_bytes)
    assert [e.index for c in by_bytes for e in c] == list(range(7))


@pytest.mark.asyncio
async def test_provisions_all_accounts_in_chunks(client, ledger):
    trial_id = await deployed_trial(client)
    result = await client.add_trial_accounts(trial_id, 5)

    assert result.ok
    assert len(result.accounts) == 5
    assert all(a.status is AccountStatus.REGISTERED for a in result.accounts)
    assert len(ledger.calls("add_trial_accounts")) == 3
    for a in result.accounts:
        assert ledger.accounts[a.account_id]["public_key"] == a.public_key
        assert client.ctx.keys.get(a.account_id).bound

    nonces = sorted(e.nonce for e in ledger.submitted if e.signer_id == OWNER_ID)
    assert len(nonces) == len(set(nonces))


@pytest.mark.asyncio
async def test_failed_chunk_is_isolated(client, ledger):
    trial_id = await deployed_trial(client)
    ids = [f"a{i}.trials.testnet" for i in range(5)]
    ledger.fail_accounts = {"a2.trials.testnet"}

    result = await client.add_trial_accounts(trial_id, 5, account_ids=ids)

    assert [a.account_id for a in result.accounts] == [ids[0], ids[1], ids[4]]
    assert result.failed_indices == [2, 3]
    assert len(result.accounts) + len(result.failed_indices) == 5
    assert not result.failures[0].ambiguous
    assert isinstance(result.error, PartialBatchFailure)
    with pytest.raises(PartialBatchFailure):
        result.raise_for_failures()

    # No rollback of committed chunks; no key left behind for failed ones.
    assert ids[0] in ledger.accounts and ids[4] in ledger.accounts
    assert ids[2] not in client.ctx.keys
    assert ids[3] not in client.ctx.keys

    # Caller resubmits the failed indices explicitly.
    ledger.fail_accounts = set()
    retry = await client.add_trial_accounts(trial_id, 2, account_ids=[ids[i] for i in result.failed_indices])
    assert retry.ok
    assert len(client.ctx.registry.accounts_for(trial_id)) == 5


@pytest.mark.asyncio
async def test_transport_error_fails_chunks(client, ledger):
    trial_id = await deployed_trial(client)
    ledger.submit_error = ConnectionError("node down")
    result = await client.add_trial_accounts(trial_id, 3)
    assert not result.accounts
    assert result.failed_indices == [0, 1, 2]
    assert all(isinstance(f.error, LedgerError) for f in result.failures)
    assert len(client.ctx.keys) == 0


@pytest.mark.asyncio
async def test_timed_out_chunks_are_ambiguous_and_reconciled(client, ledger):
    trial_id = await deployed_trial(client)
    ledger.hang = True
    result = await client.add_trial_accounts(trial_id, 3, timeout=0.05)

    assert not result.accounts
    assert all(f.ambiguous for f in result.failures)
    assert all(isinstance(f.error, Timeout) for f in result.failures)
    ids = [a for a in client.ctx.keys]
    assert len(ids) == 3

    # The registrations did land; reconcile picks them up.
    found = await client.reconcile(trial_id, ids)
    assert sorted(a.account_id for a in found) == sorted(ids)
    assert all(client.ctx.keys.get(a).bound for a in ids)


@pytest.mark.asyncio
async def test_reconcile_discards_keys_unknown_to_ledger(client, ledger):
    trial_id = await deployed_trial(client)
    client.ctx.keys.generate(trial_id, "ghost.trials.testnet")
    found = await client.reconcile(trial_id, ["ghost.trials.testnet"])
    assert found == []
    assert "ghost.trials.testnet" not in client.ctx.keys


@pytest.mark.asyncio
@pytest.mark.parametrize("count", [0, -1, True, 2.5])
async def test_invalid_count(client, count):
    trial_id = await deployed_trial(client)
    with pytest.raises(InvalidTrialSpec):
        await client.add_trial_accounts(trial_id, count)


@pytest.mark.asyncio
async def test_expired_trial_refuses_provisioning(client, ledger):
    trial_id = await deployed_trial(client)
    client.ctx.registry.set_trial_status(trial_id, TrialStatus.EXPIRED)
    with pytest.raises(TrialExpired):
        await client.add_trial_accounts(trial_id, 1)
    assert not ledger.calls("add_trial_accounts")


@pytest.mark.asyncio
@pytest.mark.parametrize("ids", [
    ["a.trials.testnet", "b.trials.testnet", "a.trials.testnet"],
    ["a.trials.testnet", "", "c.trials.testnet"],
])
async def test_bad_account_ids_are_rejected_before_any_key(client, ledger, ids):
    trial_id = await deployed_trial(client)
    with pytest.raises(InvalidTrialSpec):
        await client.add_trial_accounts(trial_id, 3, account_ids=ids)
    assert len(client.ctx.keys) == 0
    assert not ledger.calls("add_trial_accounts")

    retry = await client.add_trial_accounts(trial_id, 2, account_ids=["a.trials.testnet", "b.trials.testnet"])
    assert retry.ok


@pytest.mark.asyncio
async def test_id_with_existing_key_is_rejected(client, ledger):
    trial_id = await deployed_trial(client)
    first = await client.add_trial_accounts(trial_id, 1, account_ids=["a.trials.testnet"])
    assert first.ok

    with pytest.raises(InvalidTrialSpec):
        await client.add_trial_accounts(trial_id, 2, account_ids=["b.trials.testnet", "a.trials.testnet"])
    assert "b.trials.testnet" not in client.ctx.keys
    assert len(ledger.calls("add_trial_accounts")) == 1


@pytest.mark.asyncio
async def test_key_generation_failure_discards_earlier_keys(client, monkeypatch):
    trial_id = await deployed_trial(client)
    generate = client.ctx.keys.generate

    def flaky(trial, account_id):
        if account_id == "c.trials.testnet":
            raise RuntimeError("entropy source unavailable")
        return generate(trial, account_id)

    monkeypatch.setattr(client.ctx.keys, "generate", flaky)
    with pytest.raises(RuntimeError):
        await client.add_trial_accounts(
            trial_id, 3, account_ids=["a.trials.testnet", "b.trials.testnet", "c.trials.testnet"],
        )
    assert len(client.ctx.keys) == 0

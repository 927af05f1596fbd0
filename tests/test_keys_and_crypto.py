import threading

import pytest

from trial_accounts.crypto import Ed25519KeyPair, canonical_json_dumps, create_key_pair
from trial_accounts.errors import KeyConflict, UnknownAccount
from trial_accounts.keys import KeyManager
from trial_accounts.signing import KeyPairSigner, coerce_signer, public_key_str


def test_canonical_json_is_sorted_and_compact():
    assert canonical_json_dumps({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'


def test_canonical_json_rejects_nan():
    with pytest.raises(ValueError):
        canonical_json_dumps({"x": float("nan")})


def test_keypair_sign_and_verify():
    kp = create_key_pair("k1")
    sig = kp.sign(b"msg")
    assert kp.verify(b"msg", sig)
    assert not kp.verify(b"other", sig)

    pub = Ed25519KeyPair(key_id="k1", public_key_bytes=kp.public_key_bytes)
    assert pub.verify(b"msg", sig)
    with pytest.raises(ValueError):
        pub.sign(b"msg")


def test_keypair_repr_hides_private_key():
    kp = create_key_pair("k1")
    assert "private" not in repr(kp).lower()


def test_encrypted_pem_round_trip_requires_passphrase():
    kp = create_key_pair("k1")
    pem = kp.to_encrypted_pem(b"secret")
    assert b"ENCRYPTED" in pem
    restored = Ed25519KeyPair.from_encrypted_pem("k1", pem, b"secret")
    assert restored.public_key_bytes == kp.public_key_bytes
    with pytest.raises(ValueError):
        kp.to_encrypted_pem(b"")


def test_coerce_signer():
    kp = create_key_pair("k1")
    signer = coerce_signer(kp)
    assert isinstance(signer, KeyPairSigner)
    assert coerce_signer(signer) is signer
    assert public_key_str(signer) == kp.public_key_str
    with pytest.raises(TypeError):
        coerce_signer("not a signer")


def test_generate_is_unique_per_account_id():
    km = KeyManager()
    key = km.generate("t1", "a1")
    assert key.public_key.startswith("ed25519:")
    with pytest.raises(KeyConflict):
        km.generate("t1", "a1")


def test_concurrent_generation_for_one_id_yields_one_key():
    km = KeyManager()
    created, conflicts = [], []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        try:
            created.append(km.generate("t1", "same"))
        except KeyConflict:
            conflicts.append(1)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(created) == 1
    assert len(conflicts) == 7
    assert len(km) == 1


def test_distinct_ids_get_distinct_keys():
    km = KeyManager()
    keys = [km.generate("t1", f"a{i}") for i in range(5)]
    assert len({k.public_key for k in keys}) == 5


def test_bind_once_and_discard_unbound_only():
    km = KeyManager()
    km.generate("t1", "a1")
    km.generate("t1", "a2")

    km.bind("a1")
    with pytest.raises(KeyConflict):
        km.bind("a1")
    with pytest.raises(KeyConflict):
        km.discard("a1")

    km.discard("a2")
    assert "a2" not in km
    with pytest.raises(UnknownAccount):
        km.get("a2")


def test_signer_for_signs_with_account_key():
    km = KeyManager()
    key = km.generate("t1", "a1")
    signer = km.signer_for("a1")
    sig = signer.sign(b"hello")
    verifier = Ed25519KeyPair(key_id="a1", public_key_bytes=key.public_key_bytes)
    assert verifier.verify(b"hello", sig)


def test_export_import_encrypted():
    km = KeyManager()
    key = km.generate("t1", "a1")
    pem = km.export_encrypted("a1", b"pw")

    other = KeyManager()
    imported = other.import_encrypted("t1", "a1", pem, b"pw")
    assert imported.public_key == key.public_key
    assert imported.bound


def test_discard_drops_per_id_lock():
    km = KeyManager()
    km.generate("t1", "a1")
    km.discard("a1")
    km.discard("never-generated")
    assert km._id_locks == {}

    # The id can be generated again after it was discarded.
    km.generate("t1", "a1")
    assert len(km) == 1

"""
Key Manager for trial account access keys.

Each trial account gets its own Ed25519 keypair. The manager:
- serializes generation per account id (never two keys for one id)
- lets different ids generate concurrently without contending
- binds each key to exactly one provisioned account, exactly once
- signs on behalf of an account without exposing private material

Keys are held in memory for the duration of a run. Durable storage is the
caller's concern, and only the encrypted export is offered for it.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional

from .crypto import Ed25519KeyPair
from .errors import KeyConflict, UnknownAccount
from .signing import KeyPairSigner, Signer


@dataclass
class TrialAccountKey:
    """A keypair bound to one trial and one target account id."""
    trial_id: str
    account_id: str
    _keypair: Ed25519KeyPair = field(repr=False)
    bound: bool = False

    @property
    def public_key(self) -> str:
        return self._keypair.public_key_str

    @property
    def public_key_bytes(self) -> bytes:
        return self._keypair.public_key_bytes

    def signer(self) -> Signer:
        return KeyPairSigner(self._keypair)


class KeyManager:
    """In-memory key store for trial account keys."""

    def __init__(self):
        self._keys: Dict[str, TrialAccountKey] = {}
        self._guard = threading.Lock()
        self._id_locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, account_id: str) -> threading.Lock:
        with self._guard:
            lock = self._id_locks.get(account_id)
            if lock is None:
                lock = threading.Lock()
                self._id_locks[account_id] = lock
            return lock

    def generate(self, trial_id: str, account_id: str) -> TrialAccountKey:
        """Generate a fresh keypair for ``account_id``.

        Raises KeyConflict if a key already exists for that id.
        """
        if not account_id:
            raise ValueError("account_id must be non-empty")
        with self._lock_for(account_id):
            if account_id in self:
                raise KeyConflict(f"key already exists for {account_id}", account_id=account_id)
            key = TrialAccountKey(
                trial_id=trial_id,
                account_id=account_id,
                _keypair=Ed25519KeyPair.generate(account_id),
            )
            return self._insert(key)

    def _insert(self, key: TrialAccountKey) -> TrialAccountKey:
        # Checked again under the guard: discard() may have evicted the id lock.
        with self._guard:
            if key.account_id in self._keys:
                raise KeyConflict(f"key already exists for {key.account_id}", account_id=key.account_id)
            self._keys[key.account_id] = key
        return key

    def get(self, account_id: str) -> TrialAccountKey:
        with self._guard:
            key = self._keys.get(account_id)
        if key is None:
            raise UnknownAccount(f"no key for {account_id}", account_id=account_id)
        return key

    def bind(self, account_id: str) -> TrialAccountKey:
        """Mark the key as consumed by a successful registration. Once only."""
        key = self.get(account_id)
        with self._lock_for(account_id):
            if key.bound:
                raise KeyConflict(f"key for {account_id} is already bound", account_id=account_id)
            key.bound = True
        return key

    def discard(self, account_id: str) -> None:
        """Drop an unbound key (its registration did not commit)."""
        with self._lock_for(account_id):
            with self._guard:
                key = self._keys.get(account_id)
                if key is not None and key.bound:
                    raise KeyConflict(f"refusing to discard bound key for {account_id}", account_id=account_id)
                self._keys.pop(account_id, None)
                self._id_locks.pop(account_id, None)

    def signer_for(self, account_id: str) -> Signer:
        return self.get(account_id).signer()

    def public_key(self, account_id: str) -> str:
        return self.get(account_id).public_key

    def export_encrypted(self, account_id: str, passphrase: bytes) -> bytes:
        """Encrypted PKCS8 PEM for handing the credential to its trial user."""
        return self.get(account_id)._keypair.to_encrypted_pem(passphrase)

    def import_encrypted(self, trial_id: str, account_id: str, pem: bytes, passphrase: bytes, *, bound: bool = True) -> TrialAccountKey:
        with self._lock_for(account_id):
            key = TrialAccountKey(
                trial_id=trial_id,
                account_id=account_id,
                _keypair=Ed25519KeyPair.from_encrypted_pem(account_id, pem, passphrase),
                bound=bound,
            )
            return self._insert(key)

    def find(self, account_id: str) -> Optional[TrialAccountKey]:
        with self._guard:
            return self._keys.get(account_id)

    def __contains__(self, account_id: object) -> bool:
        with self._guard:
            return account_id in self._keys

    def __len__(self) -> int:
        with self._guard:
            return len(self._keys)

    def __iter__(self) -> Iterator[str]:
        with self._guard:
            return iter(list(self._keys))

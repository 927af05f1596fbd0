"""
trial_accounts.signing: signing abstraction for envelopes.

The owner account and every trial account sign through the same small
interface, so a deployment can plug in a signer whose private key never enters
this process (HSM, wallet daemon) as long as it exposes ``key_id``,
``public_key_bytes`` and ``sign``.

All modes are fail-closed: any signer error prevents the envelope from being
built.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from .crypto import Ed25519KeyPair


@runtime_checkable
class Signer(Protocol):
    """Protocol implemented by signing backends."""
    key_id: str
    public_key_bytes: bytes

    def sign(self, message: bytes) -> bytes: ...


@dataclass
class KeyPairSigner:
    """Signer that wraps an Ed25519KeyPair (in-process signing)."""
    keypair: Ed25519KeyPair

    @property
    def key_id(self) -> str:
        return self.keypair.key_id

    @property
    def public_key_bytes(self) -> bytes:
        return self.keypair.public_key_bytes

    def sign(self, message: bytes) -> bytes:
        return self.keypair.sign(message)


def public_key_str(signer: Signer) -> str:
    """Ledger-style public key string for any signer."""
    return "ed25519:" + base64.b64encode(bytes(signer.public_key_bytes)).decode("ascii")


def coerce_signer(obj: Any) -> Signer:
    """Coerce a supported object into a Signer."""
    if obj is None:
        raise TypeError("signer is None")
    if isinstance(obj, Ed25519KeyPair):
        return KeyPairSigner(obj)
    if isinstance(obj, Signer):
        return obj
    raise TypeError(f"Unsupported signer type: {type(obj)}")

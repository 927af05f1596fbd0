"""trial_accounts.envelope: signed, ledger-ready transaction envelopes.

Envelope format (DSSE-style):

    envelope = {
        "payloadType": "application/vnd.trial-accounts.tx+json",
        "payload": "<base64(canonical_json(tx_body))>",
        "signatures": [{"keyid": "...", "sig": "<base64(sig_bytes)>"}],
        "hash": "<sha256 hex of the signing payload>",
    }

Signing model:
- We sign a length-prefixed encoding of (payloadType, payload_base64), which
  binds the signature to the exact body bytes and declared type.
- ``hash`` is computed over the same bytes. Two envelopes with the same hash
  are the same transaction, so the hash is the idempotency key for
  resubmission.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .crypto import Ed25519KeyPair, _safe_hash_encode, _sha256_hex, canonical_json_dumps
from .signing import Signer, public_key_str

PAYLOAD_TYPE = "application/vnd.trial-accounts.tx+json"


@dataclass(frozen=True)
class TransactionBody:
    """Unsigned transaction: one contract call from one signer."""
    signer_id: str
    public_key: str
    nonce: int
    receiver_id: str
    method_name: str
    args: Dict[str, Any] = field(default_factory=dict)
    gas: int = 0
    deposit: int = 0
    network_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signer_id": self.signer_id,
            "public_key": self.public_key,
            "nonce": int(self.nonce),
            "receiver_id": self.receiver_id,
            "method_name": self.method_name,
            "args": self.args,
            # Large integers travel as strings (JSON decoders may use float64).
            "gas": str(int(self.gas)),
            "deposit": str(int(self.deposit)),
            "network_id": self.network_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransactionBody":
        return cls(
            signer_id=str(data["signer_id"]),
            public_key=str(data["public_key"]),
            nonce=int(data["nonce"]),
            receiver_id=str(data["receiver_id"]),
            method_name=str(data["method_name"]),
            args=dict(data.get("args") or {}),
            gas=int(data.get("gas", 0)),
            deposit=int(data.get("deposit", 0)),
            network_id=str(data.get("network_id", "")),
        )


def _signing_payload(payload_type: str, payload_b64: str) -> bytes:
    if not payload_type or not payload_b64:
        raise ValueError("payload_type and payload must be non-empty")
    return _safe_hash_encode([payload_type, payload_b64])


@dataclass(frozen=True)
class TransactionEnvelope:
    body: TransactionBody
    payload: str  # base64 of canonical body JSON
    key_id: str
    signature: bytes
    content_hash: str
    payload_type: str = PAYLOAD_TYPE

    @property
    def signer_id(self) -> str:
        return self.body.signer_id

    @property
    def nonce(self) -> int:
        return self.body.nonce

    def verify(self, public_key_bytes: Optional[bytes] = None) -> bool:
        """Check the signature (against the body's own key unless one is given)."""
        if public_key_bytes is None:
            prefix = "ed25519:"
            if not self.body.public_key.startswith(prefix):
                return False
            try:
                public_key_bytes = base64.b64decode(self.body.public_key[len(prefix):])
            except ValueError:
                return False
        kp = Ed25519KeyPair(key_id=self.key_id, public_key_bytes=public_key_bytes)
        return kp.verify(_signing_payload(self.payload_type, self.payload), self.signature)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payloadType": self.payload_type,
            "payload": self.payload,
            "signatures": [
                {"keyid": self.key_id, "sig": base64.b64encode(self.signature).decode("ascii")}
            ],
            "hash": self.content_hash,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransactionEnvelope":
        payload_type = str(data.get("payloadType") or "")
        payload = str(data.get("payload") or "")
        sigs = data.get("signatures")
        if not isinstance(sigs, list) or len(sigs) != 1 or not isinstance(sigs[0], dict):
            raise ValueError("envelope must carry exactly one signature")
        body = TransactionBody.from_dict(json.loads(base64.b64decode(payload).decode("utf-8")))
        content_hash = _sha256_hex(_signing_payload(payload_type, payload))
        claimed = data.get("hash")
        if claimed and claimed != content_hash:
            raise ValueError("envelope hash does not match payload")
        return cls(
            body=body,
            payload=payload,
            key_id=str(sigs[0].get("keyid", "")),
            signature=base64.b64decode(str(sigs[0].get("sig", ""))),
            content_hash=content_hash,
            payload_type=payload_type,
        )


def sign_transaction(body: TransactionBody, signer: Signer) -> TransactionEnvelope:
    """Serialize, sign and hash a transaction body."""
    if body.public_key != public_key_str(signer):
        raise ValueError(f"signer {signer.key_id!r} does not match body public key")
    payload_json = canonical_json_dumps(body.to_dict())
    payload_b64 = base64.b64encode(payload_json.encode("utf-8")).decode("ascii")
    msg = _signing_payload(PAYLOAD_TYPE, payload_b64)
    sig = signer.sign(msg)
    return TransactionEnvelope(
        body=body,
        payload=payload_b64,
        key_id=signer.key_id,
        signature=sig,
        content_hash=_sha256_hex(msg),
    )

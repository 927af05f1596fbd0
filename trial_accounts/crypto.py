"""
Trial Accounts Cryptography Module

Ed25519 key pairs for trial account access keys, plus the canonical encodings
used for hashing and signing transaction envelopes.

Private key material lives only inside ``Ed25519KeyPair`` and is never handed
out in the clear: callers can sign, verify, and export an *encrypted* PKCS8
PEM. There is no accessor for raw private bytes.
"""

import base64
import hashlib
import json
import math
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey, Ed25519PublicKey
)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _safe_hash_encode(components: List[str]) -> bytes:
    """
    Length-prefixed encoding for hash inputs.
    Prevents delimiter collision attacks.
    """
    result = b""
    for component in components:
        encoded = component.encode("utf-8")
        length_bytes = len(encoded).to_bytes(8, byteorder="big")
        result += length_bytes + encoded
    return result


# Canonical JSON
# - Enforce max depth to avoid pathological recursion
# - Normalize unicode to NFC so visually-identical args hash identically
# - Reject NaN/Infinity (not valid JSON for other verifiers)
_CANON_JSON_MAX_DEPTH = 64
_CANON_JSON_UNICODE_NORM = "NFC"


def _canonicalize_json(obj: Any, *, _path: str = "$", _depth: int = 0) -> Any:
    if _depth > _CANON_JSON_MAX_DEPTH:
        raise ValueError(f"max nesting depth exceeded at {_path}")

    if obj is None or isinstance(obj, (bool, int)):
        return obj
    if isinstance(obj, str):
        return unicodedata.normalize(_CANON_JSON_UNICODE_NORM, obj)
    if isinstance(obj, float):
        if not math.isfinite(obj):
            raise ValueError(f"non-finite float at {_path}")
        return obj

    if isinstance(obj, dict):
        out: Dict[str, Any] = {}
        for k, v in obj.items():
            if not isinstance(k, str):
                raise TypeError(f"dict key must be str at {_path}, got {type(k).__name__}")
            nk = unicodedata.normalize(_CANON_JSON_UNICODE_NORM, k)
            if nk in out:
                raise ValueError(f"duplicate dict key after unicode normalization at {_path}")
            out[nk] = _canonicalize_json(v, _path=f"{_path}['{nk}']", _depth=_depth + 1)
        return out

    if isinstance(obj, (list, tuple)):
        return [
            _canonicalize_json(v, _path=f"{_path}[{i}]", _depth=_depth + 1)
            for i, v in enumerate(obj)
        ]

    raise TypeError(f"non-JSON-serializable type {type(obj).__name__} at {_path}")


def canonical_json_dumps(obj: Any) -> str:
    """Canonical JSON for stable hashing/signing.

    - sort_keys: deterministic key order
    - separators: no whitespace ambiguity
    - ensure_ascii=False: preserve unicode deterministically (UTF-8)
    - strict: unknown types raise TypeError instead of being stringified
    """
    normalized = _canonicalize_json(obj)
    return json.dumps(
        normalized,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


@dataclass
class Ed25519KeyPair:
    """
    Ed25519 key pair for signing and verification.

    SECURITY: the private half is held as a ``cryptography`` key object and is
    excluded from repr/eq. Use ``to_encrypted_pem`` for durable storage.
    """
    key_id: str
    public_key_bytes: bytes
    _private_key: Optional[Ed25519PrivateKey] = field(default=None, repr=False, compare=False)

    @classmethod
    def generate(cls, key_id: str) -> "Ed25519KeyPair":
        """Generate a new Ed25519 key pair."""
        return cls._from_private_key(key_id, Ed25519PrivateKey.generate())

    @classmethod
    def from_encrypted_pem(cls, key_id: str, pem: bytes, passphrase: bytes) -> "Ed25519KeyPair":
        private_key = serialization.load_pem_private_key(pem, password=passphrase)
        if not isinstance(private_key, Ed25519PrivateKey):
            raise ValueError(f"Key {key_id} is not an Ed25519 private key")
        return cls._from_private_key(key_id, private_key)

    @classmethod
    def _from_private_key(cls, key_id: str, private_key: Ed25519PrivateKey) -> "Ed25519KeyPair":
        public_bytes = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw
        )
        return cls(key_id=key_id, public_key_bytes=public_bytes, _private_key=private_key)

    @property
    def public_key_hex(self) -> str:
        return self.public_key_bytes.hex()

    @property
    def public_key_str(self) -> str:
        """Ledger-style public key string: ``ed25519:<base64>``."""
        return "ed25519:" + base64.b64encode(self.public_key_bytes).decode("ascii")

    def sign(self, message: bytes) -> bytes:
        """Sign a message with the private key."""
        if self._private_key is None:
            raise ValueError(f"Key {self.key_id} has no private key - cannot sign")
        return self._private_key.sign(message)

    def verify(self, message: bytes, signature: bytes) -> bool:
        """Verify a signature with the public key."""
        try:
            public_key = Ed25519PublicKey.from_public_bytes(self.public_key_bytes)
            public_key.verify(signature, message)
            return True
        except (InvalidSignature, ValueError):
            return False

    def to_encrypted_pem(self, passphrase: bytes) -> bytes:
        """Export the private key as passphrase-encrypted PKCS8 PEM."""
        if self._private_key is None:
            raise ValueError(f"Key {self.key_id} has no private key - cannot export")
        if not passphrase:
            raise ValueError("passphrase is required; keys are never exported unencrypted")
        return self._private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.BestAvailableEncryption(passphrase),
        )


def create_key_pair(key_id: str) -> Ed25519KeyPair:
    """Create a new key pair (for testing or initial setup)."""
    return Ed25519KeyPair.generate(key_id)

"""
Envelope broadcasting with bounded waits for finality.

Submission is not safely idempotent on a ledger, so this module never retries
on its own. Every ambiguous outcome is surfaced to the caller:

- ``DuplicateSubmission``: the ledger already saw this signer's nonce. An
  earlier attempt may have landed; query the ledger before resubmitting.
- ``Timeout``: submission plus finality did not complete within one deadline.
  The node may or may not have accepted the transaction. Outcome unknown.

Cancelling a broadcast only stops the wait. A submitted transaction cannot be
retracted.

Resubmitting an envelope that this broadcaster already saw reach finality
(same content hash) returns the recorded receipt without touching the ledger.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import OrderedDict
from typing import List, Optional

from .config import TrialConfig
from .envelope import TransactionEnvelope
from .errors import CapacityExceeded, DuplicateSubmission, Timeout, TransactionFailed
from .ledger import LedgerGateway
from .ops_stats import OPS_STATS
from .responses import Receipt, parse_receipt

logger = logging.getLogger("trial_accounts")

# Substrings of contract panic messages that mean "over the granted capability".
_CAPACITY_MARKERS = (
    "exceeds maximum allowed",
    "exceeds cap",
    "transaction limit reached",
    "capacity exceeded",
)
_NONCE_MARKERS = ("nonce already used", "invalid nonce", "nonce too low")

# Confirmed receipts kept for idempotent resubmission.
_MAX_CONFIRMED = 4096


def classify_failure(envelope: TransactionEnvelope, receipt: Receipt) -> Exception:
    """Map a final failed receipt to the error taxonomy."""
    reason = (receipt.error or "transaction failed").strip()
    low = reason.lower()
    details = {
        "tx_hash": receipt.tx_hash,
        "signer_id": envelope.signer_id,
        "nonce": envelope.nonce,
        "method_name": envelope.body.method_name,
    }
    if any(m in low for m in _NONCE_MARKERS):
        return DuplicateSubmission(reason, **details)
    if any(m in low for m in _CAPACITY_MARKERS):
        return CapacityExceeded(reason, source="contract", **details)
    return TransactionFailed(reason, **details)


class Broadcaster:
    def __init__(self, gateway: LedgerGateway, config: Optional[TrialConfig] = None):
        self.gateway = gateway
        self.config = config or TrialConfig()
        self._lock = threading.Lock()
        # content_hash -> final success receipt, oldest first
        self._confirmed: "OrderedDict[str, Receipt]" = OrderedDict()

    def confirmed_receipt(self, content_hash: str) -> Optional[Receipt]:
        with self._lock:
            return self._confirmed.get(content_hash)

    def _remember(self, content_hash: str, receipt: Receipt) -> None:
        with self._lock:
            self._confirmed[content_hash] = receipt
            self._confirmed.move_to_end(content_hash)
            while len(self._confirmed) > _MAX_CONFIRMED:
                self._confirmed.popitem(last=False)

    async def broadcast(self, envelope: TransactionEnvelope, timeout: Optional[float] = None) -> Receipt:
        """Submit ``envelope`` and wait for finality, all within ``timeout`` seconds."""
        cached = self.confirmed_receipt(envelope.content_hash)
        if cached is not None:
            logger.debug("envelope %s already final; not resubmitting", envelope.content_hash)
            return cached

        wait_s = self.config.broadcast_timeout_seconds if timeout is None else float(timeout)
        # tx hash once the node has acknowledged the submission
        acked: List[str] = []

        try:
            receipt = await asyncio.wait_for(self._submit_and_wait(envelope, acked), timeout=wait_s)
        except asyncio.TimeoutError:
            OPS_STATS.record_broadcast("timeout")
            tx_hash = acked[0] if acked else None
            if tx_hash is None:
                logger.warning(
                    "submission of signer=%s nonce=%s not acknowledged after %.1fs; outcome unknown, not retrying",
                    envelope.signer_id, envelope.nonce, wait_s,
                )
                message = f"submission not acknowledged within {wait_s}s"
            else:
                logger.warning(
                    "no finality for tx=%s after %.1fs; outcome unknown, not retrying",
                    tx_hash, wait_s,
                )
                message = f"finality not observed within {wait_s}s"
            raise Timeout(
                message,
                tx_hash=tx_hash,
                signer_id=envelope.signer_id,
                nonce=envelope.nonce,
            ) from None
        except asyncio.CancelledError:
            logger.info("stopped waiting for tx=%s; submission stands", acked[0] if acked else "?")
            raise

        if receipt.status == "success":
            self._remember(envelope.content_hash, receipt)
            OPS_STATS.record_broadcast("success")
            return receipt

        err = classify_failure(envelope, receipt)
        OPS_STATS.record_broadcast("failure")
        logger.warning("tx=%s failed: %s", receipt.tx_hash, err)
        raise err

    async def _submit_and_wait(self, envelope: TransactionEnvelope, acked: List[str]) -> Receipt:
        receipt = parse_receipt(await self.gateway.submit_transaction(envelope))
        if receipt.status == "duplicate":
            OPS_STATS.record_broadcast("duplicate")
            logger.warning(
                "duplicate submission signer=%s nonce=%s tx=%s",
                envelope.signer_id, envelope.nonce, receipt.tx_hash,
            )
            raise DuplicateSubmission(
                receipt.error or "nonce already used",
                tx_hash=receipt.tx_hash,
                signer_id=envelope.signer_id,
                nonce=envelope.nonce,
            )
        acked.append(receipt.tx_hash)
        while not receipt.is_final:
            await asyncio.sleep(self.config.poll_interval_seconds)
            receipt = parse_receipt(await self.gateway.get_transaction(receipt.tx_hash))
        return receipt

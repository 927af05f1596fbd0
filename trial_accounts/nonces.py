"""Per-account monotonic nonce tracking.

Every signer (owner account or trial account) has its own counter. Allocation
is atomic: concurrent callers for the same account always receive distinct,
strictly increasing nonces. The ledger remains authoritative; ``observe``
folds in nonces seen on-chain so the local counter never falls behind.
"""

from __future__ import annotations

import threading
from typing import Dict, Optional


class NonceTracker:
    def __init__(self):
        self._lock = threading.Lock()
        # account_id -> last nonce used (allocated or observed)
        self._last: Dict[str, int] = {}

    def last(self, account_id: str) -> Optional[int]:
        with self._lock:
            return self._last.get(account_id)

    def is_seeded(self, account_id: str) -> bool:
        with self._lock:
            return account_id in self._last

    def seed(self, account_id: str, last_used: int) -> None:
        """Set the starting point from ledger state. Never moves backwards."""
        with self._lock:
            prev = self._last.get(account_id)
            if prev is None or last_used > prev:
                self._last[account_id] = int(last_used)

    observe = seed

    def allocate(self, account_id: str) -> int:
        """Reserve the next nonce for ``account_id``."""
        with self._lock:
            nxt = self._last.get(account_id, 0) + 1
            self._last[account_id] = nxt
            return nxt

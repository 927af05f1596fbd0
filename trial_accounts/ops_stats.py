"""Operational statistics for the provisioning pipeline.

Lightweight in-memory counters, no external dependencies.

Notes
-----
- Counters reset on process restart.
- Do not treat these as ledger truth. Receipts are the record of what landed.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class _Counters:
    deploys_total: int = 0
    deploys_skipped_total: int = 0
    trials_created_total: int = 0
    accounts_provisioned_total: int = 0
    accounts_failed_total: int = 0
    activations_by_outcome: Dict[str, int] = field(default_factory=dict)
    broadcasts_by_outcome: Dict[str, int] = field(default_factory=dict)
    capacity_rejections_total: int = 0


class OpsStats:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._start_monotonic = time.monotonic()
        self._c = _Counters()

    def _inc_map(self, m: Dict[str, int], key: str) -> None:
        m[key] = int(m.get(key, 0)) + 1

    def record_deploy(self, skipped: bool) -> None:
        with self._lock:
            if skipped:
                self._c.deploys_skipped_total += 1
            else:
                self._c.deploys_total += 1

    def record_trial_created(self) -> None:
        with self._lock:
            self._c.trials_created_total += 1

    def record_provisioning(self, provisioned: int, failed: int) -> None:
        with self._lock:
            self._c.accounts_provisioned_total += provisioned
            self._c.accounts_failed_total += failed

    def record_activation(self, outcome: str) -> None:
        with self._lock:
            self._inc_map(self._c.activations_by_outcome, outcome or "unknown")

    def record_broadcast(self, outcome: str) -> None:
        with self._lock:
            self._inc_map(self._c.broadcasts_by_outcome, outcome or "unknown")

    def record_capacity_rejection(self) -> None:
        with self._lock:
            self._c.capacity_rejections_total += 1

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            c = self._c
            return {
                "uptime_seconds": int(time.monotonic() - self._start_monotonic),
                "deploys_total": c.deploys_total,
                "deploys_skipped_total": c.deploys_skipped_total,
                "trials_created_total": c.trials_created_total,
                "accounts_provisioned_total": c.accounts_provisioned_total,
                "accounts_failed_total": c.accounts_failed_total,
                "activations_by_outcome": dict(c.activations_by_outcome),
                "broadcasts_by_outcome": dict(c.broadcasts_by_outcome),
                "capacity_rejections_total": c.capacity_rejections_total,
            }


OPS_STATS = OpsStats()

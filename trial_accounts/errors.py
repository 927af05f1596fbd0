"""Stable error taxonomy for trial account provisioning.

Every failure raised by the lifecycle components is a ``TrialError`` carrying:
- a stable ``code`` string suitable for programmatic handling
- a ``retryable`` flag telling the caller whether resubmission can help
- structured ``details`` for debugging without parsing messages

Batch operations never raise for a single bad item; they collect these errors
per item and hand them back alongside the partial result.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


# Deployment
TRIAL_E_CONFLICT = "TRIAL_E_CONFLICT"

# Trial definition
TRIAL_E_INVALID_SPEC = "TRIAL_E_INVALID_SPEC"
TRIAL_E_TRIAL_EXPIRED = "TRIAL_E_TRIAL_EXPIRED"

# Batches
TRIAL_E_PARTIAL_BATCH = "TRIAL_E_PARTIAL_BATCH"

# Account lifecycle
TRIAL_E_NOT_REGISTERED = "TRIAL_E_NOT_REGISTERED"
TRIAL_E_ALREADY_ACTIVE = "TRIAL_E_ALREADY_ACTIVE"
TRIAL_E_NOT_ACTIVE = "TRIAL_E_NOT_ACTIVE"
TRIAL_E_INVALID_TRANSITION = "TRIAL_E_INVALID_TRANSITION"
TRIAL_E_UNKNOWN_ACCOUNT = "TRIAL_E_UNKNOWN_ACCOUNT"
TRIAL_E_UNKNOWN_TRIAL = "TRIAL_E_UNKNOWN_TRIAL"
TRIAL_E_KEY_CONFLICT = "TRIAL_E_KEY_CONFLICT"

# Actions
TRIAL_E_CAPACITY_EXCEEDED = "TRIAL_E_CAPACITY_EXCEEDED"
TRIAL_E_ACTION_NOT_ALLOWED = "TRIAL_E_ACTION_NOT_ALLOWED"

# Broadcast / ledger
TRIAL_E_DUPLICATE_SUBMISSION = "TRIAL_E_DUPLICATE_SUBMISSION"
TRIAL_E_TIMEOUT = "TRIAL_E_TIMEOUT"
TRIAL_E_TX_FAILED = "TRIAL_E_TX_FAILED"
TRIAL_E_LEDGER = "TRIAL_E_LEDGER"
TRIAL_E_MALFORMED_RESPONSE = "TRIAL_E_MALFORMED_RESPONSE"


class TrialError(Exception):
    """Base exception with a stable error code."""

    code: str = TRIAL_E_LEDGER
    retryable: bool = False

    def __init__(self, message: str, *, retryable: Optional[bool] = None, **details: Any):
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = bool(retryable)
        self.details: Dict[str, Any] = details

    def as_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "retryable": bool(self.retryable),
        }
        if self.details:
            d["details"] = self.details
        return d

    def __str__(self) -> str:
        # Keep message readable; details are available via .as_dict()
        return f"{self.code}: {self.message}"


class ConflictError(TrialError):
    """Deployment target already runs different code. Fatal."""
    code = TRIAL_E_CONFLICT


class InvalidTrialSpec(TrialError):
    """Trial definition rejected before any transaction was built."""
    code = TRIAL_E_INVALID_SPEC


class TrialExpired(TrialError):
    code = TRIAL_E_TRIAL_EXPIRED


class PartialBatchFailure(TrialError):
    """Some items of a provisioning/activation batch failed.

    ``failed_indices`` lists the positions (in the caller's request) that were
    not applied. The caller resubmits those explicitly.
    """
    code = TRIAL_E_PARTIAL_BATCH
    retryable = True

    def __init__(self, message: str, *, failed_indices: List[int], **details: Any):
        super().__init__(message, failed_indices=list(failed_indices), **details)
        self.failed_indices = list(failed_indices)


class NotRegistered(TrialError):
    code = TRIAL_E_NOT_REGISTERED


class AlreadyActive(TrialError):
    """Informational: activation of an active account is a success."""
    code = TRIAL_E_ALREADY_ACTIVE


class AccountNotActive(TrialError):
    code = TRIAL_E_NOT_ACTIVE


class InvalidTransition(TrialError):
    code = TRIAL_E_INVALID_TRANSITION


class UnknownAccount(TrialError):
    code = TRIAL_E_UNKNOWN_ACCOUNT


class UnknownTrial(TrialError):
    code = TRIAL_E_UNKNOWN_TRIAL


class KeyConflict(TrialError):
    code = TRIAL_E_KEY_CONFLICT


class CapacityExceeded(TrialError):
    """Action would exceed the account's remaining capability. Fatal for the action only."""
    code = TRIAL_E_CAPACITY_EXCEEDED


class ActionNotAllowed(TrialError):
    code = TRIAL_E_ACTION_NOT_ALLOWED


class DuplicateSubmission(TrialError):
    """The ledger reports the envelope's nonce as already used.

    This may mean an earlier attempt landed. Query the ledger before deciding
    to resubmit.
    """
    code = TRIAL_E_DUPLICATE_SUBMISSION


class Timeout(TrialError):
    """Finality was not observed in time. The outcome is unknown."""
    code = TRIAL_E_TIMEOUT


class TransactionFailed(TrialError):
    code = TRIAL_E_TX_FAILED


class LedgerError(TrialError):
    code = TRIAL_E_LEDGER
    retryable = True


class MalformedResponse(TrialError):
    code = TRIAL_E_MALFORMED_RESPONSE

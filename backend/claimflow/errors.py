"""Error hierarchy for claimflow.

Input problems are never raised: validation and policy failures travel as
data on the claim. Exceptions are reserved for the orchestrator (step faults)
and the store (I/O faults, cursor and precondition failures).
"""

from __future__ import annotations
from typing import Iterable, Optional


class ClaimflowError(Exception):
    """Base exception; every subclass carries a stable ``code``."""

    code = "CLAIMFLOW_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class ConfigError(ClaimflowError):
    code = "CONFIG_ERROR"


class TransientStepError(ClaimflowError):
    """A step failed in a way that is worth re-invoking."""

    code = "TRANSIENT_STEP_FAULT"

    def __init__(self, step: str, message: str):
        super().__init__(f"{step}: {message}")
        self.step = step


class StoreError(ClaimflowError):
    """The backing store could not complete an operation."""

    code = "STORE_ERROR"

    def __init__(self, message: str, operation: str):
        super().__init__(f"Store {operation} failed: {message}")
        self.operation = operation


class InvalidCursorError(ClaimflowError, ValueError):
    code = "INVALID_CURSOR"

    def __init__(self, cursor: str):
        super().__init__("Cursor is not valid for this query")
        self.cursor = cursor


class ConditionFailedError(ClaimflowError):
    """merge_update precondition did not hold for the stored record."""

    code = "CONDITION_FAILED"

    def __init__(self, identity: str, current_status: Optional[str], allowed: Iterable[str]):
        super().__init__(
            f"Claim {identity} has status {current_status}, expected one of {', '.join(allowed)}"
        )
        self.identity = identity
        self.current_status = current_status

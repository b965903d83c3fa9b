"""Pluggable fault injection for workflow steps.

The orchestrator calls ``injector.check(step, claim)`` at the top of each
retryable step. An injector signals a simulated outage by raising
``TransientStepError``; the step's retry policy then takes over exactly as
it would for a real downstream failure.
"""

from __future__ import annotations
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping

import structlog

from .config import ChaosSettings
from .errors import TransientStepError

logger = structlog.get_logger(__name__)


class FaultInjector:
    """Default: never injects anything."""

    def check(self, step: str, claim: Mapping[str, Any]) -> None:
        return None


NO_FAULTS = FaultInjector()


def amount_cents(amount: Any) -> int:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        return -1
    if not value.is_finite():
        return -1
    return int((value * 100) % 100)


class CentsTriggerInjector(FaultInjector):
    """Fails the given steps for every claim whose amount ends in ``cents``.

    Deterministic: the same claim always fails, so retries are exhausted and
    the compensation path can be exercised on demand (e.g. ``100.13``).
    """

    def __init__(self, cents: int = 13, steps: Iterable[str] = ("risk_score",)):
        self.cents = cents
        self.steps = frozenset(steps)

    def check(self, step: str, claim: Mapping[str, Any]) -> None:
        if step in self.steps and amount_cents(claim.get("amount")) == self.cents:
            logger.warning("chaos_fault_injected", step=step, identity=claim.get("identity"))
            raise TransientStepError(step, f"CHAOS_INJECTION: simulated failure for amount {claim.get('amount')}")


def injector_from_settings(settings: ChaosSettings) -> FaultInjector:
    if not settings.enabled:
        return NO_FAULTS
    return CentsTriggerInjector(settings.trigger_cents, settings.steps)

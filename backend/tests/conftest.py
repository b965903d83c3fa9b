from datetime import datetime, timedelta, timezone

import pytest

from claimflow.config import Settings
from claimflow.service import ClaimService
from claimflow.store import InMemoryClaimStore


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class CountingInjector:
    """Fails the named step on its first ``failures`` calls."""

    def __init__(self, step: str, failures: int):
        self.step = step
        self.failures = failures
        self.calls = {}

    def check(self, step, claim):
        from claimflow.errors import TransientStepError
        self.calls[step] = self.calls.get(step, 0) + 1
        if step == self.step and self.calls[step] <= self.failures:
            raise TransientStepError(step, "simulated outage")


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 2, 8, 10, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(clock):
    return InMemoryClaimStore(page_size=3, clock=clock)


@pytest.fixture
def service(settings, store, clock):
    return ClaimService(settings, store=store, clock=clock)


@pytest.fixture
def lunch():
    return {
        "owner_id": "EMP-001",
        "amount": 45.00,
        "category": "meals",
        "description": "Team lunch at downtown restaurant",
        "evidence_provided": True,
    }


@pytest.fixture
def counting_injector():
    return CountingInjector

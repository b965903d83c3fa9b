"""Boundary-facing operations: submit, look up, page, manual review.

Callers (an API layer, a review UI, admin scripts) hand in already-sanitised
attributes and get plain results back. Manual-review failures are returned,
never raised, with messages that tell "not found", "not reviewable" and
"bad input" apart.
"""

from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional
import uuid

import structlog

from .config import Settings
from .errors import ConditionFailedError, StoreError
from .faults import FaultInjector, injector_from_settings
from .graph import ClaimWorkflow
from .identity import claim_identity, isoformat, parse_timestamp, utc_now
from .state import APPROVED, REJECTED, REVIEWABLE_STATUSES, ClaimAttributes
from .store import ClaimStore, InMemoryClaimStore, Page, Record

logger = structlog.get_logger(__name__)

MANUAL_OUTCOMES = (APPROVED, REJECTED)


@dataclass
class SubmitResult:
    identity: str
    outcome: str
    status: str
    created: bool
    record: Record = field(default_factory=dict)
    storage_error: Optional[str] = None


@dataclass
class ManualDecisionResult:
    success: bool
    record: Optional[Record] = None
    error: Optional[str] = None


def build_store(settings: Settings, clock: Callable = utc_now) -> ClaimStore:
    if settings.storage.url:
        from .sql_store import SqlClaimStore
        return SqlClaimStore(settings.storage.url, page_size=settings.storage.page_size, clock=clock)
    return InMemoryClaimStore(page_size=settings.storage.page_size, clock=clock)


class ClaimService:
    def __init__(
        self,
        settings: Settings,
        store: Optional[ClaimStore] = None,
        injector: Optional[FaultInjector] = None,
        clock: Callable = utc_now,
    ):
        self.settings = settings
        self.clock = clock
        self.store = store if store is not None else build_store(settings, clock)
        injector = injector if injector is not None else injector_from_settings(settings.chaos)
        self.workflow = ClaimWorkflow(settings, self.store, injector, clock)

    def prepare(self, attributes: Mapping[str, Any]) -> ClaimAttributes:
        """Stamp submission time and identity onto a copy of the attributes."""
        claim: Dict[str, Any] = dict(attributes)
        submitted = parse_timestamp(claim.get("submitted_at")) or self.clock()
        claim["submitted_at"] = isoformat(submitted)
        claim["identity"] = claim_identity(claim, submitted)
        claim.setdefault("correlation_id", uuid.uuid4().hex)
        return claim  # type: ignore[return-value]

    def submit(self, attributes: Mapping[str, Any]) -> SubmitResult:
        claim = self.prepare(attributes)
        logger.info(
            "claim_submitted", identity=claim["identity"],
            owner_id=claim.get("owner_id"), correlation_id=claim["correlation_id"],
        )
        state = self.workflow.run(claim)
        record = state["record"]
        return SubmitResult(
            identity=claim["identity"],
            outcome=state["decision"]["outcome"],
            status=record["status"],
            created=bool(state.get("created")),
            record=record,
            storage_error=state.get("storage_error"),
        )

    def submit_many(self, claims: List[Mapping[str, Any]], max_workers: int = 4) -> List[SubmitResult]:
        """Run each claim on its own worker thread; results keep input order."""
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            return list(pool.map(self.submit, claims))

    def get_by_identity(self, identity: str) -> Optional[Record]:
        return self.store.get(identity)

    def query_by_owner(self, owner_id: str, cursor: Optional[str] = None) -> Page:
        return self.store.query_by_owner(owner_id, cursor)

    def apply_manual_decision(
        self,
        identity: str,
        decision: Any,
        reason: Any,
        reviewer: Optional[str] = None,
    ) -> ManualDecisionResult:
        logger.info("manual_decision_requested", identity=identity, decision=decision, reviewer=reviewer)

        if decision not in MANUAL_OUTCOMES:
            return ManualDecisionResult(False, error="decision must be APPROVED or REJECTED")

        min_length = self.settings.workflow.min_review_reason_length
        if not isinstance(reason, str) or len(reason.strip()) < min_length:
            return ManualDecisionResult(False, error=f"reason must be at least {min_length} characters")

        decided_at = isoformat(self.clock())
        fields = {
            "status": decision,
            "decision": {
                "outcome": decision,
                "reasons": [reason.strip()],
                "decided_at": decided_at,
                "manual_override": True,
                "reviewer": (reviewer or "").strip() or "unknown",
            },
        }
        try:
            updated = self.store.merge_update(identity, fields, only_if_status=REVIEWABLE_STATUSES)
        except ConditionFailedError as e:
            return ManualDecisionResult(
                False, error=f"Claim {identity} is not pending review (current status: {e.current_status})",
            )
        except StoreError as e:
            logger.error("manual_decision_failed", identity=identity, error=str(e))
            return ManualDecisionResult(False, error="Failed to update claim record")

        if updated is None:
            return ManualDecisionResult(False, error=f"Claim {identity} not found")

        logger.info("manual_decision_applied", identity=identity, outcome=decision, reviewer=fields["decision"]["reviewer"])
        return ManualDecisionResult(True, record=updated)

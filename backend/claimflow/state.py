from typing import Annotated, TypedDict, Any, Dict, Iterable, List, Mapping, Optional
import operator

# outcomes
APPROVED = "APPROVED"
REJECTED = "REJECTED"
NEEDS_REVIEW = "NEEDS_REVIEW"
FAILED = "FAILED"
OUTCOMES = (APPROVED, REJECTED, NEEDS_REVIEW, FAILED)

# record-only status: a NEEDS_REVIEW claim held for a reviewer
PENDING_REVIEW = "PENDING_REVIEW"
REVIEWABLE_STATUSES = (NEEDS_REVIEW, PENDING_REVIEW)

# risk levels
LOW = "LOW"
MEDIUM = "MEDIUM"
HIGH = "HIGH"

# workflow stages
STARTED = "STARTED"
VALIDATED_OK = "VALIDATED_OK"
VALIDATED_FAIL = "VALIDATED_FAIL"
CHECKING = "CHECKING"
FAULTED = "FAULTED"
DECIDED = "DECIDED"
PERSISTED = "PERSISTED"

CLAIM_FIELDS = ("owner_id", "amount", "category", "description", "evidence_provided")


class ClaimAttributes(TypedDict, total=False):
    identity: str
    owner_id: str
    amount: Any
    category: str
    description: str
    evidence_provided: bool
    submitted_at: str
    correlation_id: str


class ValidationResult(TypedDict):
    passed: bool
    errors: List[str]
    checked_at: str


class CheckResult(TypedDict, total=False):
    passed: bool
    violations: List[str]
    hard_limit_exceeded: bool
    checked_at: str


class RiskAssessment(TypedDict):
    score: int
    level: str
    flags: List[str]
    analyzed_at: str


class Decision(TypedDict):
    outcome: str
    reasons: List[str]
    decided_at: str
    manual_override: bool
    reviewer: Optional[str]


class WorkflowFault(TypedDict):
    kind: str
    cause: str
    step: Optional[str]


class PartialResult(TypedDict, total=False):
    # one per parallel branch
    policy_check: CheckResult
    risk_assessment: RiskAssessment


def merge_partials(partials: Iterable[Any]) -> PartialResult:
    merged: Dict[str, Any] = {}
    for partial in partials:
        if isinstance(partial, Mapping):
            merged.update(partial)
    return merged  # type: ignore[return-value]


def merge_checks(left: Optional[PartialResult], right: Optional[PartialResult]) -> PartialResult:
    return merge_partials([left, right])


class ClaimState(TypedDict, total=False):
    # input claim, never rewritten by a node
    claim: ClaimAttributes

    validation: ValidationResult
    checks: Annotated[PartialResult, merge_checks]
    fault: WorkflowFault

    # decision + durable projection
    decision: Decision
    record: Dict[str, Any]

    # persistence outcome
    created: bool
    storage_error: Optional[str]

    stages: Annotated[List[str], operator.add]

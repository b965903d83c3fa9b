"""Decision matrix for a fully checked claim.

Priority order, first match wins:

    0. workflow fault                 -> FAILED
    1. validation failed or missing   -> REJECTED
    2. hard category limit exceeded   -> REJECTED
    3. any policy violation, or risk
       level MEDIUM / HIGH            -> NEEDS_REVIEW
    4. otherwise                      -> APPROVED

Only a missing validation result defaults to rejection. Missing policy or
risk results count as passed / LOW.
"""

from __future__ import annotations
from typing import Any, List, Mapping, Optional, Tuple

from .state import (
    APPROVED, FAILED, HIGH, LOW, MEDIUM, NEEDS_REVIEW, REJECTED,
    Decision, WorkflowFault, merge_partials,
)

HARD_LIMIT_MARKER = "exceeds"


def _hard_limit_exceeded(policy: Mapping[str, Any]) -> bool:
    if "hard_limit_exceeded" in policy:
        return bool(policy["hard_limit_exceeded"])
    # records written before the typed flag existed
    return any(HARD_LIMIT_MARKER in str(v).lower() for v in policy.get("violations") or [])


def evaluate(claim: Mapping[str, Any], fault: Optional[WorkflowFault] = None) -> Tuple[str, List[str]]:
    if fault:
        return FAILED, [
            f"Workflow execution error: {fault.get('kind') or 'WorkflowExecutionError'}",
            fault.get("cause") or "Unknown cause",
        ]

    validation = claim.get("validation") or {"passed": False, "errors": []}
    policy = claim.get("policy_check") or {"passed": True, "violations": []}
    risk = claim.get("risk_assessment") or {"score": 0, "level": LOW, "flags": []}

    if not validation.get("passed"):
        return REJECTED, ["failed validation", *validation.get("errors", [])]

    violations = list(policy.get("violations") or [])
    if _hard_limit_exceeded(policy):
        return REJECTED, ["exceeds spending limit", *violations]

    reasons: List[str] = []
    if not policy.get("passed", True) or violations:
        reasons.append("policy violations require manual review")
        reasons.extend(violations)

    level = risk.get("level", LOW)
    if level in (MEDIUM, HIGH):
        reasons.append(f"risk level {level} (score {risk.get('score', 0)})")
        reasons.extend(risk.get("flags", []))

    if reasons:
        return NEEDS_REVIEW, reasons
    return APPROVED, ["all checks passed"]


def decide(claim: Mapping[str, Any], fault: Optional[WorkflowFault] = None, decided_at: str = "") -> Decision:
    outcome, reasons = evaluate(claim, fault)
    return {
        "outcome": outcome,
        "reasons": reasons,
        "decided_at": decided_at,
        "manual_override": False,
        "reviewer": None,
    }

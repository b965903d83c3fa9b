from __future__ import annotations
from typing import Any, Callable, Dict

import structlog
from langgraph.graph import StateGraph, START, END
from langgraph.types import RetryPolicy

from .config import Settings
from .decision import decide
from .errors import StoreError, TransientStepError
from .faults import NO_FAULTS, FaultInjector
from .identity import isoformat, utc_now
from .risk import score_risk
from .rules import check_policy, policy_result, validate
from .state import (
    CHECKING, DECIDED, FAULTED, NEEDS_REVIEW, PENDING_REVIEW, PERSISTED, STARTED,
    VALIDATED_FAIL, VALIDATED_OK, ClaimAttributes, ClaimState, merge_partials,
)
from .store import ClaimStore

logger = structlog.get_logger(__name__)

FAULT_KIND = "WorkflowExecutionError"


def _retry(attempts: int, settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=attempts,
        initial_interval=settings.retry.backoff_seconds,
        backoff_factor=2.0,
        jitter=settings.retry.jitter,
        retry_on=TransientStepError,
    )


def build_nodes(
    settings: Settings,
    store: ClaimStore,
    injector: FaultInjector = NO_FAULTS,
    clock: Callable = utc_now,
) -> Dict[str, Callable[[ClaimState], Dict[str, Any]]]:
    def now() -> str:
        return isoformat(clock())

    def validate_claim(state: ClaimState) -> Dict[str, Any]:
        claim = state["claim"]
        errors = validate(claim, settings.validation)
        passed = not errors
        logger.info("claim_validated", identity=claim.get("identity"), passed=passed, errors=errors)
        return {
            "validation": {"passed": passed, "errors": errors, "checked_at": now()},
            "stages": [VALIDATED_OK if passed else VALIDATED_FAIL],
        }

    def begin_checks(state: ClaimState) -> Dict[str, Any]:
        return {"stages": [CHECKING]}

    def policy_check(state: ClaimState) -> Dict[str, Any]:
        claim = state["claim"]
        injector.check("policy_check", claim)
        violations = check_policy(
            claim["amount"], claim["category"], claim["evidence_provided"], settings.policy,
        )
        logger.info("policy_checked", identity=claim.get("identity"), violations=len(violations))
        return {"checks": {"policy_check": policy_result(violations, now())}}

    def risk_score(state: ClaimState) -> Dict[str, Any]:
        claim = state["claim"]
        injector.check("risk_score", claim)
        assessment = score_risk(
            claim["amount"], claim["category"], claim["description"], claim["evidence_provided"],
            settings.risk, analyzed_at=now(),
        )
        logger.info(
            "risk_scored", identity=claim.get("identity"),
            score=assessment["score"], level=assessment["level"],
        )
        return {"checks": {"risk_assessment": assessment}}

    def decide_claim(state: ClaimState) -> Dict[str, Any]:
        attached = {k: state[k] for k in ("validation", "fault") if k in state}
        record = merge_partials([state["claim"], attached, state.get("checks")])
        decided_at = now()
        decision = decide(record, state.get("fault"), decided_at=decided_at)

        status = decision["outcome"]
        if status == NEEDS_REVIEW and settings.workflow.hold_for_review:
            status = PENDING_REVIEW
        record.update(decision=decision, status=status, updated_at=decided_at)

        logger.info(
            "claim_decided", identity=record.get("identity"),
            outcome=decision["outcome"], status=status,
        )
        return {"decision": decision, "record": record, "stages": [DECIDED]}

    def persist(state: ClaimState) -> Dict[str, Any]:
        record = dict(state["record"])
        try:
            created = store.insert(record)
        except StoreError as e:
            # the decision stands; the failure travels with the record
            logger.error("claim_persist_failed", identity=record.get("identity"), error=str(e))
            record["storage_error"] = str(e)
            return {"record": record, "created": False, "storage_error": str(e)}
        if not created:
            logger.info("claim_already_persisted", identity=record.get("identity"))
        return {"created": created, "stages": [PERSISTED]}

    return {
        "validate": validate_claim,
        "begin_checks": begin_checks,
        "policy_check": policy_check,
        "risk_score": risk_score,
        "decide": decide_claim,
        "persist": persist,
    }


def route_after_validation(state: ClaimState) -> str:
    # invalid claims skip straight to the decision; nothing else runs
    if state["validation"]["passed"]:
        return "checks"
    return "decide"


def build_graph(
    settings: Settings,
    store: ClaimStore,
    injector: FaultInjector = NO_FAULTS,
    clock: Callable = utc_now,
):
    nodes = build_nodes(settings, store, injector, clock)

    g = StateGraph(ClaimState)
    g.add_node("Validate", nodes["validate"])
    g.add_node("BeginChecks", nodes["begin_checks"])
    g.add_node("PolicyCheck", nodes["policy_check"],
               retry_policy=_retry(settings.retry.policy_attempts, settings))
    g.add_node("RiskScore", nodes["risk_score"],
               retry_policy=_retry(settings.retry.risk_attempts, settings))
    g.add_node("Decide", nodes["decide"])
    g.add_node("Persist", nodes["persist"])

    g.add_edge(START, "Validate")
    g.add_conditional_edges("Validate", route_after_validation, {"checks": "BeginChecks", "decide": "Decide"})
    # fan out, then join before deciding
    g.add_edge("BeginChecks", "PolicyCheck")
    g.add_edge("BeginChecks", "RiskScore")
    g.add_edge(["PolicyCheck", "RiskScore"], "Decide")
    g.add_edge("Decide", "Persist")
    g.add_edge("Persist", END)

    return g.compile()


def build_compensation_graph(
    settings: Settings,
    store: ClaimStore,
    clock: Callable = utc_now,
):
    nodes = build_nodes(settings, store, NO_FAULTS, clock)

    g = StateGraph(ClaimState)
    g.add_node("Decide", nodes["decide"])
    g.add_node("Persist", nodes["persist"])

    g.add_edge(START, "Decide")
    g.add_edge("Decide", "Persist")
    g.add_edge("Persist", END)

    return g.compile()


class ClaimWorkflow:
    """Runs one claim to a persisted decision.

    Any exception escaping the main graph (a step that exhausted its retries,
    or an unexpected error) routes the *original* claim through the
    compensation graph, which records a FAILED decision.
    """

    def __init__(
        self,
        settings: Settings,
        store: ClaimStore,
        injector: FaultInjector = NO_FAULTS,
        clock: Callable = utc_now,
    ):
        self.settings = settings
        self.store = store
        self.graph = build_graph(settings, store, injector, clock)
        self.compensation = build_compensation_graph(settings, store, clock)

    def run(self, claim: ClaimAttributes) -> ClaimState:
        log = logger.bind(identity=claim.get("identity"), correlation_id=claim.get("correlation_id"))
        try:
            return self.graph.invoke({"claim": dict(claim), "stages": [STARTED]})
        except Exception as e:
            log.error("workflow_step_failed", error=str(e), exc_info=True)
            fault = {"kind": FAULT_KIND, "cause": str(e), "step": getattr(e, "step", None)}
            return self.compensation.invoke({"claim": dict(claim), "fault": fault, "stages": [STARTED, FAULTED]})

from claimflow.decision import decide, evaluate
from claimflow.state import merge_checks, merge_partials

PASSED = {"passed": True, "errors": [], "checked_at": ""}
CLEAN_POLICY = {"passed": True, "violations": [], "hard_limit_exceeded": False, "checked_at": ""}
LOW_RISK = {"score": 10, "level": "LOW", "flags": [], "analyzed_at": ""}


def claim(**attached):
    base = {"identity": "EXP-TEST001", "owner_id": "EMP-001", "amount": 45.0, "category": "meals"}
    base.update(attached)
    return base


def test_all_clear_is_approved():
    decision = decide(claim(validation=PASSED, policy_check=CLEAN_POLICY, risk_assessment=LOW_RISK), decided_at="t")
    assert decision == {
        "outcome": "APPROVED",
        "reasons": ["all checks passed"],
        "decided_at": "t",
        "manual_override": False,
        "reviewer": None,
    }


def test_fault_wins_over_everything():
    fault = {"kind": "WorkflowExecutionError", "cause": "risk_score: boom", "step": "risk_score"}
    outcome, reasons = evaluate(claim(validation=PASSED), fault)
    assert outcome == "FAILED"
    assert reasons == ["Workflow execution error: WorkflowExecutionError", "risk_score: boom"]


def test_missing_validation_rejects():
    outcome, reasons = evaluate(claim())
    assert outcome == "REJECTED"
    assert reasons == ["failed validation"]


def test_validation_failure_hides_other_results():
    failed = {"passed": False, "errors": ["amount must be a number"], "checked_at": ""}
    hard = {"passed": False, "violations": ["Amount $500.00 exceeds meals limit of $75.00"], "hard_limit_exceeded": True}
    outcome, reasons = evaluate(claim(validation=failed, policy_check=hard, risk_assessment={"level": "HIGH", "score": 90, "flags": ["x"]}))
    assert outcome == "REJECTED"
    assert reasons == ["failed validation", "amount must be a number"]


def test_hard_limit_rejects_even_with_low_risk():
    policy = {
        "passed": False,
        "violations": ["Amount $200.00 exceeds meals limit of $75.00"],
        "hard_limit_exceeded": True,
    }
    outcome, reasons = evaluate(claim(validation=PASSED, policy_check=policy, risk_assessment=LOW_RISK))
    assert outcome == "REJECTED"
    assert reasons[0] == "exceeds spending limit"
    assert "exceeds meals limit" in reasons[1]


def test_legacy_marker_still_detected():
    policy = {"passed": False, "violations": ["Amount $5000.00 exceeds meals limit of $75.00"]}
    assert evaluate(claim(validation=PASSED, policy_check=policy))[0] == "REJECTED"


def test_soft_violation_needs_review():
    policy = {
        "passed": False,
        "violations": ["Category 'client_entertainment' requires additional review for amounts over $150.00"],
        "hard_limit_exceeded": False,
    }
    outcome, reasons = evaluate(claim(validation=PASSED, policy_check=policy, risk_assessment=LOW_RISK))
    assert outcome == "NEEDS_REVIEW"
    assert reasons[1] == policy["violations"][0]


def test_elevated_risk_needs_review():
    risk = {"score": 45, "level": "MEDIUM", "flags": ["keyword: 'test'"], "analyzed_at": ""}
    outcome, reasons = evaluate(claim(validation=PASSED, policy_check=CLEAN_POLICY, risk_assessment=risk))
    assert outcome == "NEEDS_REVIEW"
    assert reasons == ["risk level MEDIUM (score 45)", "keyword: 'test'"]


def test_policy_and_risk_reasons_both_appended():
    policy = {"passed": False, "violations": ["Receipt required for expenses over $25.00"], "hard_limit_exceeded": False}
    risk = {"score": 65, "level": "HIGH", "flags": ["generic"], "analyzed_at": ""}
    outcome, reasons = evaluate(claim(validation=PASSED, policy_check=policy, risk_assessment=risk))
    assert outcome == "NEEDS_REVIEW"
    assert reasons == [
        "policy violations require manual review",
        "Receipt required for expenses over $25.00",
        "risk level HIGH (score 65)",
        "generic",
    ]


def test_missing_policy_and_risk_default_permissively():
    assert evaluate(claim(validation=PASSED))[0] == "APPROVED"


def test_merge_partials():
    merged = merge_partials([
        {"policy_check": CLEAN_POLICY},
        None,
        "not a mapping",
        42,
        {"risk_assessment": LOW_RISK},
    ])
    assert merged == {"policy_check": CLEAN_POLICY, "risk_assessment": LOW_RISK}


def test_merge_partials_last_write_wins():
    assert merge_partials([{"a": 1, "b": 1}, {"b": 2}]) == {"a": 1, "b": 2}
    assert merge_partials([]) == {}


def test_merge_checks_reducer_joins_branches():
    left = merge_checks(None, {"policy_check": CLEAN_POLICY})
    assert merge_checks(left, {"risk_assessment": LOW_RISK}) == {
        "policy_check": CLEAN_POLICY, "risk_assessment": LOW_RISK,
    }

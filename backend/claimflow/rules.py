from __future__ import annotations
from typing import List, Dict, Any, Mapping, NamedTuple
import math

from .config import ValidationRules, PolicyRules
from .state import CLAIM_FIELDS

# violation kinds
HARD_LIMIT = "HARD_LIMIT"
EVIDENCE = "EVIDENCE"
SCRUTINY = "SCRUTINY"


class Violation(NamedTuple):
    kind: str
    message: str


def is_number(value: Any) -> bool:
    # bool is an int subclass but never a valid amount
    if isinstance(value, (bool, str)):
        return False
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError, OverflowError):
        return False


def validate(claim: Mapping[str, Any], rules: ValidationRules) -> List[str]:
    errors: List[str] = []

    for name in CLAIM_FIELDS:
        if claim.get(name) is None:
            errors.append(f"Missing required field: {name}")

    # missing fields would only produce misleading follow-up errors
    if errors:
        return errors

    owner_id = claim["owner_id"]
    if not isinstance(owner_id, str) or not owner_id.strip():
        errors.append("owner_id must be a non-empty string")

    amount = claim["amount"]
    if not is_number(amount):
        errors.append("amount must be a number")
    elif amount <= 0:
        errors.append("amount must be greater than zero")
    elif amount > rules.max_amount:
        errors.append(f"amount exceeds maximum allowed ({rules.max_amount:g})")

    category = claim["category"]
    if category not in rules.categories:
        errors.append(f"Invalid category '{category}'. Allowed: {', '.join(rules.categories)}")

    description = claim["description"]
    if not isinstance(description, str) or len(description.strip()) < rules.min_description_length:
        errors.append(f"description must be at least {rules.min_description_length} characters")

    if not isinstance(claim["evidence_provided"], bool):
        errors.append("evidence_provided must be a boolean")

    return errors


def check_policy(amount: float, category: str, evidence_provided: bool, rules: PolicyRules) -> List[Violation]:
    """Evaluate every policy rule; several violations may apply at once."""
    violations: List[Violation] = []
    amount = float(amount)

    limit = rules.category_limits.get(category)
    if limit is not None and amount > limit:
        violations.append(Violation(
            HARD_LIMIT, f"Amount ${amount:.2f} exceeds {category} limit of ${limit:.2f}"
        ))

    if amount > rules.evidence_required_above and not evidence_provided:
        violations.append(Violation(
            EVIDENCE, f"Receipt required for expenses over ${rules.evidence_required_above:.2f}"
        ))

    scrutiny = rules.scrutiny_thresholds.get(category)
    if scrutiny is not None and amount > scrutiny:
        violations.append(Violation(
            SCRUTINY, f"Category '{category}' requires additional review for amounts over ${scrutiny:.2f}"
        ))

    return violations


def policy_result(violations: List[Violation], checked_at: str) -> Dict[str, Any]:
    return {
        "passed": not violations,
        "violations": [v.message for v in violations],
        "hard_limit_exceeded": any(v.kind == HARD_LIMIT for v in violations),
        "checked_at": checked_at,
    }

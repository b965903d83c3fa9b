from __future__ import annotations
from typing import Any, List, Tuple

from .config import RiskRules
from .rules import is_number
from .state import HIGH, LOW, MEDIUM, RiskAssessment

MAX_SCORE = 100


def clamp_score(score: int) -> int:
    return max(0, min(MAX_SCORE, int(score)))


def risk_level(score: int, rules: RiskRules) -> str:
    if score >= rules.high_threshold:
        return HIGH
    if score >= rules.medium_threshold:
        return MEDIUM
    return LOW


def _amount_pattern_rules(amount: float, rules: RiskRules) -> List[Tuple[int, str]]:
    hits: List[Tuple[int, str]] = []

    for target in rules.round_amounts:
        if abs(amount - target) < rules.round_amount_epsilon:
            hits.append((rules.round_amount_points, f"round amount: ${amount:.2f}"))
            break

    for threshold, reason in rules.threshold_amounts.items():
        if abs(amount - threshold) < rules.threshold_tolerance and amount <= threshold:
            hits.append((rules.threshold_points, f"threshold gaming: {reason}"))
            break

    return hits


def _spend_rules(amount: float, category: str, evidence_provided: bool, rules: RiskRules) -> List[Tuple[int, str]]:
    hits: List[Tuple[int, str]] = []

    if amount > rules.high_amount_floor and not evidence_provided:
        hits.append((rules.missing_evidence_points, "no evidence for high amount"))

    norm = rules.category_norms.get(category)
    if norm is not None and amount > norm * rules.norm_multiplier:
        hits.append((rules.above_norm_points, f"above typical: {category} norm ~${norm:.2f}"))

    return hits


def _description_rules(description: str, rules: RiskRules) -> List[Tuple[int, str]]:
    hits: List[Tuple[int, str]] = []

    for keyword in rules.keywords:
        if keyword in description:
            hits.append((rules.keyword_points, f"keyword: '{keyword}'"))
            break

    if len(description) < rules.min_description_length:
        hits.append((rules.short_description_points, "too short"))
    elif description in rules.generic_descriptions:
        hits.append((rules.generic_description_points, "generic"))

    return hits


def score_risk(
    amount: Any,
    category: Any,
    description: Any,
    evidence_provided: Any,
    rules: RiskRules,
    analyzed_at: str = "",
) -> RiskAssessment:
    """Sum the contribution of every matching heuristic, clamped to 0..100.

    Rules are independent of each other except the description length check,
    which pre-empts the generic-word check. Malformed inputs simply match
    nothing: a non-numeric amount skips every amount rule.
    """
    text = description.strip().casefold() if isinstance(description, str) else ""
    category = category if isinstance(category, str) else ""

    numeric = is_number(amount)
    hits: List[Tuple[int, str]] = []
    if numeric:
        hits += _amount_pattern_rules(float(amount), rules)
    hits += _description_rules(text, rules)
    if numeric:
        hits += _spend_rules(float(amount), category, evidence_provided is True, rules)

    score = clamp_score(sum(points for points, _ in hits))
    return {
        "score": score,
        "level": risk_level(score, rules),
        "flags": [flag for _, flag in hits],
        "analyzed_at": analyzed_at,
    }

"""
Active Rule Set Resolution

Loads the rule sets that apply to a jurisdiction on a date and evaluates a
deal against them. Per scope only the highest active version applies; the
result is ordered [global, org] so organization rules are evaluated last.
"""

from datetime import datetime
from typing import List, Optional

from models import ComplianceRuleSet
from .evaluator import evaluate_compliance
from .scoping import latest_per_scope, rule_set_priority
from .types import DealSnapshot, EvaluationResult


def load_rule_set_candidates(org_id, jurisdiction: str) -> List[ComplianceRuleSet]:
    return ComplianceRuleSet.query.filter(
        ComplianceRuleSet.jurisdiction == jurisdiction,
        (ComplianceRuleSet.org_id == org_id) | (ComplianceRuleSet.org_id.is_(None)),
    ).all()


def resolve_active_rule_sets(org_id, jurisdiction: str, as_of: datetime = None) -> List[ComplianceRuleSet]:
    as_of = as_of or datetime.utcnow()
    candidates = load_rule_set_candidates(org_id, jurisdiction)
    return latest_per_scope(candidates, org_id, as_of, rule_set_priority)


def applicable_rule_sets(org_id, jurisdiction: str, as_of: datetime = None,
                         override: Optional[ComplianceRuleSet] = None) -> List[ComplianceRuleSet]:
    """
    Rule sets to evaluate, in order.

    Args:
        override: Evaluated last, in place of the organization's active rule
                  set, e.g. to try a draft version before it takes effect
    """
    rule_sets = resolve_active_rule_sets(org_id, jurisdiction, as_of)
    if override is not None:
        rule_sets = [r for r in rule_sets if r.org_id is None and r.id != override.id] + [override]
    return rule_sets


def evaluate_snapshot(snapshot: DealSnapshot, as_of: datetime = None,
                      override: Optional[ComplianceRuleSet] = None) -> EvaluationResult:
    """Evaluate a snapshot with the rule sets of its jurisdiction."""
    rule_sets = applicable_rule_sets(snapshot.org_id, snapshot.jurisdiction, as_of, override)
    return evaluate_compliance(snapshot, [r.rules_json for r in rule_sets])

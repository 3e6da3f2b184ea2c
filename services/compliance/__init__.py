"""
Compliance Rules

Jurisdiction rule sets evaluated against a deal snapshot to derive the
required-document checklist, validation findings and computed fields.

Usage:
    from services.compliance import evaluate_snapshot

    result = evaluate_snapshot(build_deal_snapshot(deal))
    result.required_doc_types   # ['BUYERS_ORDER', ...]

The admin service (services.compliance.admin_service) is imported directly
by its blueprint; it depends on the documents package.
"""

from .types import (
    BooleanFlag,
    ChecklistItem,
    CustomerSnapshot,
    DealerSnapshot,
    DealSnapshot,
    EvaluationResult,
    FieldEquals,
    FieldIn,
    RuleBody,
    Scenario,
    UnknownPredicate,
    ValidationFinding,
    ValidationRule,
    VehicleSnapshot,
)
from .rules import empty_rule_body, parse_rule_body, validate_rule_body
from .evaluator import NOT_LEGAL_ADVICE_NOTICE, evaluate_compliance, predicate_matches
from .scoping import latest_per_scope, next_version, select_best
from .rule_sets import applicable_rule_sets, evaluate_snapshot, resolve_active_rule_sets
from .loader import RuleSetLoader, RuleSetSeed

__all__ = [
    # Types
    'BooleanFlag',
    'ChecklistItem',
    'CustomerSnapshot',
    'DealerSnapshot',
    'DealSnapshot',
    'EvaluationResult',
    'FieldEquals',
    'FieldIn',
    'RuleBody',
    'Scenario',
    'UnknownPredicate',
    'ValidationFinding',
    'ValidationRule',
    'VehicleSnapshot',

    # Engine
    'NOT_LEGAL_ADVICE_NOTICE',
    'evaluate_compliance',
    'predicate_matches',
    'empty_rule_body',
    'parse_rule_body',
    'validate_rule_body',

    # Scoping and resolution
    'latest_per_scope',
    'next_version',
    'select_best',
    'applicable_rule_sets',
    'evaluate_snapshot',
    'resolve_active_rule_sets',

    # Seeds
    'RuleSetLoader',
    'RuleSetSeed',
]

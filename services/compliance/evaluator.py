"""
Compliance Rule Engine

evaluate_compliance(snapshot, rule_sets) -> EvaluationResult

Pure and deterministic: no I/O, no clock, no randomness. Rule sets are
applied in the order given, which callers build as [global, org] so an
organization's rule set extends the global checklist and overrides
its computed fields.
"""

from typing import Any, Dict, Iterable, List, Union

from .rules import parse_rule_body
from .types import (
    BooleanFlag,
    ChecklistItem,
    DealSnapshot,
    EvaluationResult,
    FieldEquals,
    FieldIn,
    Predicate,
    RuleBody,
    ValidationFinding,
)

NOT_LEGAL_ADVICE_NOTICE = "Not legal advice. Validate output with licensed compliance counsel."
NON_AUTHORITATIVE_NOTICE = "Rule set includes non-authoritative examples; legal review required."


def predicate_matches(predicate: Predicate, snapshot: DealSnapshot) -> bool:
    """Single dispatch over the predicate union. Never raises."""
    try:
        if isinstance(predicate, FieldEquals):
            return snapshot.get_field(predicate.field) == predicate.value
        if isinstance(predicate, FieldIn):
            return snapshot.get_field(predicate.field) in predicate.values
        if isinstance(predicate, BooleanFlag):
            return bool(snapshot.get_field(predicate.flag)) is predicate.expected
    except (TypeError, ValueError):
        return False
    # UnknownPredicate and anything else
    return False


def conditions_match(predicates: Iterable[Predicate], snapshot: DealSnapshot) -> bool:
    return all(predicate_matches(p, snapshot) for p in predicates)


def evaluate_compliance(
    snapshot: DealSnapshot,
    rule_sets: Iterable[Union[RuleBody, Dict[str, Any], Any]],
) -> EvaluationResult:
    """
    Derive the required-document checklist, validation findings and
    computed fields for a deal.

    Args:
        snapshot: Immutable deal projection
        rule_sets: Rule bodies (parsed or raw), global first, org last

    Returns:
        EvaluationResult; checklist and findings keep evaluation order
    """
    notices: List[str] = [NOT_LEGAL_ADVICE_NOTICE]
    checklist: Dict[str, ChecklistItem] = {}
    findings: List[ValidationFinding] = []
    computed_fields: Dict[str, Any] = {}

    for raw in rule_sets:
        body = parse_rule_body(raw)
        if body is None:
            continue

        if body.not_legal_advice:
            notices.append(NON_AUTHORITATIVE_NOTICE)

        for scenario in body.scenarios:
            if not conditions_match(scenario.predicates, snapshot):
                continue
            for doc_type in scenario.required_documents:
                existing = checklist.get(doc_type)
                if existing is None:
                    checklist[doc_type] = ChecklistItem(doc_type, scenario.reason, required=True)
                elif not existing.required:
                    existing.required = True
            for doc_type in scenario.optional_documents:
                if doc_type not in checklist:
                    checklist[doc_type] = ChecklistItem(doc_type, scenario.reason, required=False)

        for validation in body.validations:
            if conditions_match(validation.predicates, snapshot):
                findings.append(ValidationFinding(
                    code=validation.code,
                    message=validation.message,
                    severity=validation.severity,
                    field=validation.field,
                ))

        # Shallow: a later rule set replaces whole values, nested or not
        computed_fields.update(body.computed_fields)

    return EvaluationResult(
        required_checklist=list(checklist.values()),
        validation_errors=findings,
        computed_fields=computed_fields,
        notices=list(dict.fromkeys(notices)),
    )

"""
Rule Body Parsing

Two entry points over the same operator-authored rule format:

    parse_rule_body()     - tolerant; used by the engine. Malformed pieces
                            are dropped or become never-matching predicates,
                            so evaluation never raises.
    validate_rule_body()  - strict; used on admin writes and seed loading.
                            Raises jsonschema.ValidationError.

Rule format (YAML shown):

    metadata:
      title: Texas base checklist
      not_legal_advice: true
    scenarios:
      - when: {deal_type: [FINANCE], has_trade_in: true}
        conditions:
          - {type: field_in, field: vehicle.make, values: [Ford, Lincoln]}
        required_documents: [RETAIL_INSTALLMENT_CONTRACT]
        notes: Financed deals need a RIC
    validations:
      - code: VIN_REQUIRED
        message: Vehicle VIN is required
        severity: error
        conditions: [{type: field_equals, field: vehicle.vin, value: null}]
    computed_fields:
      suggested_tax_rate: 0.0625
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import jsonschema

from models import DocumentType
from .types import (
    BOOLEAN_FLAGS,
    BooleanFlag,
    FieldEquals,
    FieldIn,
    Predicate,
    RuleBody,
    Scenario,
    UnknownPredicate,
    ValidationRule,
)

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent.parent.parent / 'compliance' / 'schema' / 'rules.schema.json'

DOC_TYPES = {d.value for d in DocumentType}
SEVERITIES = ('error', 'warning')

_schema_cache: Dict[str, Any] = {}


def get_rules_schema() -> Dict[str, Any]:
    if 'rules' not in _schema_cache:
        _schema_cache['rules'] = json.loads(SCHEMA_PATH.read_text())
    return _schema_cache['rules']


def validate_rule_body(raw: Any) -> None:
    """Strict validation against compliance/schema/rules.schema.json."""
    jsonschema.validate(raw, get_rules_schema())


def empty_rule_body() -> Dict[str, Any]:
    return {'scenarios': [], 'validations': [], 'computed_fields': {}}


# =============================================================================
# PREDICATES
# =============================================================================

def _parse_when(when: Any) -> List[Predicate]:
    if when is None:
        return []
    if not isinstance(when, dict):
        return [UnknownPredicate(f"when: {when!r}")]

    predicates: List[Predicate] = []
    for key, value in when.items():
        if key in ('deal_type', 'jurisdiction'):
            if isinstance(value, (list, tuple)):
                predicates.append(FieldIn(key, tuple(value)))
            elif isinstance(value, str):
                predicates.append(FieldEquals(key, value))
            else:
                predicates.append(UnknownPredicate(f"{key}: {value!r}"))
        elif key in BOOLEAN_FLAGS and isinstance(value, bool):
            predicates.append(BooleanFlag(key, value))
        else:
            predicates.append(UnknownPredicate(f"{key}: {value!r}"))
    return predicates


def parse_condition(raw: Any) -> Predicate:
    """Convert one tagged condition into a predicate variant."""
    if not isinstance(raw, dict):
        return UnknownPredicate(repr(raw))

    kind = raw.get('type')
    field_path = raw.get('field')

    if kind == 'field_equals' and isinstance(field_path, str) and 'value' in raw:
        return FieldEquals(field_path, raw['value'])

    if kind == 'field_in' and isinstance(field_path, str) and isinstance(raw.get('values'), list):
        return FieldIn(field_path, tuple(raw['values']))

    if kind == 'boolean_flag' and raw.get('flag') in BOOLEAN_FLAGS:
        expected = raw.get('expected', True)
        if isinstance(expected, bool):
            return BooleanFlag(raw['flag'], expected)

    return UnknownPredicate(repr(raw))


def parse_predicates(entry: Dict[str, Any]) -> Tuple[Predicate, ...]:
    """Shorthand `when` plus explicit `conditions`, joined by AND."""
    predicates = _parse_when(entry.get('when'))

    conditions = entry.get('conditions')
    if conditions is not None:
        if isinstance(conditions, list):
            predicates.extend(parse_condition(c) for c in conditions)
        else:
            predicates.append(UnknownPredicate(f"conditions: {conditions!r}"))

    return tuple(predicates)


# =============================================================================
# SCENARIOS, VALIDATIONS, BODY
# =============================================================================

def _doc_types(raw: Any) -> Tuple[str, ...]:
    if not isinstance(raw, list):
        return ()
    return tuple(d for d in raw if isinstance(d, str) and d in DOC_TYPES)


def _parse_scenario(raw: Any) -> Optional[Scenario]:
    if not isinstance(raw, dict):
        return None
    notes = raw.get('notes')
    return Scenario(
        predicates=parse_predicates(raw),
        required_documents=_doc_types(raw.get('required_documents')),
        optional_documents=_doc_types(raw.get('optional_documents')),
        reason=notes if isinstance(notes, str) and notes else 'Scenario match',
    )


def _parse_validation(raw: Any) -> Optional[ValidationRule]:
    if not isinstance(raw, dict):
        return None

    code = raw.get('code')
    message = raw.get('message')
    severity = raw.get('severity', 'error')
    field_path = raw.get('field')

    if not (isinstance(code, str) and code and isinstance(message, str) and message):
        return None
    if severity not in SEVERITIES:
        return None

    return ValidationRule(
        code=code,
        message=message,
        predicates=parse_predicates(raw),
        severity=severity,
        field=field_path if isinstance(field_path, str) else None,
    )


def parse_rule_body(raw: Any) -> Optional[RuleBody]:
    """
    Tolerant parse of a stored rule body.

    Returns None when the body is not a mapping at all; the engine
    skips such rule sets.
    """
    if isinstance(raw, RuleBody):
        return raw
    if not isinstance(raw, dict):
        return None

    scenarios = raw.get('scenarios')
    validations = raw.get('validations')
    computed = raw.get('computed_fields')
    metadata = raw.get('metadata')

    return RuleBody(
        scenarios=tuple(s for s in map(_parse_scenario, scenarios if isinstance(scenarios, list) else []) if s),
        validations=tuple(v for v in map(_parse_validation, validations if isinstance(validations, list) else []) if v),
        computed_fields=dict(computed) if isinstance(computed, dict) else {},
        metadata=dict(metadata) if isinstance(metadata, dict) else {},
    )

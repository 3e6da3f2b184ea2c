"""
Compliance Type Definitions

Immutable inputs and outputs of the rule engine. Rule bodies arrive as
operator-authored JSON/YAML and are normalised by rules.py into the
closed predicate union defined here before evaluation.
"""

from dataclasses import dataclass, field, asdict, is_dataclass
from typing import Any, Dict, List, Optional, Tuple, Union


# =============================================================================
# DEAL SNAPSHOT
# =============================================================================

@dataclass(frozen=True)
class CustomerSnapshot:
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    state: Optional[str] = None


@dataclass(frozen=True)
class VehicleSnapshot:
    year: Optional[int]
    make: str
    model: str
    vin: Optional[str]
    mileage: int
    stock_number: str


@dataclass(frozen=True)
class DealerSnapshot:
    name: str
    tax_rate: float
    doc_fee: float
    license_fee: float


@dataclass(frozen=True)
class DealSnapshot:
    """
    Point-in-time projection of a deal used as rule-evaluation input.

    Built once per evaluation by services.documents.context and never
    mutated. Predicates address its fields by dotted path, e.g.
    "deal_type", "vehicle.year" or "is_out_of_state_buyer".
    """
    deal_id: Any
    org_id: Any
    jurisdiction: str
    deal_type: str
    buyer_state: Optional[str]
    has_trade_in: bool
    is_financed: bool
    has_lienholder: bool
    sale_price: float
    financed_amount: float
    taxes: float
    fees: float
    customer: CustomerSnapshot
    vehicle: VehicleSnapshot
    dealer: DealerSnapshot

    @property
    def is_out_of_state_buyer(self) -> bool:
        return bool(self.buyer_state) and self.buyer_state != self.jurisdiction

    def get_field(self, path: str) -> Any:
        """Resolve a dotted path; any absent segment yields None."""
        current: Any = self
        for part in path.split('.'):
            if current is None or part.startswith('_'):
                return None
            if isinstance(current, dict):
                current = current.get(part)
            else:
                current = getattr(current, part, None)
            if callable(current):
                return None
        return current

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['is_out_of_state_buyer'] = self.is_out_of_state_buyer
        return data


# =============================================================================
# PREDICATES
# =============================================================================

@dataclass(frozen=True)
class FieldEquals:
    field: str
    value: Any


@dataclass(frozen=True)
class FieldIn:
    field: str
    values: Tuple[Any, ...]


@dataclass(frozen=True)
class BooleanFlag:
    flag: str
    expected: bool = True


@dataclass(frozen=True)
class UnknownPredicate:
    """Placeholder for input that did not parse; never matches."""
    description: str


Predicate = Union[FieldEquals, FieldIn, BooleanFlag, UnknownPredicate]

BOOLEAN_FLAGS = ('has_trade_in', 'is_financed', 'has_lienholder', 'is_out_of_state_buyer')


# =============================================================================
# RULE BODIES
# =============================================================================

@dataclass(frozen=True)
class Scenario:
    predicates: Tuple[Predicate, ...]
    required_documents: Tuple[str, ...] = ()
    optional_documents: Tuple[str, ...] = ()
    reason: str = 'Scenario match'


@dataclass(frozen=True)
class ValidationRule:
    code: str
    message: str
    predicates: Tuple[Predicate, ...] = ()
    severity: str = 'error'
    field: Optional[str] = None


@dataclass(frozen=True)
class RuleBody:
    scenarios: Tuple[Scenario, ...] = ()
    validations: Tuple[ValidationRule, ...] = ()
    computed_fields: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def not_legal_advice(self) -> bool:
        return bool(self.metadata.get('not_legal_advice'))


# =============================================================================
# EVALUATION RESULT
# =============================================================================

@dataclass
class ChecklistItem:
    doc_type: str
    reason: str
    required: bool = True


@dataclass(frozen=True)
class ValidationFinding:
    code: str
    message: str
    severity: str
    field: Optional[str] = None


@dataclass
class EvaluationResult:
    required_checklist: List[ChecklistItem] = field(default_factory=list)
    validation_errors: List[ValidationFinding] = field(default_factory=list)
    computed_fields: Dict[str, Any] = field(default_factory=dict)
    notices: List[str] = field(default_factory=list)

    @property
    def required_doc_types(self) -> List[str]:
        return [item.doc_type for item in self.required_checklist if item.required]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'required_checklist': [asdict(item) for item in self.required_checklist],
            'validation_errors': [asdict(finding) for finding in self.validation_errors],
            'computed_fields': dict(self.computed_fields),
            'notices': list(self.notices),
        }

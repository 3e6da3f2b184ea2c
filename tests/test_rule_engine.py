"""
Rule engine tests: checklist derivation, validations and computed fields.

Pure evaluation only; no app or database needed.
"""

import sys
from pathlib import Path

import jsonschema
import pytest
import yaml

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from services.compliance import (
    NOT_LEGAL_ADVICE_NOTICE,
    BooleanFlag,
    CustomerSnapshot,
    DealerSnapshot,
    DealSnapshot,
    FieldEquals,
    FieldIn,
    UnknownPredicate,
    VehicleSnapshot,
    evaluate_compliance,
    parse_rule_body,
    predicate_matches,
    validate_rule_body,
)

SEED_DIR = PROJECT_ROOT / 'compliance' / 'rulesets'


def load_seed_rules(name):
    return yaml.safe_load((SEED_DIR / name).read_text())['rules']


def make_snapshot(**overrides):
    values = dict(
        deal_id=1,
        org_id=1,
        jurisdiction='TX',
        deal_type='CASH',
        buyer_state='TX',
        has_trade_in=False,
        is_financed=False,
        has_lienholder=False,
        sale_price=24500.0,
        financed_amount=0.0,
        taxes=1531.25,
        fees=240.0,
        customer=CustomerSnapshot(first_name='Sam', last_name='Buyer', state='TX'),
        vehicle=VehicleSnapshot(year=2021, make='Toyota', model='Camry', vin='4T1G11AK5MU123456',
                                mileage=28450, stock_number='S1001'),
        dealer=DealerSnapshot(name='Lone Star Motors', tax_rate=0.0625, doc_fee=150.0, license_fee=90.0),
    )
    values.update(overrides)
    return DealSnapshot(**values)


class TestChecklist:
    """Scenario matching against the Texas seed rules."""

    @pytest.fixture(autouse=True)
    def setup(self):
        self.tx_rules = load_seed_rules('tx.yml')

    def test_cash_deal_in_state(self):
        result = evaluate_compliance(make_snapshot(), [self.tx_rules])
        assert result.required_doc_types == [
            'BUYERS_ORDER', 'ODOMETER_DISCLOSURE', 'PRIVACY_NOTICE', 'TITLE_REG_APPLICATION'
        ]

    def test_finance_deal_adds_installment_contract(self):
        snapshot = make_snapshot(deal_type='FINANCE', is_financed=True, financed_amount=20000.0)
        result = evaluate_compliance(snapshot, [self.tx_rules])
        assert result.required_doc_types == [
            'BUYERS_ORDER', 'ODOMETER_DISCLOSURE', 'PRIVACY_NOTICE',
            'RETAIL_INSTALLMENT_CONTRACT', 'TITLE_REG_APPLICATION',
        ]

    def test_trade_in_adds_optional_we_owe(self):
        result = evaluate_compliance(make_snapshot(has_trade_in=True), [self.tx_rules])
        we_owe = [item for item in result.required_checklist if item.doc_type == 'WE_OWE']
        assert len(we_owe) == 1
        assert we_owe[0].required is False
        assert 'WE_OWE' not in result.required_doc_types

    def test_out_of_state_buyer(self):
        snapshot = make_snapshot(buyer_state='OK')
        result = evaluate_compliance(snapshot, [self.tx_rules])
        assert 'TITLE_REG_APPLICATION' not in result.required_doc_types
        codes = [(f.code, f.severity) for f in result.validation_errors]
        assert ('OUT_OF_STATE_BUYER', 'warning') in codes

    def test_missing_vin_is_reported(self):
        vehicle = VehicleSnapshot(year=2021, make='Toyota', model='Camry', vin=None,
                                  mileage=28450, stock_number='S1001')
        result = evaluate_compliance(make_snapshot(vehicle=vehicle), [self.tx_rules])
        findings = [f for f in result.validation_errors if f.code == 'VIN_REQUIRED']
        assert len(findings) == 1
        assert findings[0].field == 'vehicle.vin'
        assert findings[0].severity == 'error'

    def test_scenario_reason_comes_from_notes(self):
        result = evaluate_compliance(make_snapshot(), [self.tx_rules])
        title = [i for i in result.required_checklist if i.doc_type == 'TITLE_REG_APPLICATION'][0]
        assert title.reason == 'In-state buyer titles through the dealer'

    def test_evaluation_is_deterministic(self):
        snapshot = make_snapshot(has_trade_in=True, buyer_state='OK')
        first = evaluate_compliance(snapshot, [self.tx_rules])
        second = evaluate_compliance(snapshot, [self.tx_rules])
        assert first.to_dict() == second.to_dict()

    def test_seed_marks_output_non_authoritative(self):
        result = evaluate_compliance(make_snapshot(), [self.tx_rules])
        assert result.notices[0] == NOT_LEGAL_ADVICE_NOTICE
        assert len(result.notices) == 2


class TestRuleSetLayering:

    def test_no_rule_sets(self):
        result = evaluate_compliance(make_snapshot(), [])
        assert result.required_checklist == []
        assert result.validation_errors == []
        assert result.computed_fields == {}
        assert result.notices == [NOT_LEGAL_ADVICE_NOTICE]

    def test_org_computed_field_overrides_global(self):
        global_rules = {'computed_fields': {'suggested_tax_rate': 0.0625, 'title_fee': 33.0}}
        org_rules = {'computed_fields': {'suggested_tax_rate': 0.07}}
        result = evaluate_compliance(make_snapshot(), [global_rules, org_rules])
        assert result.computed_fields == {'suggested_tax_rate': 0.07, 'title_fee': 33.0}

    def test_computed_field_merge_is_shallow(self):
        global_rules = {'computed_fields': {'fees': {'title': 33.0, 'inspection': 7.5}}}
        org_rules = {'computed_fields': {'fees': {'title': 40.0}}}
        result = evaluate_compliance(make_snapshot(), [global_rules, org_rules])
        assert result.computed_fields['fees'] == {'title': 40.0}

    def test_later_required_upgrades_optional(self):
        optional = {'scenarios': [{'optional_documents': ['WE_OWE'], 'notes': 'Trade'}]}
        required = {'scenarios': [{'required_documents': ['WE_OWE', 'BUYERS_ORDER']}]}
        result = evaluate_compliance(make_snapshot(), [optional, required])
        assert [(i.doc_type, i.required) for i in result.required_checklist] == [
            ('WE_OWE', True), ('BUYERS_ORDER', True)
        ]
        # First scenario keeps its reason
        assert result.required_checklist[0].reason == 'Trade'

    def test_non_mapping_rule_bodies_are_skipped(self):
        rules = {'scenarios': [{'required_documents': ['BUYERS_ORDER']}]}
        result = evaluate_compliance(make_snapshot(), [None, 'junk', rules])
        assert result.required_doc_types == ['BUYERS_ORDER']

    def test_unknown_document_types_are_dropped(self):
        rules = {'scenarios': [{'required_documents': ['BUYERS_ORDER', 'SPACESHIP_TITLE']}]}
        result = evaluate_compliance(make_snapshot(), [rules])
        assert result.required_doc_types == ['BUYERS_ORDER']


class TestPredicates:

    def test_field_equals(self):
        snapshot = make_snapshot()
        assert predicate_matches(FieldEquals('vehicle.make', 'Toyota'), snapshot)
        assert not predicate_matches(FieldEquals('vehicle.make', 'Honda'), snapshot)

    def test_field_in(self):
        snapshot = make_snapshot(deal_type='LEASE')
        assert predicate_matches(FieldIn('deal_type', ('FINANCE', 'LEASE')), snapshot)
        assert not predicate_matches(FieldIn('deal_type', ('CASH',)), snapshot)

    def test_boolean_flag(self):
        snapshot = make_snapshot(has_trade_in=True)
        assert predicate_matches(BooleanFlag('has_trade_in'), snapshot)
        assert not predicate_matches(BooleanFlag('has_trade_in', False), snapshot)
        assert predicate_matches(BooleanFlag('is_out_of_state_buyer', False), snapshot)

    def test_absent_path_resolves_to_none(self):
        snapshot = make_snapshot()
        assert predicate_matches(FieldEquals('vehicle.color', None), snapshot)
        assert not predicate_matches(FieldEquals('vehicle.color', 'red'), snapshot)

    def test_unknown_predicate_never_matches(self):
        assert not predicate_matches(UnknownPredicate('regex'), make_snapshot())

    def test_unparseable_conditions_never_match(self):
        rules = {'scenarios': [
            {'when': {'favorite_color': 'blue'}, 'required_documents': ['WE_OWE']},
            {'conditions': [{'type': 'regex', 'field': 'vehicle.vin', 'pattern': '.*'}],
             'required_documents': ['PRIVACY_NOTICE']},
            {'required_documents': ['BUYERS_ORDER']},
        ]}
        result = evaluate_compliance(make_snapshot(), [rules])
        assert result.required_doc_types == ['BUYERS_ORDER']

    def test_when_and_conditions_combine_with_and(self):
        body = parse_rule_body({'scenarios': [{
            'when': {'deal_type': 'CASH'},
            'conditions': [{'type': 'field_equals', 'field': 'vehicle.year', 'value': 2021}],
            'required_documents': ['WE_OWE'],
        }]})
        assert len(body.scenarios[0].predicates) == 2
        assert evaluate_compliance(make_snapshot(), [body]).required_doc_types == ['WE_OWE']
        older = VehicleSnapshot(year=2019, make='Toyota', model='Camry', vin='X',
                                mileage=1, stock_number='S2')
        assert evaluate_compliance(make_snapshot(vehicle=older), [body]).required_doc_types == []


class TestRuleBodyValidation:

    def test_seed_files_are_valid(self):
        for name in ('tx.yml', 'ca.yml', 'fl.yml'):
            validate_rule_body(load_seed_rules(name))

    def test_unknown_document_type_rejected(self):
        with pytest.raises(jsonschema.ValidationError):
            validate_rule_body({'scenarios': [{'required_documents': ['SPACESHIP_TITLE']}]})

    def test_unknown_top_level_key_rejected(self):
        with pytest.raises(jsonschema.ValidationError):
            validate_rule_body({'scenarios': [], 'surprise': True})

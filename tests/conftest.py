"""
Shared fixtures: an app on in-memory SQLite, one dealership with a cash
deal in Texas, and global HTML templates for the Texas cash checklist.

Run with: python -m pytest tests/ -v
"""

import sys
from datetime import datetime
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from app import create_app
from models import (
    db,
    ComplianceRuleSet,
    Customer,
    Deal,
    DocumentTemplate,
    Organization,
    TradeIn,
    User,
    Vehicle,
)
from services.compliance.loader import RuleSetLoader
from services.documents.renderer import PDF_CONTENT_TYPE, RenderedArtifact
from services.esign import reset_stub_store
from services.event_service import set_event_sink

SEED_DIR = PROJECT_ROOT / 'compliance' / 'rulesets'

TEMPLATE_EPOCH = datetime(2024, 1, 1)

TX_CASH_DOC_TYPES = ['BUYERS_ORDER', 'ODOMETER_DISCLOSURE', 'PRIVACY_NOTICE', 'TITLE_REG_APPLICATION']

TEMPLATE_HTML = """
<h1>{{ deal.dealNumber }}</h1>
<div class="section">
  <span class="field-label">Buyer</span> {{ customer.fullName }}
  <span class="field-label">Vehicle</span> {{ vehicle.year }} {{ vehicle.make }} {{ vehicle.model }} {{ vehicle.vin }}
  <span class="field-label">Price</span> {{ deal.salePrice | currency }}
</div>
<div class="section">{{ SIGN_BUYER_1 }} {{ DATE_BUYER_1 }}</div>
<p class="notice">{{ notLegalAdvice }}</p>
"""


def make_template(doc_type, org_id=None, jurisdiction='TX', deal_type='CASH', version=1,
                  required_paths=None, effective_from=TEMPLATE_EPOCH, effective_to=None,
                  default_for_org=False, is_default=False, template_engine='HTML',
                  source_html=TEMPLATE_HTML, name=None):
    """Add and commit a DocumentTemplate."""
    template = DocumentTemplate(
        org_id=org_id,
        name=name or f"{jurisdiction} {doc_type} v{version}",
        doc_type=doc_type,
        jurisdiction=jurisdiction,
        deal_type=deal_type,
        version=version,
        template_engine=template_engine,
        source_html=source_html if template_engine == 'HTML' else None,
        required_fields_json={'requiredPaths': required_paths or []},
        effective_from=effective_from,
        effective_to=effective_to,
        default_for_org=default_for_org,
        is_default=is_default,
    )
    db.session.add(template)
    db.session.commit()
    return template


def make_rule_set(rules, org_id=None, jurisdiction='TX', version=1,
                  effective_from=TEMPLATE_EPOCH, effective_to=None):
    """Add and commit a ComplianceRuleSet."""
    rule_set = ComplianceRuleSet(
        org_id=org_id,
        jurisdiction=jurisdiction,
        version=version,
        effective_from=effective_from,
        effective_to=effective_to,
        rules_json=rules,
    )
    db.session.add(rule_set)
    db.session.commit()
    return rule_set


def fake_pdf(title, markup):
    """Stand-in renderer producing a PDF artifact without a browser."""
    return RenderedArtifact(b'%PDF-1.4\n' + markup.encode('utf-8'), PDF_CONTENT_TYPE, 'pdf', 'test')


# =============================================================================
# APPLICATION
# =============================================================================

@pytest.fixture
def app(tmp_path):
    app = create_app('config.TestConfig')
    app.config['STORAGE_LOCAL_ROOT'] = str(tmp_path / 'files')

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def stub_store():
    reset_stub_store()
    yield
    reset_stub_store()


@pytest.fixture
def events():
    """Domain events captured instead of written to the outbox."""
    captured = []
    set_event_sink(captured.append)
    yield captured
    set_event_sink(None)


@pytest.fixture
def pdf_renderer(monkeypatch):
    """Render PDFs in-process so generated documents can be sent for signature."""
    monkeypatch.setattr('services.documents.generator.render_artifact', fake_pdf)
    return fake_pdf


# =============================================================================
# DEALERSHIP DATA
# =============================================================================

@pytest.fixture
def org(app):
    org = Organization(name='Lone Star Motors', tax_rate=0.0625, doc_fee=150, license_fee=90)
    db.session.add(org)
    db.session.commit()
    return org


@pytest.fixture
def other_org(app):
    org = Organization(name='Gulf Coast Autos')
    db.session.add(org)
    db.session.commit()
    return org


@pytest.fixture
def user(org):
    user = User(org_id=org.id, email='finance@lonestar.test', first_name='Dana',
                last_name='Reyes', role='admin')
    user.set_password('secret-password')
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def customer(org):
    customer = Customer(org_id=org.id, first_name='Sam', last_name='Buyer', email='sam@example.com',
                        phone='7135551234', address1='12 Main St', city='Houston', state='TX',
                        postal_code='77001')
    db.session.add(customer)
    db.session.commit()
    return customer


@pytest.fixture
def vehicle(org):
    vehicle = Vehicle(org_id=org.id, year=2021, make='Toyota', model='Camry', trim='SE',
                      vin='4T1G11AK5MU123456', mileage=28450, stock_number='S1001')
    db.session.add(vehicle)
    db.session.commit()
    return vehicle


@pytest.fixture
def deal(org, customer, vehicle):
    deal = Deal(org_id=org.id, customer_id=customer.id, vehicle_id=vehicle.id, deal_number='D-1001',
                deal_type='CASH', jurisdiction='TX', sale_price=24500, down_payment=0, taxes=1531.25,
                fees=240, financed_amount=0)
    db.session.add(deal)
    db.session.commit()
    return deal


@pytest.fixture
def trade_in(deal):
    trade = TradeIn(deal_id=deal.id, vin='1HGCM82633A004352', year=2015, make='Honda',
                    model='Accord', mileage=98000, allowance=6000, payoff=2500)
    db.session.add(trade)
    db.session.commit()
    return trade


@pytest.fixture
def seeded_rules(app):
    RuleSetLoader.seed_database(SEED_DIR)
    return ComplianceRuleSet.query.filter_by(org_id=None).all()


@pytest.fixture
def tx_templates(app):
    """Global HTML templates for every Texas cash checklist document."""
    templates = {}
    for doc_type in TX_CASH_DOC_TYPES:
        required = ['vehicle.vin'] if doc_type == 'ODOMETER_DISCLOSURE' else ['deal.dealNumber']
        templates[doc_type] = make_template(doc_type, required_paths=required)
    return templates


@pytest.fixture
def workspace(org, user, deal, seeded_rules, tx_templates):
    """Deal ready for generation: rules seeded and templates in place."""
    return deal

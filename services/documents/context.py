"""
Deal Context Builders

Two projections of a deal:

    build_deal_snapshot()   -> DealSnapshot for the rule engine
    build_render_context()  -> nested dict handed to templates

The render context uses the template-facing variable names listed in
CANONICAL_TEMPLATE_VARIABLES (camelCase, e.g. "deal.dealNumber").
"""

from datetime import datetime
from typing import Any, Dict, Optional

from models import Deal, DealType
from services.compliance.types import (
    CustomerSnapshot,
    DealerSnapshot,
    DealSnapshot,
    VehicleSnapshot,
)
from services.errors import NotFoundError

DEFAULT_JURISDICTION = 'TX'

NOT_LEGAL_ADVICE_FOOTER = (
    "Not legal advice. This generated form is configuration-driven "
    "and must be validated by licensed counsel."
)

SIGNATURE_ANCHORS = ('SIGN_BUYER_1', 'SIGN_CO_BUYER_1', 'SIGN_DEALER_1')
DATE_TOKENS = ('DATE_BUYER_1', 'DATE_DEALER_1')

CANONICAL_TEMPLATE_VARIABLES = [
    'dealer.name',
    'deal.dealNumber',
    'deal.dealType',
    'deal.jurisdiction',
    'deal.salePrice',
    'deal.financedAmount',
    'customer.fullName',
    'customer.address1',
    'vehicle.vin',
    'vehicle.year',
    'vehicle.make',
    'vehicle.model',
    'tradeIn.hasTrade',
    'tradeIn.allowance',
    'SIGN_BUYER_1',
    'SIGN_CO_BUYER_1',
    'SIGN_DEALER_1',
    'DATE_BUYER_1',
    'DATE_DEALER_1',
]


def load_deal(org_id, deal_id) -> Deal:
    deal = Deal.get_for_org(org_id, deal_id)
    if not deal:
        raise NotFoundError("Deal not found.")
    return deal


def _num(value) -> float:
    return float(value) if value is not None else 0.0


def _money(value, places: int = 2) -> str:
    return f"{_num(value):.{places}f}"


def resolve_jurisdiction(deal: Deal) -> str:
    return (deal.jurisdiction or deal.customer.state or DEFAULT_JURISDICTION).upper()


def build_deal_snapshot(deal: Deal) -> DealSnapshot:
    customer = deal.customer
    vehicle = deal.vehicle
    org = deal.organization
    is_financed = _num(deal.financed_amount) > 0 and deal.deal_type != DealType.CASH.value

    return DealSnapshot(
        deal_id=deal.id,
        org_id=deal.org_id,
        jurisdiction=resolve_jurisdiction(deal),
        deal_type=deal.deal_type,
        buyer_state=customer.state.upper() if customer.state else None,
        has_trade_in=len(deal.trade_ins) > 0,
        is_financed=is_financed,
        has_lienholder=is_financed,
        sale_price=_num(deal.sale_price),
        financed_amount=_num(deal.financed_amount),
        taxes=_num(deal.taxes),
        fees=_num(deal.fees),
        customer=CustomerSnapshot(
            first_name=customer.first_name,
            last_name=customer.last_name,
            email=customer.email,
            phone=customer.phone,
            state=customer.state,
        ),
        vehicle=VehicleSnapshot(
            year=vehicle.year,
            make=vehicle.make,
            model=vehicle.model,
            vin=vehicle.vin,
            mileage=vehicle.mileage or 0,
            stock_number=vehicle.stock_number,
        ),
        dealer=DealerSnapshot(
            name=org.name,
            tax_rate=_num(org.tax_rate),
            doc_fee=_num(org.doc_fee),
            license_fee=_num(org.license_fee),
        ),
    )


def default_signature_anchors() -> Dict[str, str]:
    labels = {
        'SIGN_BUYER_1': 'Buyer Signature',
        'SIGN_CO_BUYER_1': 'Co-Buyer Signature',
        'SIGN_DEALER_1': 'Dealer Signature',
    }
    return {
        anchor: f'<span class="signature-anchor" data-anchor="{anchor}">{label}</span>'
        for anchor, label in labels.items()
    }


def build_render_context(deal: Deal, anchors: Optional[Dict[str, str]] = None,
                         now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Build the template context for a deal.

    Args:
        deal: Deal with customer, vehicle, organization and trade-ins loaded
        anchors: Signature anchor markup keyed by SIGN_* token; the active
                 e-sign provider supplies these
        now: Clock override for date tokens
    """
    now = now or datetime.utcnow()
    customer = deal.customer
    vehicle = deal.vehicle
    org = deal.organization
    trade = deal.trade_ins[0] if deal.trade_ins else None
    today = now.strftime('%m/%d/%Y')

    if trade:
        trade_in = {
            'hasTrade': True,
            'vin': trade.vin or '',
            'year': trade.year or '',
            'make': trade.make or '',
            'model': trade.model or '',
            'mileage': trade.mileage if trade.mileage is not None else '',
            'allowance': _money(trade.allowance),
            'payoff': _money(trade.payoff),
        }
    else:
        trade_in = {'hasTrade': False}

    context = {
        'generatedAt': now.isoformat(),
        'notLegalAdvice': NOT_LEGAL_ADVICE_FOOTER,
        'dealer': {
            'name': org.name,
            'taxRate': _num(org.tax_rate),
            'docFee': _num(org.doc_fee),
            'licenseFee': _num(org.license_fee),
        },
        'deal': {
            'dealNumber': deal.deal_number,
            'stage': deal.stage,
            'dealType': deal.deal_type,
            'jurisdiction': resolve_jurisdiction(deal),
            'salePrice': _money(deal.sale_price),
            'downPayment': _money(deal.down_payment),
            'taxes': _money(deal.taxes),
            'fees': _money(deal.fees),
            'financedAmount': _money(deal.financed_amount),
            'monthlyPayment': _money(deal.monthly_payment),
            'apr': _money(deal.apr, 3),
            'termMonths': deal.term_months,
        },
        'customer': {
            'firstName': customer.first_name,
            'lastName': customer.last_name,
            'fullName': f"{customer.first_name} {customer.last_name}",
            'email': customer.email or '',
            'phone': customer.phone or '',
            'address1': customer.address1 or '',
            'city': customer.city or '',
            'state': customer.state or '',
            'postalCode': customer.postal_code or '',
        },
        'vehicle': {
            'year': vehicle.year,
            'make': vehicle.make,
            'model': vehicle.model,
            'trim': vehicle.trim or '',
            'vin': vehicle.vin or '',
            'mileage': vehicle.mileage,
            'stockNumber': vehicle.stock_number,
        },
        'tradeIn': trade_in,
    }

    context.update(default_signature_anchors())
    if anchors:
        context.update({k: v for k, v in anchors.items() if k in SIGNATURE_ANCHORS})
    for token in DATE_TOKENS:
        context[token] = today

    return context

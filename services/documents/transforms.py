"""
Template Filters

Formatting helpers exposed to document templates as Jinja filters.

Usage in a template:
    Sale price: {{ deal.salePrice | currency }}
    APR: {{ deal.apr | percent }}
    Odometer: {{ vehicle.mileage | mileage }} miles
"""

import logging
import re
from datetime import datetime, date
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict

logger = logging.getLogger(__name__)

FilterFunc = Callable[[Any], str]


def _to_decimal(value: Any):
    if isinstance(value, str):
        value = value.replace('$', '').replace(',', '').replace('%', '').strip()
        if not value:
            return None
    return Decimal(str(value))


def filter_currency(value: Any) -> str:
    """
    Format a number as US currency.

    Examples:
        25999 -> "$25,999.00"
        "1234.5" -> "$1,234.50"
    """
    if value is None or value == '':
        return ""
    try:
        number = _to_decimal(value)
    except (InvalidOperation, ValueError, TypeError):
        logger.warning(f"Could not format as currency: {value}")
        return str(value)
    if number is None:
        return ""
    sign = '-' if number < 0 else ''
    return f"{sign}${abs(number):,.2f}"


def filter_percent(value: Any) -> str:
    """
    Format a rate as a percentage, keeping up to three decimals.

    Examples:
        6.9 -> "6.9%"
        "7.250" -> "7.25%"
    """
    if value is None or value == '':
        return ""
    try:
        number = _to_decimal(value)
    except (InvalidOperation, ValueError, TypeError):
        logger.warning(f"Could not format as percent: {value}")
        return str(value)
    if number is None:
        return ""
    text = f"{number:.3f}".rstrip('0').rstrip('.')
    return f"{text}%"


def filter_mileage(value: Any) -> str:
    """Odometer reading with thousands separators."""
    if value is None or value == '':
        return ""
    try:
        return f"{int(value):,}"
    except (ValueError, TypeError):
        return str(value)


def filter_date(value: Any) -> str:
    """
    Format a date in long US format.

    Examples:
        "2026-01-15" -> "January 15, 2026"
        "01/15/2026" -> "January 15, 2026"
    """
    if value is None or value == '':
        return ""
    if isinstance(value, (datetime, date)):
        return value.strftime("%B %d, %Y")
    for fmt in ("%Y-%m-%d", "%m/%d/%Y", "%Y-%m-%dT%H:%M:%S.%f", "%Y-%m-%dT%H:%M:%S"):
        try:
            return datetime.strptime(str(value), fmt).strftime("%B %d, %Y")
        except ValueError:
            continue
    logger.warning(f"Could not parse date: {value}")
    return str(value)


def filter_phone(value: Any) -> str:
    """
    Format a phone number in US format.

    Examples:
        "7137254459" -> "(713) 725-4459"
    """
    if value is None:
        return ""
    phone_str = str(value)
    digits = re.sub(r'\D', '', phone_str)
    if len(digits) == 11 and digits[0] == '1':
        digits = digits[1:]
    if len(digits) == 10:
        return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"
    return phone_str


def filter_vin(value: Any) -> str:
    if value is None:
        return ""
    return re.sub(r'\s+', '', str(value)).upper()


# Registry of filters installed on the template environment
FILTERS: Dict[str, FilterFunc] = {
    'currency': filter_currency,
    'percent': filter_percent,
    'mileage': filter_mileage,
    'date': filter_date,
    'phone': filter_phone,
    'vin': filter_vin,
}


def register_filter(name: str, func: FilterFunc) -> None:
    """
    Register a custom filter before the template environment is built:
        from services.documents.transforms import register_filter
        register_filter('county_name', my_county_formatter)
    """
    FILTERS[name] = func
    logger.debug(f"Registered template filter: {name}")

"""
Field Resolver

Resolves dotted paths against a render context and reports which
template-required paths are empty.

Path syntax:
    vehicle.vin                 -> context['vehicle']['vin']
    deal.dealNumber             -> context['deal']['dealNumber']
    tradeIns[0].allowance       -> context['tradeIns'][0]['allowance']
"""

import logging
import re
from typing import Any, Dict, Iterable, List

logger = logging.getLogger(__name__)

# Sentinel for "path does not resolve"; distinct from a stored None
MISSING = object()


class FieldResolver:
    """Walks nested dicts, objects and lists by path."""

    # Pattern for bracket notation: name[index]
    BRACKET_PATTERN = re.compile(r'^([a-zA-Z_][a-zA-Z0-9_]*)\[(\d+)\]$')

    @classmethod
    def resolve_path(cls, path: str, context: Dict[str, Any]) -> Any:
        """
        Resolve a path to a value.

        Returns:
            The value, or MISSING if any segment is absent or None
        """
        parts = cls._parse_path(path or '')
        if not parts:
            return MISSING

        current: Any = context
        for part in parts:
            if current is None:
                return MISSING
            current = cls._get_value(current, part)
            if current is MISSING:
                return MISSING
        return current

    @classmethod
    def is_empty(cls, value: Any) -> bool:
        return value is MISSING or value is None or value == ''

    @classmethod
    def find_missing_paths(cls, required_paths: Iterable[str], context: Dict[str, Any]) -> List[str]:
        """
        Every required path whose value is absent, None or "".

        All paths are checked; the result keeps the order given.
        """
        missing = []
        for path in required_paths:
            if cls.is_empty(cls.resolve_path(path, context)):
                missing.append(path)
        if missing:
            logger.debug(f"Missing required fields: {missing}")
        return missing

    @classmethod
    def _parse_path(cls, path: str) -> List[str]:
        """
        Split a path into parts.

        Examples:
            "vehicle.vin" -> ["vehicle", "vin"]
            "tradeIns[0].vin" -> ["tradeIns[0]", "vin"]
        """
        parts = []
        current = ""
        in_bracket = False

        for char in path:
            if char == '[':
                in_bracket = True
                current += char
            elif char == ']':
                in_bracket = False
                current += char
            elif char == '.' and not in_bracket:
                if current:
                    parts.append(current)
                current = ""
            else:
                current += char

        if current:
            parts.append(current)

        return parts

    @classmethod
    def _get_value(cls, obj: Any, part: str) -> Any:
        bracket_match = cls.BRACKET_PATTERN.match(part)
        if bracket_match:
            collection = cls._get_attr_or_key(obj, bracket_match.group(1))
            index = int(bracket_match.group(2))
            if isinstance(collection, (list, tuple)) and 0 <= index < len(collection):
                return collection[index]
            return MISSING

        return cls._get_attr_or_key(obj, part)

    @classmethod
    def _get_attr_or_key(cls, obj: Any, key: str) -> Any:
        if isinstance(obj, dict):
            return obj.get(key, MISSING)
        if key.startswith('_'):
            return MISSING
        return getattr(obj, key, MISSING)

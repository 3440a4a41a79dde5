"""Segment rule translation into predicates over customer records."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Optional, Union

LOGGER = logging.getLogger(__name__)

EQUALS = 'equals'
NOT_EQUALS = 'notEquals'
GREATER_THAN = 'greaterThan'
LESS_THAN = 'lessThan'
OPERATORS = (EQUALS, NOT_EQUALS, GREATER_THAN, LESS_THAN)

AND = 'AND'
OR = 'OR'

# Customer attributes addressable from segment rules, keyed as in API payloads.
SEGMENT_FIELDS = ('name', 'email', 'phone', 'visits', 'totalSpent')


@dataclass(frozen=True)
class Equals:
    field: str
    value: Any


@dataclass(frozen=True)
class NotEquals:
    field: str
    value: Any


@dataclass(frozen=True)
class GreaterThan:
    field: str
    value: Optional[Decimal]


@dataclass(frozen=True)
class LessThan:
    field: str
    value: Optional[Decimal]


@dataclass(frozen=True)
class MatchNothing:
    reason: str = ''


@dataclass(frozen=True)
class AllOf:
    predicates: tuple


@dataclass(frozen=True)
class AnyOf:
    predicates: tuple


Predicate = Union[Equals, NotEquals, GreaterThan, LessThan, MatchNothing, AllOf, AnyOf]


def to_number(value: Any) -> Optional[Decimal]:
    """Coerce ``value`` to a finite Decimal, or ``None`` when it is not numeric."""

    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, (int, float)):
        number = Decimal(str(value))
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = Decimal(text)
        except InvalidOperation:
            return None
    else:
        return None
    if not number.is_finite():
        return None
    return number


def _is_numeric_string(value: Any) -> bool:
    return isinstance(value, str) and to_number(value) is not None


def _same_value(stored: Any, expected: Any) -> bool:
    if isinstance(stored, bool) or isinstance(expected, bool):
        return isinstance(stored, bool) and isinstance(expected, bool) and stored == expected
    if isinstance(expected, str) or isinstance(stored, str):
        return isinstance(stored, str) and isinstance(expected, str) and stored == expected
    stored_number = to_number(stored)
    expected_number = to_number(expected)
    if stored_number is not None and expected_number is not None:
        return stored_number == expected_number
    return stored == expected


def _equals_either_form(stored: Any, expected: Any) -> bool:
    # Numbers are sometimes persisted as strings, so "30" also matches 30.
    if _is_numeric_string(expected):
        return _same_value(stored, expected) or _same_value(stored, to_number(expected))
    return _same_value(stored, expected)


def translate_rule(rule: Mapping[str, Any]) -> Predicate:
    """Turn one ``{field, operator, value}`` rule into a predicate value."""

    field = rule.get('field')
    operator = rule.get('operator')
    value = rule.get('value')
    if operator == EQUALS:
        return Equals(field, value)
    if operator == NOT_EQUALS:
        return NotEquals(field, value)
    if operator == GREATER_THAN:
        return GreaterThan(field, to_number(value))
    if operator == LESS_THAN:
        return LessThan(field, to_number(value))
    LOGGER.warning('Unknown segment rule operator %r on field %r; rule matches nothing', operator, field)
    return MatchNothing(reason=f'unknown operator {operator!r}')


def compile_rules(rules: Iterable[Mapping[str, Any]], rule_operator: str = AND) -> Predicate:
    """Combine rules under ``AND``/``OR``.

    An empty rule list follows the usual identities: ``AND`` matches every
    record and ``OR`` matches none.
    """

    predicates = tuple(translate_rule(rule) for rule in rules or ())
    if rule_operator == OR:
        return AnyOf(predicates)
    return AllOf(predicates)


def matches(predicate: Predicate, record: Mapping[str, Any]) -> bool:
    """Evaluate ``predicate`` against a plain key/value record."""

    if isinstance(predicate, AllOf):
        return all(matches(child, record) for child in predicate.predicates)
    if isinstance(predicate, AnyOf):
        return any(matches(child, record) for child in predicate.predicates)
    if isinstance(predicate, MatchNothing):
        return False
    stored = record.get(predicate.field)
    if isinstance(predicate, Equals):
        return _equals_either_form(stored, predicate.value)
    if isinstance(predicate, NotEquals):
        return not _equals_either_form(stored, predicate.value)
    if isinstance(predicate, (GreaterThan, LessThan)):
        if predicate.value is None or isinstance(stored, (str, bool)):
            return False
        stored_number = to_number(stored)
        if stored_number is None:
            return False
        if isinstance(predicate, GreaterThan):
            return stored_number > predicate.value
        return stored_number < predicate.value
    raise TypeError(f'Unsupported predicate {predicate!r}')

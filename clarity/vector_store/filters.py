"""Metadata filter grammar shared by all providers.

A filter maps field names to conditions and is a conjunction (AND):

- ``{"team_id": "T1"}``: equality
- ``{"type": ["knowledge", "context"]}``: membership
- ``{"specification_id": {"$ne": "spec-1"}}``: explicit operator

Supported operators are ``$eq``, ``$ne``, ``$in`` and ``$nin``. Several
operators on one field are ANDed together.

A document missing a field never satisfies ``$eq``/``$in`` on it and always
satisfies ``$ne``/``$nin``. List-valued fields such as ``tags`` match
``$eq`` when they contain the value and ``$in`` when they overlap.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional

EQ = "$eq"
NE = "$ne"
IN = "$in"
NIN = "$nin"

OPERATORS = (EQ, NE, IN, NIN)


@dataclass(frozen=True)
class Predicate:
    """One normalized field condition."""
    field: str
    operator: str
    value: Any


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_plain(v) for v in value]
    return [_plain(value)]


def parse_filter(filter: Optional[Mapping[str, Any]]) -> List[Predicate]:
    """Normalize a filter mapping into a list of predicates.

    Raises ``ValueError`` on an unknown operator.
    """
    predicates: List[Predicate] = []
    if not filter:
        return predicates

    for field_name, condition in filter.items():
        if isinstance(condition, Mapping):
            if not condition:
                raise ValueError(f"Empty condition for filter field '{field_name}'")
            for operator, value in condition.items():
                if operator not in OPERATORS:
                    raise ValueError(
                        f"Unsupported filter operator '{operator}' on field '{field_name}'"
                    )
                if operator in (IN, NIN):
                    value = _as_list(value)
                else:
                    value = _plain(value)
                predicates.append(Predicate(field_name, operator, value))
        elif isinstance(condition, (list, tuple, set, frozenset)):
            predicates.append(Predicate(field_name, IN, _as_list(condition)))
        else:
            predicates.append(Predicate(field_name, EQ, _plain(condition)))

    return predicates


def _values_of(document_value: Any) -> List[Any]:
    if isinstance(document_value, (list, tuple, set, frozenset)):
        return [_plain(v) for v in document_value]
    return [_plain(document_value)]


def predicate_matches(predicate: Predicate, metadata: Mapping[str, Any]) -> bool:
    """Evaluate one predicate against flattened document metadata."""
    document_value = metadata.get(predicate.field)

    if document_value is None:
        return predicate.operator in (NE, NIN)

    values = _values_of(document_value)

    if predicate.operator == EQ:
        return predicate.value in values
    if predicate.operator == NE:
        return predicate.value not in values
    if predicate.operator == IN:
        return any(v in predicate.value for v in values)
    if predicate.operator == NIN:
        return not any(v in predicate.value for v in values)

    raise ValueError(f"Unsupported filter operator '{predicate.operator}'")


def matches_filter(metadata: Mapping[str, Any], predicates: Iterable[Predicate]) -> bool:
    """True when ``metadata`` satisfies every predicate."""
    return all(predicate_matches(p, metadata) for p in predicates)


def merge_filters(*filters: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Combine filters into one conjunction.

    When the same field appears in more than one filter the conditions are
    merged into a single operator mapping so none of them is lost.
    """
    merged: Dict[str, Any] = {}
    for current in filters:
        if not current:
            continue
        for field_name, condition in current.items():
            if field_name not in merged:
                merged[field_name] = condition
                continue
            merged[field_name] = _combine(merged[field_name], condition)
    return merged


def _to_operator_map(condition: Any) -> Dict[str, Any]:
    if isinstance(condition, Mapping):
        return dict(condition)
    if isinstance(condition, (list, tuple, set, frozenset)):
        return {IN: list(condition)}
    return {EQ: condition}


def _combine(existing: Any, incoming: Any) -> Dict[str, Any]:
    positive: Optional[List[Any]] = None
    negative: List[Any] = []
    for condition in (existing, incoming):
        for operator, value in _to_operator_map(condition).items():
            if operator in (EQ, IN):
                values = _as_list(value)
                if positive is None:
                    positive = values
                else:
                    positive = [v for v in positive if v in values]
            elif operator in (NE, NIN):
                negative.extend(v for v in _as_list(value) if v not in negative)
            else:
                raise ValueError(f"Unsupported filter operator '{operator}'")

    combined: Dict[str, Any] = {}
    if positive is not None:
        combined[IN] = positive
    if negative:
        combined[NIN] = negative
    return combined

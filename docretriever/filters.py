"""Structured metadata filters.

A filter is a tree of :class:`Predicate` leaves joined by :class:`And`,
:class:`Or` and :class:`Not`. :func:`parse_filters` also accepts the mapping
syntax used by document stores::

    {"year": {"$in": [2015, 2016]}, "$or": [{"lang": "en"}, {"lang": "de"}]}

Keys of a mapping are combined with AND; a bare list means ``$in`` and a
bare scalar means ``$eq``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .errors import InvalidArgument
from .models import Document

LOGGER = logging.getLogger(__name__)


class Operator(str, Enum):
    EQ = "eq"
    NE = "ne"
    IN = "in"
    NIN = "nin"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"

    @property
    def is_range(self) -> bool:
        return self in _RANGE_OPERATORS

    @property
    def is_membership(self) -> bool:
        return self in (Operator.IN, Operator.NIN)


_RANGE_OPERATORS = frozenset({Operator.GT, Operator.GTE, Operator.LT, Operator.LTE})
_SCALAR_TYPES = (str, int, float, date)


@dataclass(frozen=True, slots=True)
class Predicate:
    """``field <operator> value`` test against one metadata field."""

    field: str
    operator: Operator
    value: Any

    def __post_init__(self) -> None:
        if not isinstance(self.field, str) or not self.field:
            raise InvalidArgument("filter field must be a non-empty string")
        try:
            operator = Operator(self.operator)
        except ValueError as exc:
            raise InvalidArgument(f"unknown filter operator {self.operator!r}") from exc
        object.__setattr__(self, "operator", operator)
        if operator.is_membership:
            if isinstance(self.value, (str, bytes)) or not isinstance(self.value, Iterable):
                raise InvalidArgument(f"${operator.value} on {self.field!r} needs a list of values")
            values = tuple(self.value)
            for item in values:
                _require_scalar(self.field, operator, item)
            object.__setattr__(self, "value", values)
        else:
            _require_scalar(self.field, operator, self.value)
            if operator.is_range and isinstance(self.value, bool):
                raise InvalidArgument(f"${operator.value} on {self.field!r} needs a number or date")


@dataclass(frozen=True, slots=True)
class And:
    children: Tuple["FilterExpression", ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "children", _validate_children("AND", self.children))


@dataclass(frozen=True, slots=True)
class Or:
    children: Tuple["FilterExpression", ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "children", _validate_children("OR", self.children))


@dataclass(frozen=True, slots=True)
class Not:
    child: "FilterExpression"

    def __post_init__(self) -> None:
        if not isinstance(self.child, _EXPRESSION_TYPES):
            raise InvalidArgument(f"NOT expects a filter expression, got {type(self.child).__name__}")


FilterExpression = Union[Predicate, And, Or, Not]
_EXPRESSION_TYPES = (Predicate, And, Or, Not)


def _require_scalar(field: str, operator: Operator, value: Any) -> None:
    if not isinstance(value, _SCALAR_TYPES):
        raise InvalidArgument(
            f"${operator.value} on {field!r} needs a string, number or date, got {type(value).__name__}"
        )


def _validate_children(name: str, children: Any) -> Tuple[FilterExpression, ...]:
    if isinstance(children, _EXPRESSION_TYPES):
        children = (children,)
    items = tuple(children)
    if not items:
        raise InvalidArgument(f"{name} needs at least one condition")
    for child in items:
        if not isinstance(child, _EXPRESSION_TYPES):
            raise InvalidArgument(f"{name} expects filter expressions, got {type(child).__name__}")
    return items


# ----------------------------------------------------------------------
# Convenience constructors
# ----------------------------------------------------------------------
def eq(field: str, value: Any) -> Predicate:
    return Predicate(field, Operator.EQ, value)


def ne(field: str, value: Any) -> Predicate:
    return Predicate(field, Operator.NE, value)


def in_(field: str, values: Iterable[Any]) -> Predicate:
    return Predicate(field, Operator.IN, values)


def not_in(field: str, values: Iterable[Any]) -> Predicate:
    return Predicate(field, Operator.NIN, values)


def between(field: str, low: Any = None, high: Any = None, *, inclusive: bool = True) -> FilterExpression:
    """Range predicate; either bound may be omitted."""

    bounds: List[FilterExpression] = []
    if low is not None:
        bounds.append(Predicate(field, Operator.GTE if inclusive else Operator.GT, low))
    if high is not None:
        bounds.append(Predicate(field, Operator.LTE if inclusive else Operator.LT, high))
    if not bounds:
        raise InvalidArgument("between() needs at least one bound")
    return bounds[0] if len(bounds) == 1 else And(tuple(bounds))


# ----------------------------------------------------------------------
# Evaluation
# ----------------------------------------------------------------------
def _as_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


def _coerce_pair(left: Any, right: Any, *, ordering: bool) -> Optional[Tuple[Any, Any]]:
    """Bring two values to a common comparable type, or ``None`` if impossible."""

    if isinstance(left, bool) or isinstance(right, bool):
        if isinstance(left, bool) and isinstance(right, bool) and not ordering:
            return left, right
        return None
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return float(left), float(right)
    if isinstance(left, date) or isinstance(right, date) or (
        ordering and isinstance(left, str) and isinstance(right, str)
    ):
        left_dt, right_dt = _as_datetime(left), _as_datetime(right)
        if left_dt is not None and right_dt is not None:
            if (left_dt.tzinfo is None) != (right_dt.tzinfo is None):
                return None
            return left_dt, right_dt
        if isinstance(left, str) and isinstance(right, str):
            return left, right
        return None
    if isinstance(left, str) and isinstance(right, str):
        return left, right
    return None


def _equals(left: Any, right: Any) -> bool:
    pair = _coerce_pair(left, right, ordering=False)
    return pair is not None and pair[0] == pair[1]


def _compare(operator: Operator, left: Any, right: Any) -> bool:
    pair = _coerce_pair(left, right, ordering=True)
    if pair is None:
        return False
    a, b = pair
    if operator is Operator.GT:
        return a > b
    if operator is Operator.GTE:
        return a >= b
    if operator is Operator.LT:
        return a < b
    return a <= b


def _field_values(value: Any) -> Sequence[Any]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    return [value]


def _evaluate_predicate(predicate: Predicate, metadata: Mapping[str, Any]) -> bool:
    if predicate.field not in metadata:
        return False
    raw = metadata[predicate.field]
    if raw is None:
        return False
    values = _field_values(raw)
    operator = predicate.operator
    if operator is Operator.EQ:
        return any(_equals(value, predicate.value) for value in values)
    if operator is Operator.NE:
        return not any(_equals(value, predicate.value) for value in values)
    if operator is Operator.IN:
        return any(_equals(value, option) for value in values for option in predicate.value)
    if operator is Operator.NIN:
        return not any(_equals(value, option) for value in values for option in predicate.value)
    return any(_compare(operator, value, predicate.value) for value in values)


def evaluate(expression: Optional[FilterExpression], metadata: Mapping[str, Any]) -> bool:
    """Evaluate ``expression`` against a metadata mapping.

    ``None`` matches everything. A predicate on a field the metadata does not
    carry is false, whatever its operator.
    """

    if expression is None:
        return True
    if isinstance(expression, Predicate):
        return _evaluate_predicate(expression, metadata)
    if isinstance(expression, And):
        return all(evaluate(child, metadata) for child in expression.children)
    if isinstance(expression, Or):
        return any(evaluate(child, metadata) for child in expression.children)
    if isinstance(expression, Not):
        return not evaluate(expression.child, metadata)
    raise InvalidArgument(f"not a filter expression: {expression!r}")


def matches(expression: Optional[FilterExpression], document: Document) -> bool:
    return evaluate(expression, document.metadata)


def filter_documents(
    expression: Optional[FilterExpression], documents: Iterable[Document]
) -> List[Document]:
    return [document for document in documents if matches(expression, document)]


def referenced_fields(expression: Optional[FilterExpression]) -> List[str]:
    """Return the sorted metadata fields an expression inspects."""

    fields: set = set()

    def _walk(node: FilterExpression) -> None:
        if isinstance(node, Predicate):
            fields.add(node.field)
        elif isinstance(node, Not):
            _walk(node.child)
        else:
            for child in node.children:
                _walk(child)

    if expression is not None:
        _walk(expression)
    return sorted(fields)


# ----------------------------------------------------------------------
# Mapping syntax
# ----------------------------------------------------------------------
_LOGICAL_KEYS = {"$and", "$or", "$not"}
_OPERATOR_KEYS = {f"${operator.value}": operator for operator in Operator}


def _combine(nodes: List[FilterExpression]) -> FilterExpression:
    if not nodes:
        raise InvalidArgument("empty filter")
    return nodes[0] if len(nodes) == 1 else And(tuple(nodes))


def _parse_conditions(conditions: Any) -> List[FilterExpression]:
    if isinstance(conditions, Mapping):
        return [_parse_mapping({key: value}) for key, value in conditions.items()]
    if isinstance(conditions, (list, tuple)):
        return [_parse_node(item) for item in conditions]
    raise InvalidArgument(f"logical operators expect a mapping or list, got {type(conditions).__name__}")


def _parse_field(field: str, condition: Any) -> FilterExpression:
    if isinstance(condition, Mapping):
        nodes: List[FilterExpression] = []
        for key, value in condition.items():
            if key in _OPERATOR_KEYS:
                nodes.append(Predicate(field, _OPERATOR_KEYS[key], value))
            elif key in _LOGICAL_KEYS:
                children = _parse_field_logical(field, key, value)
                nodes.append(children)
            else:
                raise InvalidArgument(f"unknown operator {key!r} for field {field!r}")
        return _combine(nodes)
    if isinstance(condition, (list, tuple, set, frozenset)):
        return Predicate(field, Operator.IN, condition)
    return Predicate(field, Operator.EQ, condition)


def _parse_field_logical(field: str, key: str, value: Any) -> FilterExpression:
    if key == "$not":
        return Not(_parse_field(field, value))
    if isinstance(value, Mapping):
        parts = [_parse_field(field, {op: operand}) for op, operand in value.items()]
    elif isinstance(value, (list, tuple)):
        parts = [_parse_field(field, item) for item in value]
    else:
        raise InvalidArgument(f"{key} on {field!r} expects a mapping or list")
    return And(tuple(parts)) if key == "$and" else Or(tuple(parts))


def _parse_mapping(mapping: Mapping[str, Any]) -> FilterExpression:
    nodes: List[FilterExpression] = []
    for key, value in mapping.items():
        if key == "$and":
            nodes.append(And(tuple(_parse_conditions(value))))
        elif key == "$or":
            nodes.append(Or(tuple(_parse_conditions(value))))
        elif key == "$not":
            nodes.append(Not(_combine(_parse_conditions(value))))
        elif isinstance(key, str) and key.startswith("$"):
            raise InvalidArgument(f"operator {key!r} must be applied to a field")
        else:
            nodes.append(_parse_field(key, value))
    return _combine(nodes)


def _parse_node(node: Any) -> FilterExpression:
    if isinstance(node, _EXPRESSION_TYPES):
        return node
    if isinstance(node, Mapping):
        return _parse_mapping(node)
    raise InvalidArgument(f"cannot interpret {node!r} as a filter")


def parse_filters(filters: Union[FilterExpression, Mapping[str, Any], None]) -> Optional[FilterExpression]:
    """Normalise user supplied filters into a :data:`FilterExpression` (or ``None``)."""

    if filters is None:
        return None
    if isinstance(filters, Mapping) and not filters:
        return None
    expression = _parse_node(filters)
    LOGGER.debug("Parsed filter on fields %s", referenced_fields(expression))
    return expression


__all__ = [
    "And",
    "FilterExpression",
    "Not",
    "Operator",
    "Or",
    "Predicate",
    "between",
    "eq",
    "evaluate",
    "filter_documents",
    "in_",
    "matches",
    "ne",
    "not_in",
    "parse_filters",
    "referenced_fields",
]

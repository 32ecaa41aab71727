"""
Metadata filter predicates.

Filters use a MongoDB-style document:

    {"category": "tech"}                          shorthand for $eq
    {"score": {"$gt": 40, "$lte": 90}}            several operators are ANDed
    {"$or": [{"p": "high"}, {"p": "low"}]}        logical combinators nest freely

A raw filter is parsed once per query into an immutable tree of
FieldPredicate / LogicalPredicate nodes, so malformed filters fail before
any candidate is scored. Evaluation is pure and never raises.
"""

from dataclasses import dataclass
from enum import Enum
from numbers import Real
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from ..core.errors import InvalidFilterError


class ComparisonOp(str, Enum):
    EQ = "$eq"
    NE = "$ne"
    GT = "$gt"
    GTE = "$gte"
    LT = "$lt"
    LTE = "$lte"
    IN = "$in"
    NIN = "$nin"


class LogicalOp(str, Enum):
    AND = "$and"
    OR = "$or"


ORDERING_OPS = (ComparisonOp.GT, ComparisonOp.GTE, ComparisonOp.LT, ComparisonOp.LTE)
SET_OPS = (ComparisonOp.IN, ComparisonOp.NIN)

# Operators that hold for a field the record does not have
ABSENT_TRUE_OPS = (ComparisonOp.NE, ComparisonOp.NIN)


@dataclass(frozen=True)
class FieldPredicate:
    """Leaf: compare one metadata field against an operand."""

    field: str
    op: ComparisonOp
    operand: Any


@dataclass(frozen=True)
class LogicalPredicate:
    """Node: combine child predicates with $and / $or."""

    op: LogicalOp
    children: Tuple["FilterPredicate", ...]


FilterPredicate = Union[FieldPredicate, LogicalPredicate]

_MISSING = object()


def parse_filter(raw: Optional[Mapping[str, Any]]) -> Optional[FilterPredicate]:
    """
    Parse a raw filter document into a predicate tree.

    Returns None for an absent or empty filter, which matches every record.
    Raises InvalidFilterError for unknown operators or malformed operands.
    """
    if raw is None:
        return None
    if isinstance(raw, (FieldPredicate, LogicalPredicate)):
        return raw
    if not isinstance(raw, Mapping):
        raise InvalidFilterError(f"Filter must be a mapping, got {type(raw).__name__}")
    if not raw:
        return None
    return _parse_document(raw)


def _parse_document(doc: Mapping[str, Any]) -> FilterPredicate:
    clauses = []
    for key, value in doc.items():
        if not isinstance(key, str):
            raise InvalidFilterError(f"Filter keys must be strings, got {key!r}")
        if key.startswith("$"):
            clauses.append(_parse_logical(key, value))
        else:
            clauses.extend(_parse_field(key, value))

    if len(clauses) == 1:
        return clauses[0]
    return LogicalPredicate(LogicalOp.AND, tuple(clauses))


def _parse_logical(key: str, value: Any) -> LogicalPredicate:
    try:
        op = LogicalOp(key)
    except ValueError:
        raise InvalidFilterError(f"Unknown filter operator: {key}") from None

    if not isinstance(value, (list, tuple)) or not value:
        raise InvalidFilterError(f"{key} requires a non-empty list of filters")

    children = []
    for child in value:
        if not isinstance(child, Mapping) or not child:
            raise InvalidFilterError(f"{key} entries must be non-empty filter documents")
        children.append(_parse_document(child))
    return LogicalPredicate(op, tuple(children))


def _parse_field(field: str, value: Any):
    if not isinstance(value, Mapping) or not value:
        return [FieldPredicate(field, ComparisonOp.EQ, value)]

    operator_keys = [k for k in value if isinstance(k, str) and k.startswith("$")]
    if not operator_keys:
        # Plain object operand: exact equality
        return [FieldPredicate(field, ComparisonOp.EQ, dict(value))]
    if len(operator_keys) != len(value):
        raise InvalidFilterError(f"Cannot mix operators and plain keys for field '{field}'")

    predicates = []
    for key, operand in value.items():
        try:
            op = ComparisonOp(key)
        except ValueError:
            raise InvalidFilterError(f"Unknown filter operator: {key}") from None

        if op in SET_OPS:
            if not isinstance(operand, (list, tuple)):
                raise InvalidFilterError(f"{key} on '{field}' requires a list operand")
            operand = tuple(operand)
        elif op in ORDERING_OPS and not (_is_number(operand) or isinstance(operand, str)):
            raise InvalidFilterError(f"{key} on '{field}' requires a number or string operand")

        predicates.append(FieldPredicate(field, op, operand))
    return predicates


def matches(predicate: Optional[FilterPredicate], metadata: Dict[str, Any]) -> bool:
    """Evaluate a parsed predicate against a record's metadata."""
    if predicate is None:
        return True

    if isinstance(predicate, LogicalPredicate):
        if predicate.op is LogicalOp.AND:
            return all(matches(child, metadata) for child in predicate.children)
        return any(matches(child, metadata) for child in predicate.children)

    value = metadata.get(predicate.field, _MISSING) if metadata else _MISSING
    if value is _MISSING:
        return predicate.op in ABSENT_TRUE_OPS
    return _compare(predicate.op, value, predicate.operand)


def _compare(op: ComparisonOp, value: Any, operand: Any) -> bool:
    if op is ComparisonOp.EQ:
        return _contains_equal(value, operand)
    if op is ComparisonOp.NE:
        return not _contains_equal(value, operand)
    if op is ComparisonOp.IN:
        return any(_contains_equal(value, item) for item in operand)
    if op is ComparisonOp.NIN:
        return not any(_contains_equal(value, item) for item in operand)

    if not _orderable(value, operand):
        return False
    if op is ComparisonOp.GT:
        return value > operand
    if op is ComparisonOp.GTE:
        return value >= operand
    if op is ComparisonOp.LT:
        return value < operand
    return value <= operand


def _contains_equal(value: Any, operand: Any) -> bool:
    """Equality, where an array-valued field matches if any element is equal."""
    if _strict_equal(value, operand):
        return True
    if isinstance(value, list) and not isinstance(operand, list):
        return any(_strict_equal(item, operand) for item in value)
    return False


def _strict_equal(a: Any, b: Any) -> bool:
    # True == 1 in Python; metadata booleans only equal booleans
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    return a == b


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _orderable(value: Any, operand: Any) -> bool:
    if _is_number(value) and _is_number(operand):
        return True
    return isinstance(value, str) and isinstance(operand, str)

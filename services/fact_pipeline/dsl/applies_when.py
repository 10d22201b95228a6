"""
AppliesWhen Predicate Language
==============================

A small closed expression language deciding when a rule applies to a
context (entity, transaction, counters).

JSON form:
    {"op": "and", "args": [...]}
    {"op": "or", "args": [...]}
    {"op": "not", "arg": {...}}
    {"op": "cmp", "field": "entity.type", "cmp": "eq", "value": "OBRT"}
    {"op": "in", "field": "txn.paymentMethod", "values": ["CASH", "CARD"]}
    {"op": "exists", "field": "entity.activityNkd"}
    {"op": "between", "field": "counters.revenueYtd", "gte": 0, "lte": 40000}
    {"op": "matches", "field": "entity.activityNkd", "pattern": "^62"}
    {"op": "date_in_effect", "dateField": "txn.date", "on": "2025-01-01"}
    {"op": "true"} / {"op": "false"}

Parsing is strict and raises `DSLValidationError`. A predicate that fails
validation rejects its rule; it is never replaced by {"op": "true"}.
Evaluation never raises: missing fields and ill-typed comparisons are false.

Version: 0.1.0
"""

import json
import re
from collections.abc import Mapping
from datetime import date
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictFloat,
    StrictInt,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from services.fact_pipeline.exceptions import DSLValidationError
from services.fact_pipeline.validation.safe_regex import (
    UnsafePatternError,
    bounded_search,
    compile_safe,
)
from shared.logging import get_logger


logger = get_logger(__name__)

FIELD_PATH_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")
MAX_DEPTH = 16

CmpOp = Literal["eq", "neq", "gt", "gte", "lt", "lte"]
NumericBound = StrictInt | StrictFloat


# =============================================================================
# Predicate nodes
# =============================================================================


class _Node(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)


class _FieldNode(_Node):
    field: str

    @field_validator("field")
    @classmethod
    def check_field_path(cls, v: str) -> str:
        if not FIELD_PATH_RE.match(v):
            raise ValueError(f"Invalid field path: {v!r}")
        return v


class AndPredicate(_Node):
    op: Literal["and"]
    args: list["Predicate"] = Field(..., min_length=1)


class OrPredicate(_Node):
    op: Literal["or"]
    args: list["Predicate"] = Field(..., min_length=1)


class NotPredicate(_Node):
    op: Literal["not"]
    arg: "Predicate"


class CmpPredicate(_FieldNode):
    op: Literal["cmp"]
    cmp: CmpOp
    value: Any


class InPredicate(_FieldNode):
    op: Literal["in"]
    values: list[Any] = Field(..., min_length=1)


class ExistsPredicate(_FieldNode):
    op: Literal["exists"]


class BetweenPredicate(_FieldNode):
    op: Literal["between"]
    gte: NumericBound | None = None
    lte: NumericBound | None = None

    @model_validator(mode="after")
    def check_bounds(self) -> "BetweenPredicate":
        if self.gte is None and self.lte is None:
            raise ValueError("between requires at least one of gte/lte")
        if self.gte is not None and self.lte is not None and self.gte > self.lte:
            raise ValueError(f"between bounds are inverted: {self.gte} > {self.lte}")
        return self


class MatchesPredicate(_FieldNode):
    op: Literal["matches"]
    pattern: str

    @field_validator("pattern")
    @classmethod
    def check_pattern(cls, v: str) -> str:
        try:
            compile_safe(v)
        except UnsafePatternError as e:
            raise ValueError(str(e)) from e
        return v


class DateInEffectPredicate(_Node):
    op: Literal["date_in_effect"]
    date_field: str = Field(..., alias="dateField")
    on: date | None = None

    @field_validator("date_field")
    @classmethod
    def check_field_path(cls, v: str) -> str:
        if not FIELD_PATH_RE.match(v):
            raise ValueError(f"Invalid field path: {v!r}")
        return v


class TruePredicate(_Node):
    op: Literal["true"]


class FalsePredicate(_Node):
    op: Literal["false"]


Predicate = Annotated[
    Union[
        AndPredicate,
        OrPredicate,
        NotPredicate,
        CmpPredicate,
        InPredicate,
        ExistsPredicate,
        BetweenPredicate,
        MatchesPredicate,
        DateInEffectPredicate,
        TruePredicate,
        FalsePredicate,
    ],
    Field(discriminator="op"),
]

for _model in (AndPredicate, OrPredicate, NotPredicate):
    _model.model_rebuild()

_PREDICATE_ADAPTER: TypeAdapter[Any] = TypeAdapter(Predicate)


# =============================================================================
# Parsing and validation
# =============================================================================


def _raw_depth(raw: Any) -> int:
    """Nesting depth of raw JSON, computed without recursion."""
    deepest = 0
    stack: list[tuple[Any, int]] = [(raw, 1)]
    while stack:
        node, depth = stack.pop()
        if isinstance(node, Mapping):
            deepest = max(deepest, depth)
            stack.extend((child, depth + 1) for child in node.values())
        elif isinstance(node, list):
            stack.extend((child, depth) for child in node)
    return deepest


def parse_applies_when(raw: Any) -> Any:
    """
    Parse and validate a predicate.

    Args:
        raw: Predicate as a dict or JSON string

    Returns:
        Parsed predicate node

    Raises:
        DSLValidationError: On any arity, field-path, regex, bound or
            depth violation
    """
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise DSLValidationError(f"appliesWhen is not valid JSON: {e}") from e

    if not isinstance(raw, Mapping):
        raise DSLValidationError("appliesWhen must be a JSON object")

    depth = _raw_depth(raw)
    if depth > MAX_DEPTH:
        raise DSLValidationError(f"appliesWhen nesting depth {depth} exceeds {MAX_DEPTH}")

    try:
        return _PREDICATE_ADAPTER.validate_python(raw)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'root'}: {err['msg']}"
            for err in e.errors()
        )
        raise DSLValidationError(f"Invalid appliesWhen: {errors}") from e


def validate_applies_when(raw: Any) -> tuple[bool, str | None]:
    """Validate without raising. Returns (valid, error message)."""
    try:
        parse_applies_when(raw)
    except DSLValidationError as e:
        return False, e.message
    return True, None


def to_dict(predicate: Any) -> dict[str, Any]:
    """Canonical JSON form of a parsed predicate."""
    return _PREDICATE_ADAPTER.dump_python(predicate, mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# Evaluation
# =============================================================================

_MISSING = object()


def _lookup(context: Mapping[str, Any], path: str) -> Any:
    """Resolve a dot path; a flat key wins over nested traversal."""
    if path in context:
        return context[path]

    current: Any = context
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _as_decimal(value: Any) -> Decimal | None:
    if isinstance(value, bool) or not isinstance(value, int | float | Decimal):
        return None
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        return None
    return number if number.is_finite() else None


def _equals(left: Any, right: Any) -> bool:
    left_num, right_num = _as_decimal(left), _as_decimal(right)
    if left_num is not None and right_num is not None:
        return left_num == right_num
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def _compare(left: Any, op: str, right: Any) -> bool:
    if left is _MISSING or left is None:
        return False
    if op == "eq":
        return _equals(left, right)
    if op == "neq":
        return not _equals(left, right)

    left_num, right_num = _as_decimal(left), _as_decimal(right)
    if left_num is not None and right_num is not None:
        a, b = left_num, right_num
    elif isinstance(left, str) and isinstance(right, str):
        a, b = left, right  # ISO dates compare lexically
    else:
        return False

    if op == "gt":
        return a > b
    if op == "gte":
        return a >= b
    if op == "lt":
        return a < b
    if op == "lte":
        return a <= b
    return False


@lru_cache(maxsize=256)
def _compiled(pattern: str) -> re.Pattern[str]:
    return compile_safe(pattern)


def _to_date(value: Any) -> date | None:
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or len(value) < 10:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def _evaluate(node: Any, context: Mapping[str, Any]) -> bool:
    if isinstance(node, TruePredicate):
        return True
    if isinstance(node, FalsePredicate):
        return False
    if isinstance(node, AndPredicate):
        return all(_evaluate(arg, context) for arg in node.args)
    if isinstance(node, OrPredicate):
        return any(_evaluate(arg, context) for arg in node.args)
    if isinstance(node, NotPredicate):
        return not _evaluate(node.arg, context)
    if isinstance(node, CmpPredicate):
        return _compare(_lookup(context, node.field), node.cmp, node.value)
    if isinstance(node, InPredicate):
        value = _lookup(context, node.field)
        if value is _MISSING or value is None:
            return False
        return any(_equals(value, candidate) for candidate in node.values)
    if isinstance(node, ExistsPredicate):
        value = _lookup(context, node.field)
        return value is not _MISSING and value is not None
    if isinstance(node, BetweenPredicate):
        number = _as_decimal(_lookup(context, node.field))
        if number is None:
            return False
        if node.gte is not None and number < Decimal(str(node.gte)):
            return False
        if node.lte is not None and number > Decimal(str(node.lte)):
            return False
        return True
    if isinstance(node, MatchesPredicate):
        value = _lookup(context, node.field)
        if not isinstance(value, str):
            return False
        return bounded_search(_compiled(node.pattern), value) is not None
    if isinstance(node, DateInEffectPredicate):
        field_date = _to_date(_lookup(context, node.date_field))
        check_date = node.on or _to_date(_lookup(context, "asOf"))
        if field_date is None or check_date is None:
            return False
        return field_date <= check_date
    return False


def evaluate(applies_when: Any, context: Mapping[str, Any]) -> bool:
    """
    Evaluate a predicate against a context.

    Args:
        applies_when: Parsed predicate, dict, or JSON string
        context: Flat ("entity.type": ...) or nested ({"entity": {...}}) mapping

    Returns:
        True if the rule applies. Invalid predicates evaluate to False.
    """
    try:
        node = applies_when if isinstance(applies_when, _Node) else parse_applies_when(applies_when)
    except DSLValidationError as e:
        logger.warning("applies_when_invalid_at_evaluation", error=e.message)
        return False

    try:
        return _evaluate(node, context)
    except (ArithmeticError, TypeError, ValueError, UnsafePatternError) as e:
        logger.warning("applies_when_evaluation_failed", error=str(e), error_type=type(e).__name__)
        return False


# =============================================================================
# Specificity (lex specialis)
# =============================================================================


def specificity(applies_when: Any) -> int:
    """
    Narrowness score of a predicate. Higher means more specific.

    true/false score 0; a leaf condition scores 1; `and` sums its arguments;
    `or` takes the least specific branch; `not` keeps its argument's score.
    """
    node = applies_when if isinstance(applies_when, _Node) else parse_applies_when(applies_when)
    return _specificity(node)


def _specificity(node: Any) -> int:
    if isinstance(node, TruePredicate | FalsePredicate):
        return 0
    if isinstance(node, AndPredicate):
        return sum(_specificity(arg) for arg in node.args)
    if isinstance(node, OrPredicate):
        return min(_specificity(arg) for arg in node.args)
    if isinstance(node, NotPredicate):
        return _specificity(node.arg)
    return 1

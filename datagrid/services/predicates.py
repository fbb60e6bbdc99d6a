from __future__ import annotations

import logging
import operator as op
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

from sqlalchemy import String, Text, and_, cast, literal, or_
from sqlalchemy.orm import Query
from sqlalchemy.sql import ColumnElement

from datagrid.models.attribute import Attribute
from datagrid.models.attribute_value import AttributeValue
from datagrid.schemas.grid import GridSettings
from datagrid.services.sources import POSTGRES_DIALECTS, REGEX_DIALECTS, RELATION_SEPARATOR, DataSource

_LOG = logging.getLogger("datagrid.predicates")

NULL_SENTINEL = "%null%"
NOT_NULL_SENTINEL = "%not_null%"
MULTI_VALUE_SEPARATOR = ", "

# Postgres renders booleans as t/f once cast to text.
BOOLEAN_TEXT_MAPPINGS = {
    "%0%": "%f%",
    "%1%": "%t%",
}

COMPARATORS: dict[str, Callable[[Any, Any], Any]] = {
    "=": op.eq,
    "!=": op.ne,
    "<>": op.ne,
    ">": op.gt,
    "<": op.lt,
    ">=": op.ge,
    "<=": op.le,
}


def _coerce_bool(value):
    if isinstance(value, bool):
        return value
    text = str(value or "").strip().lower()
    if text in {"1", "true", "yes", "y", "t"}:
        return True
    if text in {"0", "false", "no", "n", "f"}:
        return False
    raise ValueError(text)


def _coerce_number(value, python_type):
    if python_type in {int, float} and isinstance(value, (int, float)):
        return python_type(value)
    text = str(value).strip()
    if not text:
        raise ValueError(text)
    normalized = text.replace(",", ".")
    if python_type is int:
        return int(normalized)
    if python_type is float:
        return float(normalized)
    return Decimal(normalized)


def _coerce_date(value):
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    text = str(value or "").strip()
    if "T" in text or " " in text:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    return date.fromisoformat(text)


def _coerce_datetime(value, aware: bool):
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value or "").strip()
        if "T" not in text and " " not in text and len(text) == 10:
            # Date-only value for a timestamp column -> start of the day.
            parsed = datetime.combine(date.fromisoformat(text), datetime.min.time())
        else:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if aware and parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _python_type(expr):
    try:
        return expr.type.python_type
    except (AttributeError, NotImplementedError):
        return None


def _is_date_only_literal(raw_value) -> bool:
    if not isinstance(raw_value, str):
        return False
    text = raw_value.strip()
    if not text or "T" in text or " " in text:
        return False
    try:
        date.fromisoformat(text)
        return True
    except ValueError:
        return False


def coerce_filter_value(expr, value):
    """Convert a raw filter value to the column's Python type.

    Values that do not convert are bound as text so the database does the
    comparison instead of the driver rejecting the parameter.
    """
    python_type = _python_type(expr)
    try:
        if python_type is None or python_type is str:
            return value
        if python_type is uuid.UUID:
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value or "").strip())
        if python_type is bool:
            return _coerce_bool(value)
        if python_type in {int, float, Decimal}:
            return _coerce_number(value, python_type)
        if python_type is datetime:
            return _coerce_datetime(value, bool(getattr(expr.type, "timezone", False)))
        if python_type is date:
            return _coerce_date(value)
    except (ValueError, TypeError, InvalidOperation):
        _LOG.debug("filter value %r does not fit column type %s, comparing as text", value, python_type)
        return literal(str(value), String())
    return value


def compare(expr, operator: str, value) -> ColumnElement | None:
    if operator == "like":
        return expr.like(literal(str(value), String()))
    comparator = COMPARATORS.get(operator)
    if comparator is None:
        _LOG.debug("unsupported filter operator %r, skipped", operator)
        return None
    if _python_type(expr) is datetime and operator in {"=", "!=", "<>"} and _is_date_only_literal(value):
        day_start = coerce_filter_value(expr, value)
        day_expr = and_(expr >= day_start, expr < day_start + timedelta(days=1))
        return day_expr if operator == "=" else ~day_expr
    return comparator(expr, coerce_filter_value(expr, value))


def _text_compare(expr, operator: str, value) -> ColumnElement | None:
    if operator == "like":
        return expr.like(literal(str(value), Text()))
    comparator = COMPARATORS.get(operator)
    if comparator is None:
        return None
    return comparator(expr, literal(str(value), Text()))


class WhereGroup:
    """Predicates chained with ``and``/``or`` and rendered with SQL precedence.

    ``a and b or c`` becomes ``(a AND b) OR c``; the connector of the first
    predicate is ignored.
    """

    def __init__(self):
        self._runs: list[list[ColumnElement]] = []

    def __bool__(self) -> bool:
        return bool(self._runs)

    def add(self, clause: ColumnElement | None, boolean: str = "and") -> None:
        if clause is None:
            return
        if not self._runs or boolean == "or":
            self._runs.append([clause])
        else:
            self._runs[-1].append(clause)

    def clause(self) -> ColumnElement | None:
        if not self._runs:
            return None
        terms = [run[0] if len(run) == 1 else and_(*run) for run in self._runs]
        return terms[0] if len(terms) == 1 else or_(*terms)

    def apply(self, query: Query) -> Query:
        clause = self.clause()
        return query if clause is None else query.filter(clause)


class PredicateCompiler:
    """Turns normalized filters into SQLAlchemy criteria for one data source."""

    def __init__(self, source: DataSource, settings: GridSettings, dialect_name: str | None = None):
        self.source = source
        self.settings = settings
        self._dialect_name = dialect_name

    @property
    def dialect_name(self) -> str:
        if self._dialect_name is None:
            self._dialect_name = self.source.dialect_name
        return self._dialect_name

    @property
    def supports_regex(self) -> bool:
        return self.dialect_name in REGEX_DIALECTS

    def is_filterable(self, column: str) -> bool:
        """Whether ``column`` names something a filter can target.

        That is a custom filter, a source column, an EAV attribute or a
        ``relation..column`` path whose relation and column both exist.
        """
        if self.settings.filter_callable(column) is not None or column in self.source.attributes:
            return True
        if RELATION_SEPARATOR in column:
            parts = column.split(RELATION_SEPARATOR)
            relation = self.source.relationship(parts[0])
            if relation is None:
                return False
            return parts[-1] in relation.mapper.column_attrs or parts[-1] in relation.mapper.local_table.c
        return self.source.column_expression(column) is not None

    def apply_filter(self, group: WhereGroup, column: str, operator: str, value, boolean: str = "and") -> None:
        value = str(value)
        if operator == "like":
            if "%" not in value:
                value = f"%{value}%"
        elif operator == "regex":
            expr = self._column(column)
            if expr is None:
                return
            if self.supports_regex:
                group.add(expr.regexp_match(value), boolean)
            else:
                _LOG.debug("regex filter on %s skipped, dialect %s has no regex support", column, self.dialect_name)
            return

        if RELATION_SEPARATOR in column:
            # Relation existence is always required, whatever the group connector.
            group.add(self._relationship_predicate(column, operator, value))
        elif column in self.source.attributes:
            group.add(self._attribute_predicate(column, operator, value), boolean)
        else:
            expr = self._column(column)
            if expr is None:
                return
            if value == NULL_SENTINEL:
                group.add(expr.is_(None), boolean)
            elif value == NOT_NULL_SENTINEL:
                group.add(expr.is_not(None), boolean)
            elif self.dialect_name in POSTGRES_DIALECTS:
                group.add(self._postgres_predicate(expr, operator, value), boolean)
            else:
                group.add(compare(expr, operator, value), boolean)

    def apply(self, query: Query, column: str, operator: str, value, boolean: str = "and") -> Query:
        group = WhereGroup()
        self.apply_filter(group, column, operator, value, boolean)
        return group.apply(query)

    def apply_column_filter(self, query: Query, column: str, operator: str, value) -> Query:
        custom = self.settings.filter_callable(column)
        if custom is not None:
            return custom(query, operator, value)

        value = str(value)
        boolean = "and"
        values = [value]
        if MULTI_VALUE_SEPARATOR in value:
            values = value.split(MULTI_VALUE_SEPARATOR)
            boolean = "or"

        group = WhereGroup()
        for item in values:
            self.apply_filter(group, column, operator, item, boolean)
        return group.apply(query)

    def global_filter(self, group: WhereGroup, operator: str, value) -> None:
        """OR the same filter across every configured column."""
        for real, alias in self.settings.columns:
            if alias in self.source.appends:
                continue
            self.apply_filter(group, real, operator, value, "or")

    def apply_global(self, query: Query, operator: str, value) -> Query:
        custom = self.settings.global_
        if callable(custom):
            return custom(query, operator, value)
        group = WhereGroup()
        self.global_filter(group, operator, value)
        return group.apply(query)

    def _column(self, column: str):
        expr = self.source.column_expression(column)
        if expr is None:
            _LOG.debug("unknown filter column %r on %s, filter skipped", column, self.source.describe())
        return expr

    def _postgres_predicate(self, expr, operator: str, value: str) -> ColumnElement | None:
        text_expr = cast(expr, Text)
        clause = _text_compare(text_expr, operator, value)
        mapped = BOOLEAN_TEXT_MAPPINGS.get(value)
        if clause is not None and mapped is not None:
            clause = or_(clause, _text_compare(text_expr, operator, mapped))
        return clause

    def _relationship_predicate(self, column: str, operator: str, value: str) -> ColumnElement | None:
        parts = column.split(RELATION_SEPARATOR)
        relation_name, nested = parts[0], parts[-1]
        relation = self.source.relationship(relation_name)
        if relation is None:
            _LOG.debug("relationship %r not found on %s, filter skipped", relation_name, self.source.describe())
            return None

        target = relation.mapper
        if nested in target.column_attrs:
            inner_expr = getattr(target.class_, nested)
        elif nested in target.local_table.c:
            inner_expr = target.local_table.c[nested]
        else:
            _LOG.debug("column %r not found on %s, filter skipped", nested, target.class_.__name__)
            return None
        inner = compare(inner_expr, operator, value)
        if inner is None:
            return None

        attribute = getattr(self.source.entity, relation_name)
        return attribute.any(inner) if relation.uselist else attribute.has(inner)

    def _attribute_predicate(self, column: str, operator: str, value: str) -> ColumnElement | None:
        value_filter = compare(AttributeValue.value, operator, value)
        if value_filter is None:
            return None
        matches = (
            self.source.session.query(AttributeValue.entity_id)
            .join(Attribute, Attribute.id == AttributeValue.attribute_id)
            .filter(
                AttributeValue.entity_type == self.source.eav_entity_type,
                Attribute.slug == column,
                value_filter,
            )
            .all()
        )
        key = self.source.primary_key
        if not matches:
            return key.is_(None)
        entity_ids = list(dict.fromkeys(row.entity_id for row in matches))
        return key.in_([coerce_filter_value(key, entity_id) for entity_id in entity_ids])

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy import and_, func, inspect, select
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import InstanceState, Query, Session, object_session, with_parent
from sqlalchemy.orm.dynamic import AppenderQuery
from sqlalchemy.sql import ColumnElement, FromClause

from datagrid.core.errors import InvalidDataSourceError

_LOG = logging.getLogger("datagrid.sources")

REGEX_DIALECTS = {"mysql", "mariadb"}
POSTGRES_DIALECTS = {"postgresql"}
RELATION_SEPARATOR = ".."


def _has_grouping(query: Query) -> bool:
    return bool(getattr(query.statement, "_group_by_clauses", ()))


def _slug(item: Any) -> str | None:
    if isinstance(item, str):
        return item
    if isinstance(item, Mapping):
        return item.get("slug")
    return getattr(item, "slug", None)


class DataSource:
    """A query the grid can work on, plus the metadata needed to compile filters."""

    kind = "query"

    def __init__(self, query: Query, entity: type | None = None):
        self.query = query
        self.entity = entity
        self.appends: list[str] = []
        self.attributes: list[str] = []

    @property
    def session(self) -> Session:
        return self.query.session

    @property
    def dialect_name(self) -> str:
        bind = self.session.get_bind(mapper=self.entity) if self.entity is not None else self.session.get_bind()
        return bind.dialect.name

    @property
    def supports_regex(self) -> bool:
        return self.dialect_name in REGEX_DIALECTS

    @property
    def primary_key(self):
        if self.entity is None:
            return None
        mapper = inspect(self.entity)
        return getattr(self.entity, mapper.get_property_by_column(mapper.primary_key[0]).key)

    @property
    def eav_entity_type(self) -> str | None:
        if self.entity is None:
            return None
        resolver = getattr(self.entity, "eav_entity_type", None)
        return resolver() if callable(resolver) else self.entity.__name__

    @property
    def tables(self) -> list[FromClause]:
        found: list[FromClause] = []
        for desc in self.query.column_descriptions:
            expr = desc.get("expr")
            table = expr if isinstance(expr, FromClause) else getattr(expr, "table", None)
            if isinstance(table, FromClause) and table not in found:
                found.append(table)
        return found

    def relationship(self, name: str):
        if self.entity is None:
            return None
        return inspect(self.entity).relationships.get(name)

    def relation_column(self, name: str) -> ColumnElement | None:
        """Correlated subquery reading ``relation..column`` for each row.

        To-many relations yield their smallest value.
        """
        parts = name.split(RELATION_SEPARATOR)
        relation = self.relationship(parts[0])
        if relation is None or parts[-1] not in relation.mapper.local_table.c:
            return None
        inner = relation.mapper.local_table.c[parts[-1]]
        criteria = relation.primaryjoin
        if relation.secondary is not None:
            criteria = and_(criteria, relation.secondaryjoin)
        if relation.uselist:
            return select(func.min(inner)).where(criteria).scalar_subquery()
        return select(inner).where(criteria).limit(1).scalar_subquery()

    def column_expression(self, name: str) -> ColumnElement | None:
        """Resolve ``column``, ``table.column``, a joined relationship's column or ``relation..column``.

        Names that match none of these give ``None``; they are never rendered as raw SQL.
        """
        if RELATION_SEPARATOR in name:
            return self.relation_column(name)
        table_name, _, column_name = name.rpartition(".")
        if self.entity is not None:
            mapper = inspect(self.entity)
            if not table_name and column_name in mapper.column_attrs:
                return getattr(self.entity, column_name)
            candidates = [mapper.local_table] + [rel.mapper.local_table for rel in mapper.relationships]
        else:
            candidates = self.tables
        for table in candidates:
            if table_name and getattr(table, "name", None) != table_name:
                continue
            if column_name in table.c:
                return table.c[column_name]
        return None

    def selected_column_names(self, query: Query) -> list[str]:
        names: list[str] = []
        for col in query.statement.selected_columns:
            for text in (getattr(col, "key", None), getattr(col, "name", None), str(col)):
                if text and text not in names:
                    names.append(str(text))
        return names

    def select(self, query: Query, expressions: list[ColumnElement]) -> Query:
        if not expressions:
            return query
        froms = [self.entity] if self.entity is not None else self.tables
        if froms:
            query = query.select_from(*froms)
        return query.with_entities(*expressions)

    def count(self, query: Query) -> int:
        # Grouped queries are counted by materializing the rows.
        if _has_grouping(query):
            return len(query.all())
        return query.count()

    def describe(self) -> str:
        return f"{self.kind}:{self.entity.__name__ if self.entity is not None else '-'}"


class ModelQuerySource(DataSource):
    kind = "model_query"

    def extract_properties(self) -> None:
        cls = self.entity
        appends: list[str] = []
        for klass in cls.__mro__:
            for name, value in vars(klass).items():
                if name.startswith("_") or name in appends:
                    continue
                if isinstance(value, (property, hybrid_property)):
                    appends.append(name)
        self.appends = appends

        available = getattr(cls, "available_attributes", None)
        if callable(available):
            slugs = (_slug(item) for item in available(self.session))
            self.attributes = [slug for slug in slugs if slug]


class ModelSource(ModelQuerySource):
    kind = "model"

    def __init__(self, instance: Any, session: Session):
        self.instance = instance
        super().__init__(session.query(type(instance)), type(instance))


class RelationSource(DataSource):
    """A dynamic (``lazy="dynamic"``) relationship, re-expressed as a plain query."""

    kind = "has_many"

    def __init__(self, relation: AppenderQuery, session: Session):
        self.relation = relation
        parent = relation.instance
        attribute = getattr(type(parent), relation.attr.key)
        target = attribute.property.mapper.class_
        super().__init__(session.query(target).filter(with_parent(parent, attribute)), target)


class ManyToManySource(RelationSource):
    kind = "belongs_to_many"


def _entity_of(query: Query) -> type | None:
    for desc in query.column_descriptions:
        entity = desc.get("entity")
        if entity is not None:
            return entity
    return None


def resolve_data_source(data: Any) -> DataSource:
    if isinstance(data, DataSource):
        return data

    if isinstance(data, AppenderQuery):
        session = object_session(data.instance)
        if session is None:
            raise InvalidDataSourceError(data)
        prop = inspect(type(data.instance)).relationships[data.attr.key]
        source_cls = ManyToManySource if prop.secondary is not None else RelationSource
        source = source_cls(data, session)
    elif isinstance(data, Query):
        entity = _entity_of(data)
        if entity is None:
            source = DataSource(data)
        else:
            source = ModelQuerySource(data, entity)
            source.extract_properties()
    else:
        state = inspect(data, raiseerr=False)
        if not isinstance(state, InstanceState):
            raise InvalidDataSourceError(data)
        session = object_session(data)
        if session is None:
            raise InvalidDataSourceError(data)
        source = ModelSource(data, session)
        source.extract_properties()

    _LOG.debug("resolved data source %s", source.describe())
    return source

import unittest
from decimal import Decimal

from sqlalchemy import Numeric, column
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import BindParameter

from datagrid.schemas.grid import GridSettings
from datagrid.services.predicates import PredicateCompiler, WhereGroup, coerce_filter_value
from datagrid.services.sources import resolve_data_source
from grid_fixtures import Author, Post, make_engine, seed


_PG = postgresql.dialect(paramstyle="named")


def _sql(clause, dialect) -> str:
    return str(clause.compile(dialect=dialect, compile_kwargs={"literal_binds": True}))


class WhereGroupTests(unittest.TestCase):
    def test_empty_group_has_no_clause(self):
        group = WhereGroup()
        self.assertFalse(group)
        self.assertIsNone(group.clause())

    def test_and_binds_tighter_than_or(self):
        group = WhereGroup()
        group.add(column("a") == 1)
        group.add(column("b") == 2, "and")
        group.add(column("c") == 3, "or")
        sql = _sql(group.clause(), sqlite.dialect())
        self.assertEqual(sql.count(" AND "), 1)
        self.assertEqual(sql.count(" OR "), 1)
        self.assertLess(sql.index("AND"), sql.index("OR"))

    def test_first_connector_is_ignored(self):
        group = WhereGroup()
        group.add(column("a") == 1, "or")
        self.assertNotIn("OR", _sql(group.clause(), sqlite.dialect()))

    def test_none_clause_is_ignored(self):
        group = WhereGroup()
        group.add(None)
        self.assertFalse(group)


class CoerceFilterValueTests(unittest.TestCase):
    def test_typed_columns(self):
        self.assertEqual(coerce_filter_value(Post.score, "7"), 7)
        self.assertIs(coerce_filter_value(Post.published, "true"), True)
        self.assertIs(coerce_filter_value(Post.published, "0"), False)
        self.assertEqual(coerce_filter_value(Post.title, "abc"), "abc")

    def test_decimal_comma(self):
        self.assertEqual(coerce_filter_value(column("amount", Numeric(10, 2)), "9,50"), Decimal("9.50"))

    def test_mismatched_value_is_bound_as_text(self):
        value = coerce_filter_value(Post.score, "abc")
        self.assertIsInstance(value, BindParameter)
        self.assertEqual(value.value, "abc")


class PredicateCompilationTests(unittest.TestCase):
    def setUp(self):
        self.engine = make_engine()
        self.session = Session(self.engine)
        self.source = resolve_data_source(self.session.query(Post))
        self.settings = GridSettings(columns=["title", "score"])

    def tearDown(self):
        self.session.close()
        self.engine.dispose()

    def _compile(self, dialect_name, dialect, *filters):
        compiler = PredicateCompiler(self.source, self.settings, dialect_name=dialect_name)
        group = WhereGroup()
        for args in filters:
            compiler.apply_filter(group, *args)
        return group, (_sql(group.clause(), dialect) if group else "")

    def test_like_is_wrapped(self):
        _, sql = self._compile("sqlite", sqlite.dialect(), ("title", "like", "Bob"))
        self.assertIn("posts.title LIKE '%Bob%'", sql)

    def test_like_with_wildcard_is_kept(self):
        _, sql = self._compile("sqlite", sqlite.dialect(), ("title", "like", "Bo%"))
        self.assertIn("posts.title LIKE 'Bo%'", sql)

    def test_null_sentinels(self):
        _, sql = self._compile("sqlite", sqlite.dialect(), ("title", "like", "null"))
        self.assertIn("posts.title IS NULL", sql)
        _, sql = self._compile("sqlite", sqlite.dialect(), ("title", "like", "%not_null%"))
        self.assertIn("posts.title IS NOT NULL", sql)

    def test_null_sentinel_wins_on_postgres(self):
        _, sql = self._compile("postgresql", _PG, ("title", "like", "%null%"))
        self.assertIn("posts.title IS NULL", sql)
        self.assertNotIn("CAST", sql)

    def test_postgres_casts_to_text(self):
        _, sql = self._compile("postgresql", _PG, ("score", ">", "5"))
        self.assertIn("CAST(posts.score AS TEXT) > '5'", sql)

    def test_postgres_boolean_text_mapping(self):
        _, sql = self._compile("postgresql", _PG, ("published", "like", "1"))
        self.assertIn("LIKE '%1%'", sql)
        self.assertIn("LIKE '%t%'", sql)
        self.assertIn(" OR ", sql)

    def test_regex_on_mysql(self):
        compiler = PredicateCompiler(self.source, self.settings, dialect_name="mysql")
        self.assertTrue(compiler.supports_regex)
        _, sql = self._compile("mysql", mysql.dialect(), ("title", "regex", "^B"))
        self.assertIn("REGEXP", sql)

    def test_regex_is_skipped_elsewhere(self):
        for name in ("sqlite", "postgresql"):
            with self.subTest(dialect=name):
                group, _ = self._compile(name, sqlite.dialect(), ("title", "regex", "^B"))
                self.assertFalse(group)

    def test_relationship_path_ignores_or_connector(self):
        _, sql = self._compile(
            "sqlite",
            sqlite.dialect(),
            ("title", "like", "x"),
            ("author..name", "like", "Ali", "or"),
        )
        self.assertIn("EXISTS", sql)
        self.assertNotIn(" OR ", sql)

    def test_unknown_relationship_is_skipped(self):
        group, _ = self._compile("sqlite", sqlite.dialect(), ("editor..name", "like", "x"))
        self.assertFalse(group)

    def test_unsupported_operator_is_skipped(self):
        group, _ = self._compile("sqlite", sqlite.dialect(), ("title", "~~", "x"))
        self.assertFalse(group)

    def test_unknown_column_is_skipped(self):
        for column in ("1=1 OR title", "missing"):
            with self.subTest(column=column):
                with self.assertLogs("datagrid.predicates", level="DEBUG"):
                    group, _ = self._compile("sqlite", sqlite.dialect(), (column, "like", "x"))
                self.assertFalse(group)


class PredicateExecutionTests(unittest.TestCase):
    def setUp(self):
        self.engine = make_engine()
        self.session = Session(self.engine)
        seed(self.session)

    def tearDown(self):
        self.session.close()
        self.engine.dispose()

    def _compiler(self, entity, settings=None):
        source = resolve_data_source(self.session.query(entity))
        return source, PredicateCompiler(source, GridSettings.coerce(settings))

    def _ids(self, query, entity):
        return [row.id for row in query.order_by(entity.id.asc()).all()]

    def test_typed_comparison(self):
        source, compiler = self._compiler(Post)
        query = compiler.apply_column_filter(source.query, "score", ">=", "7")
        self.assertEqual(self._ids(query, Post), [2, 4, 6])

    def test_mismatched_value_does_not_raise(self):
        source, compiler = self._compiler(Post)
        query = compiler.apply_column_filter(source.query, "score", "=", "abc")
        self.assertEqual(self._ids(query, Post), [])

    def test_datetime_date_uses_day_range(self):
        source, compiler = self._compiler(Post)
        query = compiler.apply_column_filter(source.query, "created_at", "=", "2026-02-26")
        self.assertEqual(self._ids(query, Post), [2, 3])
        query = compiler.apply_column_filter(source.query, "created_at", "!=", "2026-02-26")
        self.assertEqual(self._ids(query, Post), [1, 4, 5, 6])

    def test_multi_value_is_or_group(self):
        source, compiler = self._compiler(Author)
        query = compiler.apply_column_filter(source.query, "name", "like", "Alice, Bob")
        self.assertEqual(self._ids(query, Author), [1, 2])

    def test_null_sentinels(self):
        source, compiler = self._compiler(Author)
        self.assertEqual(self._ids(compiler.apply_column_filter(source.query, "email", "like", "null"), Author), [3])
        self.assertEqual(self._ids(compiler.apply_column_filter(source.query, "email", "like", "not_null"), Author), [1, 2])

    def test_relationship_filters(self):
        source, compiler = self._compiler(Post)
        query = compiler.apply_column_filter(source.query, "author..name", "like", "Bob")
        self.assertEqual(self._ids(query, Post), [4, 5])

        source, compiler = self._compiler(Author)
        query = compiler.apply_column_filter(source.query, "posts..title", "like", "Draft")
        self.assertEqual(self._ids(query, Author), [1])

    def test_filterable_columns(self):
        _, compiler = self._compiler(Post)
        for column in ("title", "posts.score", "author..name"):
            with self.subTest(column=column):
                self.assertTrue(compiler.is_filterable(column))
        for column in ("1=1 OR title", "editor..name", "author..nope", "missing"):
            with self.subTest(column=column):
                self.assertFalse(compiler.is_filterable(column))
        _, compiler = self._compiler(Author)
        self.assertTrue(compiler.is_filterable("nickname"))

    def test_attribute_filter(self):
        source, compiler = self._compiler(Author)
        self.assertEqual(source.attributes, ["nickname"])
        query = compiler.apply_column_filter(source.query, "nickname", "like", "ally")
        self.assertEqual(self._ids(query, Author), [1])

    def test_attribute_filter_without_matches_matches_nothing(self):
        source, compiler = self._compiler(Author)
        query = compiler.apply_column_filter(source.query, "nickname", "=", "nobody")
        self.assertEqual(self._ids(query, Author), [])

    def test_attribute_filter_multi_value(self):
        source, compiler = self._compiler(Author)
        query = compiler.apply_column_filter(source.query, "nickname", "=", "ally, bobby")
        self.assertEqual(self._ids(query, Author), [1, 2])

    def test_custom_column_filter(self):
        calls = []

        def only_bob(query, operator, value):
            calls.append((operator, value))
            return query.filter(Author.email == "bob@example.com")

        source, compiler = self._compiler(Author, {"filters": {"name": only_bob}})
        query = compiler.apply_column_filter(source.query, "name", "like", "whatever")
        self.assertEqual(self._ids(query, Author), [2])
        self.assertEqual(calls, [("like", "whatever")])

    def test_global_filter_skips_virtual_columns(self):
        source, compiler = self._compiler(Author, {"columns": ["name", "email", "display_name"]})
        self.assertIn("display_name", source.appends)
        query = compiler.apply_global(source.query, "like", "example")
        self.assertEqual(self._ids(query, Author), [1, 2])

    def test_global_filter_with_alias(self):
        source, compiler = self._compiler(Post, {"columns": {"title": "headline", 0: "score"}})
        query = compiler.apply_global(source.query, "like", "Bob")
        self.assertEqual(self._ids(query, Post), [4, 5])

    def test_custom_global_filter(self):
        source, compiler = self._compiler(Post, {"global": lambda query, operator, value: query.filter(Post.published.is_(True))})
        query = compiler.apply_global(source.query, "like", "ignored")
        self.assertEqual(self._ids(query, Post), [1, 2, 4, 6])


if __name__ == "__main__":
    unittest.main()

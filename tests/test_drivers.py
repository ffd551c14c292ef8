"""
Tests for the PostgreSQL and MySQL drivers. Engine round trips are mocked;
the shared query path runs against an in-memory SQLite engine.
"""

import pytest
from unittest.mock import patch
from decimal import Decimal
from sqlalchemy import create_engine
from sqlalchemy.pool import NullPool, QueuePool, StaticPool

from hubpanel.drivers import MySQLDriver, PostgreSQLDriver, QueryResult, describe_error
from hubpanel.drivers.base import split_columns, to_int
from hubpanel.errors import DatabaseConnectionError
from hubpanel.models import DataFilter, DatabaseEngineType, ManagedDatabase, TableDataOptions


def pg_config(**overrides):
    values = dict(
        name="analytics", host="pg.internal", port=5432, user="reader",
        password="p@ss:word", database="analytics",
        engine_type=DatabaseEngineType.POSTGRESQL,
    )
    values.update(overrides)
    return ManagedDatabase(**values)


def mysql_config(**overrides):
    values = dict(
        name="shop", host="mysql.internal", port=3306, user="shop",
        password="secret", database="shop", engine_type=DatabaseEngineType.MYSQL,
    )
    values.update(overrides)
    return ManagedDatabase(**values)


class TestPostgreSQLDriver:

    def test_connection_url_escapes_password(self):
        url = PostgreSQLDriver(pg_config()).get_connection_url()
        assert url.drivername == "postgresql+psycopg2"
        assert url.password == "p@ss:word"
        assert url.host == "pg.internal"
        assert url.database == "analytics"
        assert "p@ss:word" not in url.render_as_string(hide_password=True)

    def test_connect_args(self):
        args = PostgreSQLDriver(pg_config()).get_connect_args(2.5)
        assert args["connect_timeout"] == 2
        assert args["application_name"] == "HubPanel"

    def test_connect_timeout_never_zero(self):
        assert PostgreSQLDriver(pg_config()).get_connect_args(0.3)["connect_timeout"] == 1

    def test_quote_identifier(self):
        assert PostgreSQLDriver(pg_config()).quote_identifier('we"ird') == '"we""ird"'

    def test_qualify_defaults_to_public(self):
        assert PostgreSQLDriver(pg_config()).qualify(None, "users") == '"public"."users"'

    def test_engines_are_lazy_and_pooled(self):
        driver = PostgreSQLDriver(pg_config())
        assert driver._engine is None
        engine = driver.engine
        assert isinstance(engine.pool, QueuePool)
        assert driver.engine is engine
        driver.close()
        assert driver._engine is None

    def test_test_engine_is_unpooled(self):
        engine = PostgreSQLDriver(pg_config()).create_test_engine(3)
        assert isinstance(engine.pool, NullPool)
        engine.dispose()

    def test_list_tables_formats_sizes(self):
        driver = PostgreSQLDriver(pg_config())
        rows = [
            {"name": "events", "size_bytes": 1048576, "row_estimate": 1200},
            {"name": "empty", "size_bytes": None, "row_estimate": -1},
        ]
        with patch.object(driver, "query", return_value=QueryResult(rows, ["name", "size_bytes", "row_estimate"])) as query:
            tables = driver.list_tables()

        assert query.call_args[0][1] == {"schema": "public"}
        assert tables[0].size == "1.00 MB"
        assert tables[0].row_estimate == 1200
        assert tables[1].size == "0 Bytes"
        assert tables[1].size_bytes == 0

    def test_table_structure(self):
        driver = PostgreSQLDriver(pg_config())
        columns = [{
            "column_name": "id", "data_type": "integer", "udt_name": "int4",
            "character_maximum_length": None, "numeric_precision": 32, "numeric_scale": 0,
            "is_nullable": "NO", "column_default": None,
        }]
        constraints = [{"constraint_name": "t_pkey", "constraint_type": "p", "columns": ["id"]}]
        indexes = [{"index_name": "t_pkey", "is_unique": True, "is_primary": True, "definition": "CREATE UNIQUE INDEX ..."}]
        results = [
            QueryResult(columns, list(columns[0])),
            QueryResult(constraints, list(constraints[0])),
            QueryResult(indexes, list(indexes[0])),
        ]
        with patch.object(driver, "query", side_effect=results):
            structure = driver.get_table_structure("public", "t")

        assert structure.columns[0].udt_name == "int4"
        assert structure.constraints[0].columns == ["id"]
        assert structure.indexes[0].is_primary is True


class TestMySQLDriver:

    def test_connection_url(self):
        url = MySQLDriver(mysql_config()).get_connection_url()
        assert url.drivername == "mysql+pymysql"
        assert url.port == 3306

    def test_connect_args(self):
        args = MySQLDriver(mysql_config()).get_connect_args(5)
        assert args == {"connect_timeout": 5, "charset": "utf8mb4"}

    @pytest.mark.parametrize("schema,expected", [(None, "shop"), ("public", "shop"), ("other", "other")])
    def test_public_schema_maps_to_database(self, schema, expected):
        assert MySQLDriver(mysql_config()).resolve_schema(schema) == expected

    def test_quote_identifier(self):
        assert MySQLDriver(mysql_config()).quote_identifier("we`ird") == "`we``ird`"

    def test_constraint_types_are_normalized(self):
        driver = MySQLDriver(mysql_config())
        columns = [{
            "column_name": "id", "data_type": "int", "udt_name": "int(11)",
            "character_maximum_length": None, "numeric_precision": 10, "numeric_scale": 0,
            "is_nullable": "NO", "column_default": 0,
        }]
        constraints = [
            {"constraint_name": "PRIMARY", "constraint_type": "PRIMARY KEY", "columns_str": "id"},
            {"constraint_name": "fk_user", "constraint_type": "FOREIGN KEY", "columns_str": "user_id,org_id"},
        ]
        indexes = [{"index_name": "PRIMARY", "is_unique": 1, "is_primary": 1, "definition": "id"}]
        results = [
            QueryResult(columns, list(columns[0])),
            QueryResult(constraints, list(constraints[0])),
            QueryResult(indexes, list(indexes[0])),
        ]
        with patch.object(driver, "query", side_effect=results) as query:
            structure = driver.get_table_structure("public", "orders")

        assert query.call_args_list[0][0][1] == {"schema": "shop", "table": "orders"}
        assert structure.columns[0].column_default == "0"
        assert [c.constraint_type for c in structure.constraints] == ["p", "f"]
        assert structure.constraints[1].columns == ["user_id", "org_id"]
        assert structure.indexes[0].is_unique is True


class TestQuery:
    """The shared query path, exercised over SQLite."""

    @pytest.fixture
    def driver(self):
        driver = PostgreSQLDriver(pg_config())
        driver._engine = create_engine("sqlite://")
        yield driver
        driver.close()

    def test_returns_rows_and_fields(self, driver):
        result = driver.query("SELECT 1 AS one, :name AS name", {"name": "x"})
        assert result.fields == ["one", "name"]
        assert result.rows == [{"one": 1, "name": "x"}]
        assert len(result) == 1

    def test_ping(self, driver):
        driver.ping()

    def test_errors_are_wrapped(self, driver):
        with pytest.raises(DatabaseConnectionError) as exc_info:
            driver.query("SELECT * FROM missing_table")
        assert "missing_table" in exc_info.value.message
        assert "[SQL:" not in exc_info.value.message


    def test_execute_commits_and_returns_rows(self, driver):
        driver._engine = create_engine("sqlite://", poolclass=StaticPool)
        driver.execute("CREATE TABLE notes (body TEXT)")
        assert driver.execute("INSERT INTO notes VALUES ('kept')").rows == []
        assert driver.query("SELECT body FROM notes").rows == [{"body": "kept"}]

    def test_execute_passes_sql_verbatim(self, driver):
        result = driver.execute("SELECT ':not_a_param' AS a, '50%' AS b")
        assert result.rows == [{"a": ":not_a_param", "b": "50%"}]

    def test_execute_errors_are_wrapped(self, driver):
        with pytest.raises(DatabaseConnectionError):
            driver.execute("SELEC nothing")


class TestTableData:
    """Row browsing through the shared query path, over SQLite."""

    @pytest.fixture
    def driver(self):
        driver = PostgreSQLDriver(pg_config())
        driver._engine = create_engine("sqlite://", poolclass=StaticPool)
        driver.execute("CREATE TABLE items (id INTEGER PRIMARY KEY, name TEXT, price REAL, note TEXT)")
        driver.execute(
            "INSERT INTO items VALUES "
            "(1, 'apple', 1.5, NULL), (2, 'banana', 0.5, 'ripe'), (3, 'cherry', 4.0, NULL), "
            "(4, 'date', 6.25, 'dried'), (5, 'elderberry', 9.0, NULL)"
        )
        yield driver
        driver.close()

    def test_first_page(self, driver):
        page = driver.get_table_data("main", "items", TableDataOptions(page_size=2, order_by="id"))
        assert [row["name"] for row in page.rows] == ["apple", "banana"]
        assert page.fields == ["id", "name", "price", "note"]
        assert page.total == 5
        assert page.total_pages == 3

    def test_last_and_past_last_page(self, driver):
        last = driver.get_table_data("main", "items", TableDataOptions(page=3, page_size=2, order_by="id"))
        assert [row["name"] for row in last.rows] == ["elderberry"]

        beyond = driver.get_table_data("main", "items", TableDataOptions(page=9, page_size=2))
        assert beyond.rows == []
        assert beyond.total == 5

    def test_descending_order(self, driver):
        page = driver.get_table_data(
            "main", "items", TableDataOptions(page_size=2, order_by="price", order_dir="DESC")
        )
        assert [row["name"] for row in page.rows] == ["elderberry", "date"]

    def test_filters_are_combined(self, driver):
        options = TableDataOptions(
            order_by="id",
            filters=[
                DataFilter(column="note", operator="IS NULL"),
                DataFilter(column="price", operator=">", value=2),
            ],
        )
        page = driver.get_table_data("main", "items", options)
        assert [row["name"] for row in page.rows] == ["cherry", "elderberry"]
        assert page.total == 2

    def test_filter_values_are_bound(self, driver):
        options = TableDataOptions(filters=[DataFilter(column="name", operator="=", value="x' OR 1=1 --")])
        page = driver.get_table_data("main", "items", options)
        assert page.rows == []
        assert page.total == 0

    def test_like_filter(self, driver):
        options = TableDataOptions(order_by="id", filters=[DataFilter(column="name", operator="LIKE", value="%rr%")])
        page = driver.get_table_data("main", "items", options)
        assert [row["name"] for row in page.rows] == ["cherry", "elderberry"]

class TestHelpers:

    def test_describe_error_prefers_wrapped_message(self):
        class Wrapped(Exception):
            orig = Exception("  FATAL: database \"x\" does not exist\n")

        assert describe_error(Wrapped("noise")) == 'FATAL: database "x" does not exist'

    def test_describe_error_plain(self):
        assert describe_error(ValueError("bad")) == "bad"

    @pytest.mark.parametrize(
        "value,expected",
        [(None, []), (["a", "b"], ["a", "b"]), ("{a,b}", ["a", "b"]), ("a", ["a"]), ("", [])],
    )
    def test_split_columns(self, value, expected):
        assert split_columns(value) == expected

    def test_to_int(self):
        assert to_int("12") == 12
        assert to_int(None) == 0
        assert to_int("n/a", default=-1) == -1


class TestDialectSpecifics:

    def test_ilike_is_native_on_postgresql(self):
        assert PostgreSQLDriver(pg_config()).filter_operator("ILIKE") == "ILIKE"

    def test_ilike_becomes_like_on_mysql(self):
        driver = MySQLDriver(mysql_config())
        assert driver.filter_operator("ILIKE") == "LIKE"
        assert driver.filter_operator(">=") == ">="

    def test_mysql_table_data_sql(self):
        driver = MySQLDriver(mysql_config())
        results = [
            QueryResult([{"total": 3}], ["total"]),
            QueryResult([{"id": 1}], ["id"]),
        ]
        options = TableDataOptions(
            page=2, page_size=1, order_by="id", order_dir="DESC",
            filters=[DataFilter(column="email", operator="ILIKE", value="%@x.io")],
        )
        with patch.object(driver, "query", side_effect=results) as query:
            page = driver.get_table_data("public", "orders", options)

        count_sql, count_params = query.call_args_list[0].args
        assert count_sql == "SELECT COUNT(*) AS total FROM `shop`.`orders` WHERE `email` LIKE :filter_0"
        assert count_params == {"filter_0": "%@x.io"}

        data_sql, data_params = query.call_args_list[1].args
        assert data_sql == (
            "SELECT * FROM `shop`.`orders` WHERE `email` LIKE :filter_0 "
            "ORDER BY `id` DESC LIMIT :page_limit OFFSET :page_offset"
        )
        assert data_params == {"filter_0": "%@x.io", "page_limit": 1, "page_offset": 1}
        assert page.total == 3
        assert page.total_pages == 3


class TestMonitoringQueries:

    def test_slow_queries_without_pg_stat_statements(self):
        driver = PostgreSQLDriver(pg_config())
        error = DatabaseConnectionError('relation "pg_stat_statements" does not exist')
        with patch.object(driver, "query", side_effect=error):
            assert driver.get_slow_queries() == []

    def test_mysql_slow_log_unavailable(self):
        driver = MySQLDriver(mysql_config())
        with patch.object(driver, "query", side_effect=DatabaseConnectionError("denied")):
            assert driver.get_slow_queries() == []

    def test_active_connections_are_not_swallowed(self):
        driver = PostgreSQLDriver(pg_config())
        with patch.object(driver, "query", side_effect=DatabaseConnectionError("refused")):
            with pytest.raises(DatabaseConnectionError):
                driver.get_active_connections()

    def test_postgresql_extras(self):
        driver = PostgreSQLDriver(pg_config())
        results = [
            QueryResult([{"name": "analytics", "size_bytes": 2097152}], ["name", "size_bytes"]),
            QueryResult([{"heap_read": 10, "heap_hit": 90, "ratio": Decimal("90.00")}], []),
            QueryResult([{"total": 5, "commits": 4, "rollbacks": 1, "tps": Decimal("0.5")}], []),
            QueryResult([{"schema": "public", "table": "events", "dead_rows": 12}], []),
        ]
        with patch.object(driver, "query", side_effect=results):
            extras = driver.get_monitoring_extras()

        assert extras["database_sizes"] == [
            {"name": "analytics", "size": "2.00 MB", "size_bytes": 2097152}
        ]
        assert extras["cache_hit"]["ratio"] == Decimal("90.00")
        assert extras["transactions"]["commits"] == 4
        assert extras["table_bloat"][0]["table"] == "events"

    def test_mysql_has_no_extras(self):
        assert MySQLDriver(mysql_config()).get_monitoring_extras() == {}

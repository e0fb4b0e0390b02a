"""
DML, bind variables and error handling on SQLite.
"""
import dbsession as db
import pytest
from dbsession import BindRegistry, ParameterStore, ResultMode


def test_execute_dml_rowcount(sqlite_conn):
    assert db.execute_dml(sqlite_conn, 'UPDATE test_table SET value = value + 1') == 3
    assert db.execute_dml(sqlite_conn, "DELETE FROM test_table WHERE name = 'Zed'") == 0


def test_prepared_insert(sqlite_conn):
    variables = BindRegistry()
    sqlite_conn.bind(variables, 'name', 'text', 'David')
    sqlite_conn.bind(variables, 'value', 'number', 40)

    rowcount = db.execute_prepared_dml(
        sqlite_conn, 'INSERT INTO test_table (name, value) VALUES (:name, :value)', variables)

    assert rowcount == 1
    assert variables.results == {'name': 'David', 'value': 40}
    value = sqlite_conn.query(ResultMode.FIRST_ROW_FIRST_COLUMN, "SELECT value FROM test_table WHERE name = 'David'")
    assert value == 40


def test_prepared_alias(sqlite_conn):
    sqlite_conn.execute_dml('CREATE TABLE t (c1 TEXT)')
    variables = BindRegistry()
    sqlite_conn.bind(variables, 'p1', 'text', 'hello')
    assert sqlite_conn.execute_prepared_dml2('INSERT INTO t(c1) VALUES(:p1)', variables) == 1


def test_clob_round_trip(sqlite_conn):
    body = 'lorem ipsum ' * 5000
    variables = BindRegistry()
    sqlite_conn.bind(variables, 'notes', 'clob', body)
    sqlite_conn.bind(variables, 'name', 'text', 'Alice')

    rowcount = sqlite_conn.execute_prepared_dml('UPDATE test_table SET notes = :notes WHERE name = :name', variables)

    assert rowcount == 1
    assert variables.results['notes'] == body
    assert variables['notes'].staged is None
    stored = sqlite_conn.query(ResultMode.FIRST_ROW_FIRST_COLUMN, "SELECT notes FROM test_table WHERE name = 'Alice'")
    assert stored == body


def test_bind_param_from_store(sqlite_path):
    store = ParameterStore(CustomerName='Bob')
    with db.connect({'drivername': 'sqlite', 'connection': sqlite_path, 'autoCommit': True},
                    store=store) as cn:
        cn.execute_dml('CREATE TABLE customers (name TEXT)')
        variables = BindRegistry()
        cn.bind_param(variables, 'customername', 'text')
        assert cn.execute_prepared_dml('INSERT INTO customers (name) VALUES (:customername)', variables) == 1
        assert cn.query(ResultMode.ALL_FIRST_COLUMN_VALUES, 'SELECT name FROM customers') == ['Bob']
        assert cn.quote_or_null_param('CustomerName', with_comma=True) == "'Bob', "


class TestErrors:

    def test_strict_raises_with_diagnostics(self, sqlite_conn):
        with pytest.raises(db.ExecuteFailed) as exc_info:
            sqlite_conn.query(ResultMode.ALL_ROWS, 'SELECT * FROM missing_table')
        assert 'no such table' in exc_info.value.error.message
        assert exc_info.value.error.sql == 'SELECT * FROM missing_table'
        assert 'no such table' in sqlite_conn.store.get_param('DBError')

    def test_non_strict_returns_false(self, sqlite_conn):
        result = sqlite_conn.query(ResultMode.ALL_ROWS, 'SELECT * FROM missing_table', strict=False)
        assert result is False
        assert sqlite_conn.last_error.code
        assert 'missing_table' in sqlite_conn.last_error.message

    def test_non_strict_session(self, sqlite_path):
        with db.connect({'drivername': 'sqlite', 'connection': sqlite_path, 'strict': 'false'}) as cn:
            assert cn.execute_dml('DELETE FROM missing_table') is False
            assert cn.query(ResultMode.FIRST_ROW_FIRST_COLUMN, 'SELECT 1') == 1

    def test_constraint_violation(self, sqlite_conn):
        variables = BindRegistry()
        sqlite_conn.bind(variables, 'name', 'text', 'Alice')
        sqlite_conn.bind(variables, 'value', 'text', 1)
        sql = 'INSERT INTO test_table (name, value) VALUES (:name, :value)'
        assert sqlite_conn.execute_prepared_dml(sql, variables, strict=False) is False
        assert 'UNIQUE' in sqlite_conn.store.get_param('DBError')
        assert variables.results == {'name': 'Alice', 'value': 1}

    def test_stored_procedures_unsupported(self, sqlite_conn):
        with pytest.raises(db.QueryError):
            sqlite_conn.execute_stored_procedure('refresh_totals', BindRegistry())

    def test_connect_failure(self, tmp_path):
        store = ParameterStore()
        missing = str(tmp_path / 'no' / 'such' / 'dir' / 'x.db')
        with pytest.raises(db.ConnectFailed):
            db.connect({'drivername': 'sqlite', 'connection': missing}, store=store)
        assert store.get_param('DBError')

    def test_not_connected_after_disconnect(self, sqlite_path):
        cn = db.connect({'drivername': 'sqlite', 'connection': sqlite_path})
        db.disconnect(cn)
        with pytest.raises(db.NotConnected):
            cn.query(ResultMode.RAW, 'SELECT 1')

"""
Tests for the Oracle strategy and stored procedure calls over a mocked
python-oracledb connection.
"""
import oracledb
import pytest
from dbsession.exceptions import LobWriteFailed
from dbsession.options import SessionOptions
from dbsession.strategy import get_strategy
from dbsession.strategy.oracle import _read, output_type_handler
from dbsession.types import BindType
from dbsession.variables import BindRegistry


@pytest.fixture
def strategy():
    return get_strategy('oracle')


class TestOracleSessionSql:

    def test_date_format_prepended(self, strategy):
        sql = strategy.session_statements("ALTER SESSION SET NLS_LANGUAGE='AMERICAN'")
        assert sql.startswith("ALTER SESSION SET NLS_DATE_FORMAT='YYYY-MM-DD HH24:MI:SS';")
        assert sql.endswith("NLS_LANGUAGE='AMERICAN'")

    def test_caller_date_format_kept(self, strategy):
        connect_sql = "alter session set nls_date_format='DD-MON-YY'"
        assert strategy.session_statements(connect_sql) == connect_sql

    def test_empty_connect_sql(self, strategy):
        assert strategy.session_statements('') == "ALTER SESSION SET NLS_DATE_FORMAT='YYYY-MM-DD HH24:MI:SS';"


class TestOracleOptions:

    def test_required_credentials(self):
        with pytest.raises(ValueError, match='username'):
            SessionOptions(drivername='oracle', password='tiger', connection='db')

    def test_connect_args(self, strategy):
        options = SessionOptions(drivername='oracle', username='scott', password='tiger',
                                 connection='localhost/XEPDB1')
        kwargs = strategy.get_engine_kwargs(options)
        assert kwargs['connect_args'] == {'user': 'scott', 'password': 'tiger',
                                          'dsn': 'localhost/XEPDB1'}
        assert strategy.build_connection_url(options).drivername == 'oracle+oracledb'

    def test_configure_connection(self, strategy, mocker):
        options = SessionOptions(drivername='oracle', username='scott', password='tiger',
                                 connection='db', appname='nightly_load')
        raw_conn = mocker.MagicMock()
        strategy.configure_connection(raw_conn, options)
        assert raw_conn.module == 'nightly_load'
        assert raw_conn.outputtypehandler is output_type_handler


class TestOracleBinds:

    def test_procedure_block(self, strategy):
        sql = strategy.procedure_sql('pkg.save_doc', ['p_id', 'p_doc'])
        assert sql == 'BEGIN pkg.save_doc(p_id => :p_id, p_doc => :p_doc); END;'

    def test_in_only_binds_plain_value(self, strategy, mocker):
        cursor = mocker.MagicMock()
        registry = BindRegistry()
        variable = registry.bind('p_id', 'text', '42')
        variable.bind_type = BindType.CHAR
        variable.bound_value = '42'
        assert strategy.bind_value(cursor, variable) == '42'
        cursor.var.assert_not_called()

    def test_in_out_sets_initial_value(self, strategy, mocker):
        cursor = mocker.MagicMock()
        registry = BindRegistry()
        variable = registry.bind('p_count', 'text', 5, 'IN_OUT')
        variable.bind_type = BindType.CHAR
        variable.length = 16383
        variable.bound_value = 5
        var = strategy.bind_value(cursor, variable)
        cursor.var.assert_called_once_with(oracledb.DB_TYPE_VARCHAR, size=16383)
        var.setvalue.assert_called_once_with(0, '5')
        assert variable.driver_var is var

    def test_ref_cursor_bind(self, strategy, mocker):
        cursor = mocker.MagicMock()
        registry = BindRegistry()
        variable = registry.bind('p_rows', 'cursor', '', 'OUT')
        variable.bind_type = BindType.CURSOR
        strategy.bind_value(cursor, variable)
        cursor.var.assert_called_once_with(oracledb.DB_TYPE_CURSOR)

    def test_clob_columns_fetched_as_long(self, mocker):
        cursor = mocker.MagicMock()
        metadata = mocker.MagicMock(type_code=oracledb.DB_TYPE_CLOB)
        output_type_handler(cursor, metadata)
        cursor.var.assert_called_once_with(oracledb.DB_TYPE_LONG, arraysize=cursor.arraysize)

        cursor.reset_mock()
        metadata.type_code = oracledb.DB_TYPE_NUMBER
        assert output_type_handler(cursor, metadata) is None

    def test_read_passes_scalars(self):
        assert _read('OK') == 'OK'
        assert _read(None) is None

    def test_error_details_without_driver_payload(self, strategy):
        code, message = strategy.error_details(oracledb.DatabaseError('ORA-00942: table or view does not exist'))
        assert code == 'DatabaseError'
        assert message == 'ORA-00942: table or view does not exist'


class TestOracleStoredProcedure:

    @pytest.fixture
    def oracle_session(self, mock_session):
        cn, cursor = mock_session('oracle')
        lob = cn.dbapi_connection.driver_connection.createlob.return_value
        lob.size.return_value = 9
        cursor.var.return_value.getvalue.return_value = 'OK'
        return cn, cursor, lob

    def test_call_with_clob_and_out(self, oracle_session):
        cn, cursor, lob = oracle_session
        variables = BindRegistry()
        cn.bind(variables, 'p_id', 'text', '42')
        cn.bind(variables, 'p_doc', 'clob', 'long text')
        cn.bind(variables, 'p_status', 'text', '', 'OUT')

        results = cn.execute_stored_procedure('pkg.save_doc', variables)

        sql, params = cursor.execute.call_args.args
        assert sql == 'BEGIN pkg.save_doc(p_id => :p_id, p_doc => :p_doc, p_status => :p_status); END;'
        assert params['p_id'] == '42'
        assert params['p_doc'] is lob
        cn.dbapi_connection.driver_connection.createlob.assert_called_once_with(oracledb.DB_TYPE_CLOB)
        lob.write.assert_called_once_with('long text')
        lob.close.assert_called_once()
        assert results == {'P_ID': '42', 'P_DOC': 'long text', 'P_STATUS': 'OK'}
        assert variables.results is results

    def test_lowercase_procedure_keys(self, mock_session):
        cn, cursor = mock_session('oracle', case_stored_procedure='lower')
        cursor.var.return_value.getvalue.return_value = [{'ID': 1}]
        variables = BindRegistry()
        cn.bind(variables, 'P_ROWS', 'cursor', '', 'OUT')
        results = cn.execute_stored_procedure('pkg.list_rows', variables)
        assert results == {'p_rows': [{'id': 1}]}

    def test_empty_clob_bound_as_text(self, oracle_session):
        cn, cursor, _ = oracle_session
        variables = BindRegistry()
        cn.bind(variables, 'p_doc', 'clob', '')
        cn.execute_prepared_dml('update docs set body = :p_doc', variables)
        cn.dbapi_connection.driver_connection.createlob.assert_not_called()
        assert cursor.execute.call_args.args[1] == {'p_doc': ''}

    def test_lob_write_failure_always_raises(self, oracle_session):
        cn, _, lob = oracle_session
        lob.write.side_effect = oracledb.DatabaseError('ORA-22275: invalid LOB locator specified')
        variables = BindRegistry()
        cn.bind(variables, 'p_doc', 'clob', 'long text')
        with pytest.raises(LobWriteFailed):
            cn.execute_prepared_dml('update docs set body = :p_doc', variables, strict=False)
        lob.close.assert_called_once()
        assert 'ORA-22275' in cn.store.get_param('DBError')

    def test_bind_param_reads_store(self, oracle_session):
        cn, cursor, _ = oracle_session
        cn.store.set_param('p_id', '77')
        variables = BindRegistry()
        cn.bind_param(variables, 'p_id', 'text')
        rowcount = cn.execute_prepared_dml('delete from docs where id = :p_id', variables)
        assert rowcount == 0
        assert cursor.execute.call_args.args[1] == {'p_id': '77'}

    def test_lob_create_failure_always_raises(self, oracle_session):
        cn, cursor, _ = oracle_session
        createlob = cn.dbapi_connection.driver_connection.createlob
        createlob.side_effect = oracledb.DatabaseError('ORA-01652: unable to extend temp segment')
        variables = BindRegistry()
        cn.bind(variables, 'p_doc', 'clob', 'long text')
        with pytest.raises(LobWriteFailed) as exc_info:
            cn.execute_prepared_dml('update docs set body = :p_doc', variables, strict=False)
        assert isinstance(exc_info.value.__cause__, oracledb.DatabaseError)
        assert 'ORA-01652' in exc_info.value.error.message
        assert 'ORA-01652' in cn.store.get_param('DBError')
        cursor.execute.assert_not_called()

"""
Tests for the bind variable registry lifecycle.
"""
import oracledb
import pytest
from dbsession.exceptions import LobWriteFailed
from dbsession.store import ParameterStore
from dbsession.types import BindType, Direction
from dbsession.variables import BindRegistry


@pytest.fixture
def statement(mocker):
    """Statement stand-in handing out mock LOB handles"""
    statement = mocker.MagicMock()
    statement.create_lob.side_effect = lambda: mocker.MagicMock(name='lob')
    statement.write_lob.return_value = 0
    return statement


class TestBind:

    def test_bind_overwrites_same_name(self):
        registry = BindRegistry()
        registry.bind('p', 'text', 'a')
        registry.bind('p', 'text', 'b')
        assert len(registry) == 1
        assert registry['p'].raw_value == 'b'

    def test_empty_clob_registered_as_text(self):
        registry = BindRegistry()
        variable = registry.bind('p', 'clob', '')
        assert variable.logical_type == 'text'

    def test_direction(self):
        registry = BindRegistry()
        assert registry.bind('a', 'text', 1).direction is Direction.IN
        variable = registry.bind('b', 'text', 1, 'IN_OUT')
        assert variable.is_in and variable.is_out

    def test_bind_param(self):
        store = ParameterStore(Customer='ACME')
        registry = BindRegistry(store=store)
        assert registry.bind_param('customer', 'text').raw_value == 'ACME'
        assert registry.bind_param('absent', 'text').raw_value == ''

    def test_bind_param_without_store(self):
        with pytest.raises(ValueError):
            BindRegistry().bind_param('customer', 'text')


class TestLifecycle:

    def test_bind_to_stages_clobs(self, statement):
        registry = BindRegistry()
        registry.bind('p_id', 'text', '1')
        registry.bind('p_doc', 'clob', 'x' * 1000)
        registry.bind_to(statement)

        assert statement.bind.call_count == 2
        statement.create_lob.assert_called_once()
        doc = registry['p_doc']
        assert doc.bind_type is BindType.CLOB
        assert doc.length == -1
        statement.write_lob.assert_called_once_with(doc.staged, 'x' * 1000)

    def test_out_clob_not_written(self, statement):
        registry = BindRegistry()
        registry.bind('p_doc', 'clob', 'seed', 'OUT')
        registry.bind_to(statement)
        statement.write_lob.assert_not_called()

    def test_free_publishes_and_releases(self, statement):
        registry = BindRegistry()
        registry.bind('p_id', 'text', '1')
        registry.bind('p_doc', 'clob', 'body')
        registry.bind('p_status', 'text', '', 'OUT')
        registry.bind_to(statement)
        handle = registry['p_doc'].staged
        registry['p_status'].output = 'OK'
        registry['p_status'].has_output = True

        results = registry.free(statement)

        assert results == {'p_id': '1', 'p_doc': 'body', 'p_status': 'OK'}
        statement.free_lob.assert_called_once_with(handle)
        assert registry['p_doc'].staged is None

    def test_free_is_idempotent(self, statement):
        registry = BindRegistry()
        registry.bind('p_doc', 'clob', 'body')
        registry.bind_to(statement)
        registry.free(statement)
        registry.free(statement)
        statement.free_lob.assert_called_once()

    def test_out_value_cleared_after_free(self, statement):
        registry = BindRegistry()
        registry.bind('p_id', 'text', '42')
        registry.bind('p_count', 'text', '5', 'IN_OUT')
        registry.bind_to(statement)
        registry.free(statement)
        assert registry['p_count'].bound_value is None
        assert registry['p_id'].bound_value == '42'
        assert registry.results == {'p_id': '42', 'p_count': '5'}

    def test_lob_released_after_free(self, statement):
        registry = BindRegistry()
        registry.bind('p_doc', 'clob', 'body')
        registry.bind_to(statement)
        registry.free(statement)
        doc = registry['p_doc']
        assert doc.staged is None
        assert doc.bound_value is None
        assert registry.results == {'p_doc': 'body'}

    def test_lob_create_failure(self, statement):
        statement.create_lob.side_effect = oracledb.DatabaseError('ORA-01652')
        registry = BindRegistry()
        registry.bind('p_doc', 'clob', 'body')
        with pytest.raises(LobWriteFailed) as exc_info:
            registry.bind_to(statement)
        assert isinstance(exc_info.value.__cause__, oracledb.DatabaseError)
        statement.bind.assert_not_called()
        registry.free(statement)
        statement.free_lob.assert_not_called()

    def test_lob_write_failure(self, statement):
        statement.write_lob.side_effect = oracledb.DatabaseError('ORA-22275')
        registry = BindRegistry()
        registry.bind('p_doc', 'clob', 'body')
        with pytest.raises(LobWriteFailed) as exc_info:
            registry.bind_to(statement)
        assert isinstance(exc_info.value.__cause__, oracledb.DatabaseError)
        registry.free(statement)
        statement.free_lob.assert_called_once()


class TestDescribe:

    def test_long_values_summarized(self, statement):
        registry = BindRegistry()
        registry.bind('p_text', 'text', 'y' * 300)
        registry.bind('p_doc', 'clob', 'z' * 10)
        registry.bind_to(statement)
        assert '(300 characters of data)' in registry['p_text'].describe()
        assert 'LOB staging handle' in registry['p_doc'].describe()

"""
Transaction context manager.
"""
import logging
import threading
from typing import Any

from dbsession.connection import Connection
from dbsession.results import ResultMode

logger = logging.getLogger(__name__)

__all__ = ['Transaction']

_local = threading.local()


class Transaction:
    """Context manager for running multiple commands in a transaction.

    Thread-local storage tracks the active transactions, so each thread
    can have its own transaction, but nested transactions on the same
    connection within one thread are not supported.

    On a clean exit the transaction is committed. On error it is rolled
    back, to the savepoint when one was given. The connection's previous
    commit mode is restored afterwards.

    Examples
        with Transaction(cn) as tx:
            tx.execute('delete from ...')
            tx.execute('update from ...')
    """

    def __init__(self, cn: Connection, savepoint: str | None = None) -> None:
        self.connection = cn
        self.savepoint = savepoint
        self._was_in_transaction = False

        if not hasattr(_local, 'active_transactions'):
            _local.active_transactions = {}

        if id(cn) in _local.active_transactions:
            raise RuntimeError('Nested transactions are not supported')

    def __enter__(self) -> 'Transaction':
        cn = self.connection
        self._was_in_transaction = cn.in_transaction
        if self._was_in_transaction and self.savepoint:
            cn.query(ResultMode.RAW, cn.strategy.savepoint_sql(self.savepoint), strict=True)
        else:
            cn.start_transaction(self.savepoint)
        _local.active_transactions[id(cn)] = True
        logger.debug(f'Started transaction for connection {id(cn)}')
        return self

    def __exit__(self, exc_type: type | None, value: Exception | None, traceback: Any | None) -> None:
        cn = self.connection
        try:
            if exc_type is not None:
                cn.rollback(self.savepoint)
                logger.warning('Rolling back the current transaction')
            else:
                cn.commit()
                logger.debug(f'Committed transaction for connection {id(cn)}')
        finally:
            _local.active_transactions.pop(id(cn), None)
            if cn.connected:
                cn._in_transaction = self._was_in_transaction

    def execute(self, sql: str) -> int:
        """Execute SQL within transaction context"""
        return self.connection.execute_dml(sql, strict=True)

    def query(self, mode: ResultMode | int | str, sql: str, index_field: str | None = None) -> Any:
        return self.connection.query(mode, sql, index_field=index_field, strict=True)

import contextvars
import threading
from typing import TYPE_CHECKING, ClassVar, Optional

from loguru import logger

from .errors import TransactionError
from .sparql.endpoint import TransactionClient

if TYPE_CHECKING:
    from .store import GraphStore

"""
graphdoc.session
================
Transaction sessions.

At most one :class:`Transaction` is open per process. While open it is
bound to the execution context of the task that began it (a
:class:`contextvars.ContextVar`), so every statement issued from that
task, including nested saves and population waves, is routed through
the transaction client instead of the store's endpoint. Tasks spawned
from that context inherit the binding.
"""

_current_transaction: contextvars.ContextVar[Optional["Transaction"]] = (
    contextvars.ContextVar("graphdoc_transaction", default=None)
)


def current_transaction() -> Optional["Transaction"]:
    """Return the transaction bound to the running context, if any."""
    transaction = _current_transaction.get()
    if transaction is not None and transaction.closed:
        return None
    return transaction


class Transaction:
    _lock: ClassVar[threading.Lock] = threading.Lock()
    _open: ClassVar[Optional[object]] = None

    def __init__(self, store: "GraphStore", client: TransactionClient):
        self.store = store
        self.client = client
        self.closed = False

    @classmethod
    async def begin(cls, store: "GraphStore") -> "Transaction":
        """
        Open a transaction on *store* and bind it to the current context.

        Raises
        ------
        TransactionError
            If another transaction is already open, or the store's
            endpoint does not support transactions.
        """
        with cls._lock:
            if cls._open is not None:
                raise TransactionError("You can only have one transaction at a time")
            # Reserve the slot before suspending on the endpoint.
            cls._open = _PENDING
        try:
            client = await store.endpoint.begin_transaction()
        except BaseException:
            with cls._lock:
                cls._open = None
            raise
        transaction = cls(store, client)
        with cls._lock:
            cls._open = transaction
        _current_transaction.set(transaction)
        logger.debug("Transaction started")
        return transaction

    @classmethod
    def active(cls) -> Optional["Transaction"]:
        open_transaction = cls._open
        return open_transaction if isinstance(open_transaction, Transaction) else None

    @classmethod
    def clear(cls) -> None:
        """
        Forget the open transaction without committing or rolling back.

        Intended mainly for tests that must not leak state between runs.
        """
        with cls._lock:
            if isinstance(cls._open, Transaction):
                cls._open.closed = True
            cls._open = None
        _current_transaction.set(None)

    def _close(self) -> None:
        self.closed = True
        with self._lock:
            if Transaction._open is self:
                Transaction._open = None
        if _current_transaction.get() is self:
            _current_transaction.set(None)

    async def commit(self) -> None:
        if self.closed:
            raise TransactionError("There is no transaction to commit")
        await self.client.commit()
        self._close()
        logger.debug("Transaction committed")

    async def rollback(self) -> None:
        if self.closed:
            raise TransactionError("There is no transaction to roll back")
        try:
            await self.client.rollback()
        finally:
            self._close()
        logger.debug("Transaction rolled back")

    async def __aenter__(self) -> "Transaction":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self.closed:
            return
        if exc_type is not None:
            await self.rollback()
            return
        try:
            await self.commit()
        except BaseException:
            if not self.closed:
                await self.rollback()
            raise


_PENDING = object()

"""
graphdoc.errors
===============

Exception taxonomy shared by every layer of graphdoc.

* :class:`ConfigurationError` – the schema, the registry or the namespace
  table is inconsistent. Always raised before any I/O.
* :class:`UsageError` – an operation was called on something it cannot
  handle (bad dotted path, malformed reference literal, nested
  transaction, ...). Raised before or in place of I/O.
* :class:`TransportError` – the triple store rejected a statement. Wraps
  the transport exception and records the operation that issued it.

Soft lookup failures during population are *not* exceptions; they are
logged and the affected field is left unresolved.
"""


class GraphDocError(Exception):
    """Base class for all graphdoc errors."""


class ConfigurationError(GraphDocError):
    """Raised when schemas, registry or namespaces are misconfigured."""


class UsageError(GraphDocError):
    """Raised when an operation is called in a state it cannot handle."""


class DocumentPathError(UsageError, KeyError):
    """Raised when a dotted field path cannot be resolved."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message.
        return str(self.args[0]) if self.args else ""


class ReferenceSyntaxError(UsageError, ValueError):
    """Raised for a reference that is neither a full nor a prefixed URI."""


class ValueCodecError(UsageError, ValueError):
    """Raised when a value cannot be serialised as its declared kind."""


class TransactionError(UsageError):
    """Raised on nested transactions or commit/rollback without one."""


class TransportError(GraphDocError):
    """
    A statement was rejected by the triple store.

    Parameters
    ----------
    operation:
        Name of the dispatching operation, e.g. ``"send_update"`` or
        ``"send_update(transaction)"``.
    cause:
        The exception raised by the transport.
    """

    def __init__(self, operation: str, cause: BaseException):
        super().__init__(f"{operation}: {cause}")
        self.operation = operation
        self.cause = cause

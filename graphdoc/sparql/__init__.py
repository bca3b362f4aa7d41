"""
graphdoc.sparql
===============

Transports that carry graphdoc's generated statements to a triple store.

* :class:`SparqlEndpoint` – remote SPARQL 1.1 endpoint through
  SPARQLWrapper (GraphDB, RDF4J, Virtuoso, ...).
* :class:`MemoryEndpoint` – in-process rdflib graph with transactions,
  used by the test-suite and by small tools.

Any object with the two coroutines ``run_query(query, kind, inference)``
and ``run_update(query, content_type)`` can stand in for either (see
:class:`Transport`); ``begin_transaction()`` is optional.
"""

from .settings import (
    DEFAULT_NAMESPACES,
    DEFAULT_PREDICATE_PREFIX,
    NAMED_INDIVIDUAL,
    ENV_SPARQL_ENDPOINT_URL,
    ENV_SPARQL_UPDATE_URL,
    ENV_SPARQL_USER,
    ENV_SPARQL_PASSWORD,
    SPARQL_UPDATE_CONTENT_TYPE,
)
from .endpoint import (
    Binding,
    ResultKind,
    SparqlEndpoint,
    TransactionClient,
    Transport,
)
from .memory import MemoryEndpoint, MemoryTransaction

__all__ = [
    # settings
    "DEFAULT_NAMESPACES",
    "DEFAULT_PREDICATE_PREFIX",
    "NAMED_INDIVIDUAL",
    "ENV_SPARQL_ENDPOINT_URL",
    "ENV_SPARQL_UPDATE_URL",
    "ENV_SPARQL_USER",
    "ENV_SPARQL_PASSWORD",
    "SPARQL_UPDATE_CONTENT_TYPE",
    # endpoint
    "Binding",
    "ResultKind",
    "SparqlEndpoint",
    "TransactionClient",
    "Transport",
    # memory
    "MemoryEndpoint",
    "MemoryTransaction",
]

import asyncio
import enum
from typing import Any, Dict, List, Literal, Optional, Protocol, cast

from rdflib import BNode, Graph, Literal as RDFLiteral, URIRef
from rdflib.term import Node
from SPARQLWrapper import DIGEST, JSON, TURTLE, SPARQLWrapper
from pydantic import BaseModel

from ..errors import TransactionError
from .settings import SPARQL_UPDATE_CONTENT_TYPE

Method = Literal["GET", "POST"]
Binding = Dict[str, Node]


class ResultKind(enum.StrEnum):
    """Shape of a query result requested from a transport."""

    BINDINGS = "application/sparql-results+json"
    """SELECT: one mapping per solution, variable name → term."""

    GRAPH = "text/turtle"
    """CONSTRUCT: one mapping per triple with keys subject/predicate/object."""


class Transport(Protocol):
    """What graphdoc needs from a triple store."""

    async def run_query(
        self, query: str, kind: ResultKind, inference: bool = False
    ) -> List[Binding]: ...

    async def run_update(
        self, query: str, content_type: str = SPARQL_UPDATE_CONTENT_TYPE
    ) -> None: ...


class TransactionClient(Transport, Protocol):
    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


def triples_to_bindings(graph: Graph) -> List[Binding]:
    return [
        {"subject": s, "predicate": p, "object": o} for s, p, o in graph
    ]


def _term_from_json(cell: Dict[str, Any]) -> Node:
    """Convert one SPARQL-results+json cell to an rdflib term."""
    kind = cell.get("type")
    value = cell["value"]
    if kind == "uri":
        return URIRef(value)
    if kind == "bnode":
        return BNode(value)
    datatype = cell.get("datatype")
    return RDFLiteral(
        value,
        lang=cell.get("xml:lang"),
        datatype=URIRef(datatype) if datatype else None,
    )


class SparqlEndpoint(BaseModel):
    """
    Remote SPARQL 1.1 endpoint (GraphDB, RDF4J, Virtuoso, ...) reached
    through :class:`SPARQLWrapper.SPARQLWrapper`.

    SPARQLWrapper is blocking, so every request runs in a worker thread
    via :func:`asyncio.to_thread`. ``inference`` is forwarded as the
    ``infer`` request parameter understood by GraphDB / RDF4J.

    Transactions are not supported by this transport.
    """

    url: str
    update_url: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    digest_auth: bool = True
    timeout: Optional[int] = None

    def setup_wrapper(
        self,
        method: Method = "POST",
        return_format: str = JSON,
        inference: Optional[bool] = None,
    ) -> SPARQLWrapper:
        """
        Create and configure a SPARQLWrapper instance for this endpoint.
        """
        sparql = SPARQLWrapper(self.url, updateEndpoint=self.update_url or self.url)
        sparql.setMethod(method)
        sparql.setReturnFormat(return_format)
        if self.username is not None:
            sparql.setCredentials(self.username, self.password)
            if self.digest_auth:
                sparql.setHTTPAuth(DIGEST)
        if self.timeout is not None:
            sparql.setTimeout(self.timeout)
        if inference is not None:
            sparql.addParameter("infer", "true" if inference else "false")
        return sparql

    def query_select(self, q: str, inference: bool = False) -> List[Binding]:
        """
        Execute a SPARQL SELECT and return ``results['bindings']`` as terms.
        """
        sparql = self.setup_wrapper(return_format=JSON, inference=inference)
        sparql.setQuery(q)
        results = cast(Dict[str, Any], sparql.query().convert())
        rows = results.get("results", {}).get("bindings", [])
        return [
            {name: _term_from_json(cell) for name, cell in row.items()} for row in rows
        ]

    def query_construct(self, q: str, inference: bool = False) -> List[Binding]:
        """
        Execute a SPARQL CONSTRUCT and return one binding per triple.
        """
        sparql = self.setup_wrapper(return_format=TURTLE, inference=inference)
        sparql.setQuery(q)
        payload = sparql.query().convert()
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        graph = Graph()
        graph.parse(data=cast(str, payload), format="turtle")
        return triples_to_bindings(graph)

    def update(self, q: str) -> None:
        """
        Execute a SPARQL UPDATE (INSERT/DELETE/CLEAR/etc.).

        No result is returned; any failure should surface as an
        exception from SPARQLWrapper.
        """
        sparql = self.setup_wrapper(method="POST", return_format=JSON)
        sparql.setQuery(q)
        sparql.query()

    async def run_query(
        self, query: str, kind: ResultKind, inference: bool = False
    ) -> List[Binding]:
        if kind == ResultKind.GRAPH:
            return await asyncio.to_thread(self.query_construct, query, inference)
        return await asyncio.to_thread(self.query_select, query, inference)

    async def run_update(
        self, query: str, content_type: str = SPARQL_UPDATE_CONTENT_TYPE
    ) -> None:
        await asyncio.to_thread(self.update, query)

    async def begin_transaction(self) -> TransactionClient:
        raise TransactionError(
            f"{type(self).__name__} at {self.url} does not support transactions"
        )

"""
graphdoc.sparql.memory
======================

In-process transport backed by an :class:`rdflib.Graph`. It runs the
same SPARQL 1.1 text a remote endpoint would receive, which makes it the
transport of choice for tests and for small, single-process tools.

Transactions work on a private copy of the graph: :meth:`commit` swaps
the copy's content into the shared graph, :meth:`rollback` discards it.
Inference is not available; the flag is accepted and ignored.
"""

from typing import List, Optional

from loguru import logger
from rdflib import Graph

from ..errors import TransactionError
from .endpoint import Binding, ResultKind, triples_to_bindings
from .settings import SPARQL_UPDATE_CONTENT_TYPE


def _copy_graph(source: Graph) -> Graph:
    target = Graph()
    for triple in source:
        target.add(triple)
    return target


class MemoryEndpoint:
    def __init__(self, graph: Optional[Graph] = None):
        self.graph = graph if graph is not None else Graph()

    def __len__(self) -> int:
        return len(self.graph)

    async def run_query(
        self, query: str, kind: ResultKind, inference: bool = False
    ) -> List[Binding]:
        if inference:
            logger.debug("MemoryEndpoint ignores the inference flag")
        result = self.graph.query(query)
        if kind == ResultKind.GRAPH:
            return triples_to_bindings(result.graph)
        return [
            {str(name): term for name, term in row.items()}
            for row in result.bindings
        ]

    async def run_update(
        self, query: str, content_type: str = SPARQL_UPDATE_CONTENT_TYPE
    ) -> None:
        self.graph.update(query)

    async def begin_transaction(self) -> "MemoryTransaction":
        return MemoryTransaction(self)


class MemoryTransaction(MemoryEndpoint):
    """Working copy of a :class:`MemoryEndpoint` graph."""

    def __init__(self, parent: MemoryEndpoint):
        super().__init__(_copy_graph(parent.graph))
        self.parent = parent
        self.closed = False

    def _ensure_open(self) -> None:
        if self.closed:
            raise TransactionError("Transaction is already closed")

    async def run_query(
        self, query: str, kind: ResultKind, inference: bool = False
    ) -> List[Binding]:
        self._ensure_open()
        return await super().run_query(query, kind, inference)

    async def run_update(
        self, query: str, content_type: str = SPARQL_UPDATE_CONTENT_TYPE
    ) -> None:
        self._ensure_open()
        await super().run_update(query, content_type)

    async def begin_transaction(self) -> "MemoryTransaction":
        raise TransactionError("Nested transactions are not supported")

    async def commit(self) -> None:
        self._ensure_open()
        self.parent.graph.remove((None, None, None))
        for triple in self.graph:
            self.parent.graph.add(triple)
        self.closed = True

    async def rollback(self) -> None:
        self._ensure_open()
        self.closed = True

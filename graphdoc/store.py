"""
graphdoc.store
==============

:class:`GraphStore` is the top-level object an application creates once.
It owns

* the :class:`~graphdoc.namespace.Namespaces` table,
* the :class:`~graphdoc.schema.SchemaRegistry` and the bound
  :class:`~graphdoc.model.Model` per entity type,
* the transport (a :class:`~graphdoc.sparql.endpoint.SparqlEndpoint`,
  a :class:`~graphdoc.sparql.memory.MemoryEndpoint` or anything
  implementing the same two coroutines),
* the identifier generator.

Every statement leaves through :meth:`GraphStore.send_update`,
:meth:`GraphStore.send_construct` or :meth:`GraphStore.send_select`.
Those pick the transaction client when a transaction is bound to the
running context, log the statement, and wrap transport failures in
:class:`~graphdoc.errors.TransportError`.
"""

from __future__ import annotations

import contextlib
import re
import time
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Union

from loguru import logger
from rdflib.term import Node

from .document import Document
from .errors import TransportError
from .field_type import Reference
from .id_generator import IdGenerator, UUIDGenerator
from .model import Model
from .namespace import Namespaces
from .schema import EntityType, SchemaRegistry
from .session import Transaction, current_transaction
from .sparql.endpoint import ResultKind, Transport
from .sparql.settings import DEFAULT_PREDICATE_PREFIX

_PREFIX_LINE = re.compile(r"^PREFIX [^\n]*\n", re.MULTILINE)


def _loggable(query: str) -> str:
    return _PREFIX_LINE.sub("", query).strip()


class GraphStore:
    """
    Parameters
    ----------
    endpoint:
        Transport used outside transactions.
    namespaces:
        Prefix table; must define the default prefix ``""``.
    id_generator:
        Identifier source for new documents, UUIDs by default.
    predicate_prefix:
        Prefix of generated predicates (``has_`` → ``:has_name``).
    """

    def __init__(
        self,
        endpoint: Transport,
        namespaces: Mapping[str, str],
        id_generator: Optional[IdGenerator] = None,
        predicate_prefix: str = DEFAULT_PREDICATE_PREFIX,
    ):
        self.endpoint = endpoint
        self.namespaces = Namespaces(namespaces)
        self.registry = SchemaRegistry(self.namespaces, predicate_prefix)
        self.id_generator = id_generator or UUIDGenerator()
        self._models: Dict[str, Model] = {}

    # ──────────────────────────────────────────────────────────────────
    # Models
    # ──────────────────────────────────────────────────────────────────

    def define_model(
        self,
        fields: Optional[Mapping[str, Any]],
        *,
        name: str,
        rdf_types: List[str],
        prefix: Optional[str] = None,
    ) -> Model:
        """
        Register an entity type and return its bound :class:`Model`.

        ``Model`` values in *fields* are shorthand for a reference to
        that model's entity type.
        """
        if fields is not None:
            fields = {key: _model_shorthand(value) for key, value in fields.items()}
        entity_type = self.registry.register(fields, name, rdf_types, prefix)
        model = Model(self, entity_type)
        self._models[entity_type.name] = model
        return model

    def model(self, name: Union[str, EntityType]) -> Model:
        """Return the model of a registered entity type (preloaded)."""
        entity_type = name if isinstance(name, EntityType) else self.registry.get(name)
        self.registry.preload(entity_type.name)
        return self._models[entity_type.name]

    def create_document(
        self,
        entity_type: Union[str, EntityType, Model],
        data: Optional[Mapping[str, Any]] = None,
        *,
        uri: Optional[str] = None,
    ) -> Document:
        """Create a new, unsaved document of *entity_type*."""
        model = entity_type if isinstance(entity_type, Model) else self.model(entity_type)
        return model.create_document(data, uri=uri)

    # ──────────────────────────────────────────────────────────────────
    # Transport dispatch
    # ──────────────────────────────────────────────────────────────────

    def client(self, ignore_transaction: bool = False) -> tuple[Transport, str]:
        """Return the transport to use and a suffix naming it for diagnostics."""
        transaction = None if ignore_transaction else current_transaction()
        if transaction is not None and transaction.store is self:
            return transaction.client, "(transaction)"
        return self.endpoint, ""

    async def _dispatch(
        self,
        operation: str,
        query: str,
        kind: Optional[ResultKind],
        inference: bool,
        ignore_transaction: bool,
    ) -> List[Dict[str, Node]]:
        client, suffix = self.client(ignore_transaction)
        name = operation + suffix
        start = time.perf_counter()
        try:
            if kind is None:
                await client.run_update(query)
                result: List[Dict[str, Node]] = []
            else:
                result = await client.run_query(query, kind, inference)
        except Exception as exc:
            logger.error(f"{name} failed: {exc}\n{_loggable(query)}")
            raise TransportError(name, exc) from exc
        elapsed = (time.perf_counter() - start) * 1000
        logger.debug(f"{name} ({elapsed:.1f} ms)\n{_loggable(query)}")
        return result

    async def send_update(self, query: str, *, ignore_transaction: bool = False) -> None:
        await self._dispatch("send_update", query, None, False, ignore_transaction)

    async def send_construct(
        self,
        query: str,
        *,
        inference: bool = False,
        ignore_transaction: bool = False,
    ) -> List[Dict[str, Node]]:
        """Run a CONSTRUCT; each binding has subject/predicate/object."""
        return await self._dispatch(
            "send_construct", query, ResultKind.GRAPH, inference, ignore_transaction
        )

    async def send_select(
        self,
        query: str,
        *,
        inference: bool = False,
        ignore_transaction: bool = False,
    ) -> List[Dict[str, Node]]:
        return await self._dispatch(
            "send_select", query, ResultKind.BINDINGS, inference, ignore_transaction
        )

    # ──────────────────────────────────────────────────────────────────
    # Transactions
    # ──────────────────────────────────────────────────────────────────

    async def begin_transaction(self) -> Transaction:
        return await Transaction.begin(self)

    @contextlib.asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        """
        ``async with store.transaction():`` commits on success and rolls
        back when the block raises.
        """
        transaction = await Transaction.begin(self)
        async with transaction:
            yield transaction

    # ──────────────────────────────────────────────────────────────────
    # Lookup helpers
    # ──────────────────────────────────────────────────────────────────

    def _term(self, uri: str) -> str:
        return f"<{self.namespaces.ensure_full_uri(uri)}>"

    async def _ask(self, pattern: str) -> bool:
        rows = await self.send_select(
            f"{self.namespaces.sparql_prefixes()}"
            f"SELECT * WHERE {{ {pattern} }} LIMIT 1"
        )
        return len(rows) > 0

    async def is_uri_existed(self, uri: str) -> bool:
        """True if *uri* occurs as subject or object of any triple."""
        term = self._term(uri)
        return await self._ask(f"{{ {term} ?p ?o }} UNION {{ ?s ?p {term} }}")

    async def is_uri_existed_as_subject(self, uri: str) -> bool:
        return await self._ask(f"{self._term(uri)} ?p ?o")

    async def is_uri_existed_as_object(self, uri: str) -> bool:
        return await self._ask(f"?s ?p {self._term(uri)}")

    async def get_all_instances_with_label(self, rdf_type: str) -> Dict[str, str]:
        """Map the local name of every instance of *rdf_type* to its rdfs:label."""
        rows = await self.send_select(
            f"{self.namespaces.sparql_prefixes()}"
            f"SELECT ?s ?label WHERE {{ ?s a {self._term(rdf_type)} . "
            f"?s rdfs:label ?label . }}"
        )
        return {_local_name(str(row["s"])): str(row["label"]) for row in rows}

    async def get_all_instances_with_label_comment(
        self, rdf_type: str
    ) -> Dict[str, Dict[str, Optional[str]]]:
        rows = await self.send_select(
            f"{self.namespaces.sparql_prefixes()}"
            f"SELECT ?s ?label ?comment WHERE {{ ?s a {self._term(rdf_type)} . "
            f"?s rdfs:label ?label . OPTIONAL {{ ?s rdfs:comment ?comment }} }}"
        )
        return {
            _local_name(str(row["s"])): {
                "label": str(row["label"]),
                "comment": str(row["comment"]) if "comment" in row else None,
            }
            for row in rows
        }


def _local_name(uri: str) -> str:
    for separator in ("#", "/"):
        if separator in uri:
            uri = uri.rsplit(separator, 1)[1]
            break
    return uri


def _model_shorthand(definition: Any) -> Any:
    if isinstance(definition, Model):
        return Reference(definition.entity_type.name)
    if isinstance(definition, list) and len(definition) == 1:
        return [_model_shorthand(definition[0])]
    if isinstance(definition, Mapping) and "type" in definition:
        return {**definition, "type": _model_shorthand(definition["type"])}
    return definition

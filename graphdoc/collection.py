"""
graphdoc.collection
===================

:class:`DocumentCollection` is the list type returned by queries. Its
:meth:`~DocumentCollection.populate_multiple` resolves reference fields
breadth-first: every wave gathers the unresolved references of *all*
documents at the current depth into a single CONSTRUCT, rebuilds typed
nested documents from the answer and writes them back, then descends
into the newly resolved documents. Each wave costs exactly one request,
however many documents and paths it covers.

The owning entity type of a fetched subject is found from the full set
of rdf-type tags on that subject (see
:meth:`graphdoc.schema.SchemaRegistry.owning_type`). Subjects whose
tags match no reachable entity type are logged and left unresolved.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from loguru import logger
from rdflib import RDF, URIRef
from rdflib.term import Node

from .document import Document, _is_empty
from .errors import DocumentPathError, UsageError
from .sparql.settings import NAMED_INDIVIDUAL

if TYPE_CHECKING:
    from .model import Model
    from .schema import EntityType, SchemaRegistry
    from .store import GraphStore

PathTree = Dict[str, "PathTree"]

_RDF_TYPE = str(RDF.type)


class SubjectTriples:
    """Outgoing triples of one subject, grouped by predicate."""

    __slots__ = ("predicates", "tags")

    def __init__(self) -> None:
        self.predicates: Dict[str, List[Node]] = {}
        self.tags: Set[str] = set()


def bucket_triples(
    bindings: Iterable[Mapping[str, Node]], named_individual: str
) -> Dict[str, SubjectTriples]:
    """
    Group CONSTRUCT bindings by subject.

    rdf-type values other than *named_individual* are additionally
    collected into the subject's tag set.
    """
    subjects: Dict[str, SubjectTriples] = {}
    for binding in bindings:
        subject = str(binding["subject"])
        predicate = str(binding["predicate"])
        obj = binding["object"]
        triples = subjects.setdefault(subject, SubjectTriples())
        triples.predicates.setdefault(predicate, []).append(obj)
        if predicate == _RDF_TYPE and isinstance(obj, URIRef) and str(obj) != named_individual:
            triples.tags.add(str(obj))
    return subjects


def paths_to_tree(paths: Iterable[str]) -> PathTree:
    """``["a", "a.b", "a.c"]`` → ``{"a": {"b": {}, "c": {}}}``."""
    tree: PathTree = {}
    for path in paths:
        node = tree
        for segment in path.split("."):
            if segment:
                node = node.setdefault(segment, {})
    return tree


def tree_to_paths(tree: Mapping[str, Any], prefix: str = "") -> List[str]:
    """Inverse of :func:`paths_to_tree`, listing every node of the tree."""
    paths: List[str] = []
    for key, subtree in tree.items():
        path = f"{prefix}{key}"
        paths.append(path)
        if isinstance(subtree, Mapping) and subtree:
            paths.extend(tree_to_paths(subtree, f"{path}."))
    return paths


def normalize_populates(populates: Union[None, str, Iterable[str], Mapping[str, Any]]) -> List[str]:
    if populates is None:
        return []
    if isinstance(populates, str):
        return [populates]
    if isinstance(populates, Mapping):
        return tree_to_paths(populates)
    return list(populates)


def validate_paths(
    registry: "SchemaRegistry", entity_type: "EntityType", tree: PathTree, prefix: str = ""
) -> None:
    """
    Check every segment of *tree* against the schema, before any I/O.

    Raises
    ------
    DocumentPathError
        If a segment is not a reference field of the type it is reached on.
    """
    for key, subtree in tree.items():
        spec = entity_type.field(key)
        if spec is None or spec.reference is None:
            raise DocumentPathError(
                f"'{prefix}{key}' is not a reference field of '{entity_type.name}'"
            )
        if subtree:
            validate_paths(registry, registry.get(spec.reference), subtree, f"{prefix}{key}.")


class DocumentCollection(list):
    """A list of documents that can be populated in batches."""

    def to_dicts(self) -> List[Dict[str, Any]]:
        return [document.to_dict() for document in self]

    async def populate(self, path: str, **kwargs: Any) -> "DocumentCollection":
        return await self.populate_multiple([path], **kwargs)

    async def populate_multiple(
        self,
        paths: Union[Iterable[str], Mapping[str, Any]],
        *,
        inference: bool = False,
        ignore_transaction: bool = False,
    ) -> "DocumentCollection":
        """
        Resolve every reference along *paths* for every document.

        Raises
        ------
        UsageError
            If a document has no URI.
        DocumentPathError
            If a path segment is not a reference field.
        """
        tree = paths_to_tree(normalize_populates(paths))
        if not tree or not self:
            return self
        for document in self:
            if document.uri is None:
                raise UsageError(f"Cannot populate {document!r}: it has no URI")

        store: "GraphStore" = self[0].model.store
        entity_types = {document.model.name: document.model.entity_type for document in self}
        for entity_type in entity_types.values():
            validate_paths(store.registry, entity_type, tree)
            store.registry.preload(entity_type.name)
        named_individual = store.namespaces.full_uri(NAMED_INDIVIDUAL)
        skipped: Set[Tuple[int, str]] = set()

        while True:
            requests: Dict[str, None] = {}
            paths_in_wave: Dict[str, None] = {}
            for index, document in enumerate(self):
                self._collect(store, index, document, tree, "", requests, paths_in_wave, skipped)
            if not requests:
                break

            filters = " ||\n\t\t".join(f"?s = <{uri}>" for uri in requests)
            query = (
                "CONSTRUCT {\n\t?s ?p ?o\n} WHERE {\n\t?s ?p ?o.\n"
                f"\tFILTER (\n\t\t{filters}\n\t)\n}}"
            )
            bindings = await store.send_construct(
                query, inference=inference, ignore_transaction=ignore_transaction
            )
            subjects = bucket_triples(bindings, named_individual)

            progress = False
            for path in paths_in_wave:
                for index, document in enumerate(self):
                    if (index, path) in skipped:
                        continue
                    try:
                        value = document.get(path)
                    except DocumentPathError:
                        continue
                    if not _needs_resolution(value):
                        continue
                    resolved = self._materialize(store, document.model, value, subjects)
                    if resolved is None:
                        skipped.add((index, path))
                    else:
                        document.set(path, resolved, populated=True)
                    progress = True
            if not progress:
                break
        return self

    @staticmethod
    def _collect(
        store: "GraphStore",
        index: int,
        document: Document,
        tree: PathTree,
        prefix: str,
        requests: Dict[str, None],
        paths: Dict[str, None],
        skipped: Set[Tuple[int, str]],
    ) -> None:
        entity_type = document.model.entity_type
        for key, subtree in tree.items():
            spec = entity_type.field(key)
            if spec is None or spec.reference is None:
                raise DocumentPathError(
                    f"'{prefix}{key}' is not a reference field of '{entity_type.name}'"
                )
            path = f"{prefix}{key}"
            value = document._values.get(key)
            if _is_empty(value):
                continue
            if not _needs_resolution(value):
                if subtree:
                    if isinstance(value, list):
                        for position, item in enumerate(value):
                            if not isinstance(item, Document):
                                continue
                            DocumentCollection._collect(
                                store, index, item, subtree, f"{path}.{position}.",
                                requests, paths, skipped,
                            )
                    elif isinstance(value, Document):
                        DocumentCollection._collect(
                            store, index, value, subtree, f"{path}.",
                            requests, paths, skipped,
                        )
                continue
            if (index, path) in skipped:
                continue
            paths[path] = None
            for item in value if isinstance(value, list) else [value]:
                if isinstance(item, str):
                    requests[store.namespaces.ensure_full_uri(item)] = None

    @staticmethod
    def _materialize(
        store: "GraphStore",
        root: "Model",
        value: Any,
        subjects: Dict[str, SubjectTriples],
    ) -> Any:
        def resolve(item: Any) -> Optional[Any]:
            if not isinstance(item, str):
                return item
            uri = store.namespaces.ensure_full_uri(item)
            triples = subjects.get(uri)
            if triples is None or not triples.tags:
                logger.error(f"Cannot populate '{uri}': no rdf-type found")
                return None
            entity_type = store.registry.owning_type(root.entity_type.name, triples.tags)
            if entity_type is None:
                logger.error(
                    f"Cannot populate '{uri}': no entity type reachable from "
                    f"'{root.entity_type.name}' owns rdf-types {sorted(triples.tags)}"
                )
                return None
            return store.model(entity_type).document_from_triples(uri, triples)

        if isinstance(value, list):
            resolved = [resolve(item) for item in value]
            return None if any(item is None for item in resolved) else resolved
        return resolve(value)


def _needs_resolution(value: Any) -> bool:
    if _is_empty(value):
        return False
    items = value if isinstance(value, list) else [value]
    return any(isinstance(item, str) for item in items)

"""
graphdoc.model
==============

A :class:`Model` binds an :class:`~graphdoc.schema.EntityType` to a
:class:`~graphdoc.store.GraphStore`. It creates documents, turns
Mongo-style filters into CONSTRUCT queries, rebuilds documents from the
answer, and implements the find/update/delete family.

Filter language
---------------
``{"_id": 1}`` / ``{"_id": {"$in": [1, 2]}}``
    Match derived URIs.
``{"_uri": "http://..."}`` / ``{"_uri": {"$in": [...]}}``
    Match explicit URIs.
``{"field": value}``
    Equality (any element for array fields; references by URI).
``{"field": {"$in": [...]}}``
    Any of the values; an empty list drops the constraint.
``{"field": {"$gt": 1, "$le": 5}}``
    Comparisons ``$gt $lt $ge $le $ne``, combinable.
``{"field": {"$regex": "^Les", "$options": "i"}}``
    SPARQL ``regex``.
``{"nested": {...}}``
    Filter on the referenced document.
``{"nested": {"$and": [{...}, {...}]}}``
    Each inner filter must be met by *some* referenced document.

Unknown keys are ignored with a warning.
"""

from __future__ import annotations

import itertools
import re
from typing import TYPE_CHECKING, Any, Dict, Iterable, Iterator, List, Mapping, Optional, Set, Union

from loguru import logger
from rdflib import RDF, Literal

from .collection import (
    DocumentCollection,
    SubjectTriples,
    bucket_triples,
    normalize_populates,
    paths_to_tree,
    validate_paths,
)
from .data_type import encode_reference, from_sparql_value, to_sparql_value
from .document import Document, MutationPlan
from .errors import UsageError
from .field_type import FieldSpec
from .schema import EntityType
from .sparql.settings import NAMED_INDIVIDUAL

if TYPE_CHECKING:
    from .store import GraphStore

Filter = Mapping[str, Any]
Populates = Union[None, str, Iterable[str], Mapping[str, Any]]

COMPARISONS: Dict[str, str] = {"$gt": ">", "$lt": "<", "$ge": ">=", "$le": "<=", "$ne": "!="}

_RDF_TYPE = str(RDF.type)

_REGEX_FLAGS = ((re.IGNORECASE, "i"), (re.MULTILINE, "m"), (re.DOTALL, "s"), (re.VERBOSE, "x"))


def regex_builder(pattern: Union[str, re.Pattern], flags: Optional[str] = None) -> str:
    """
    Render the pattern (and flags) arguments of a SPARQL ``regex`` call.

    Compiled patterns contribute their ``i``/``m``/``s``/``x`` flags.
    """
    if isinstance(pattern, re.Pattern):
        flags = (flags or "") + "".join(
            letter for flag, letter in _REGEX_FLAGS if pattern.flags & flag
        )
        pattern = pattern.pattern
    rendered = Literal(pattern).n3()
    if flags:
        rendered += f", {Literal(flags).n3()}"
    return rendered


class Model:
    def __init__(self, store: "GraphStore", entity_type: EntityType):
        self.store = store
        self.entity_type = entity_type

    def __repr__(self) -> str:
        return f"<Model {self.entity_type.name}>"

    @property
    def name(self) -> str:
        return self.entity_type.name

    def create_document(
        self, data: Optional[Mapping[str, Any]] = None, *, uri: Optional[str] = None
    ) -> Document:
        """New, unsaved document. ``_id`` / ``_uri`` in *data* fix its identity."""
        return Document(self, data, is_new=True, uri=uri)

    def clean_data(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        """Drop keys outside the schema and ``None`` values."""
        return {
            key: value
            for key, value in data.items()
            if value is not None and self.entity_type.field(key) is not None
        }

    # ──────────────────────────────────────────────────────────────────
    # Reading
    # ──────────────────────────────────────────────────────────────────

    def _decode(self, spec: FieldSpec, term: Any) -> Any:
        if spec.reference is not None:
            return str(term)
        return from_sparql_value(term, spec.item_type.kind)

    def document_from_triples(self, uri: str, triples: SubjectTriples) -> Document:
        """Rebuild a persisted document from the grouped triples of *uri*."""
        data: Dict[str, Any] = {}
        for predicate, objects in triples.predicates.items():
            spec = self.entity_type.field_for_predicate(predicate)
            if spec is None:
                if predicate != _RDF_TYPE:
                    logger.debug(f"Skipping predicate <{predicate}> of <{uri}>: not in '{self.name}'")
                continue
            values = [self._decode(spec, term) for term in objects]
            if spec.is_array:
                data.setdefault(spec.external_key, []).extend(values)
            else:
                data[spec.external_key] = values[-1]

        match = re.fullmatch(
            re.escape(self.entity_type.uri) + "_(" + self.store.id_generator.pattern + ")",
            uri,
        )
        if match:
            data["_id"] = match.group(1)
            return Document(self, data, is_new=False)
        return Document(self, data, is_new=False, uri=uri)

    def _term_for(self, spec: FieldSpec, value: Any) -> str:
        if isinstance(value, Document):
            if value.uri is None:
                raise UsageError(f"Cannot filter '{spec.external_key}' by an unsaved document")
            return f"<{value.uri}>"
        if spec.reference is not None:
            return encode_reference(value)
        return to_sparql_value(value, spec.item_type.kind)

    def _filter_clauses(self, filter: Filter, subject: str, counter: Iterator[int]) -> List[str]:
        where = [f"{subject} rdf:type {', '.join(self.entity_type.rdf_types)}."]
        namespaces = self.store.namespaces

        identifier = filter.get("_id")
        if identifier is not None:
            if isinstance(identifier, Mapping) and isinstance(identifier.get("$in"), list):
                ids = identifier["$in"]
            elif isinstance(identifier, (str, int)) and not isinstance(identifier, bool):
                ids = [identifier]
            else:
                raise UsageError("Filter on '_id' supports only {'$in': [...]}, a number or a string")
            if ids:
                where.append(
                    "FILTER("
                    + " || ".join(f"{subject} = <{self.entity_type.uri}_{i}>" for i in ids)
                    + ")"
                )

        uri = filter.get("_uri")
        if uri is not None:
            if isinstance(uri, Mapping) and isinstance(uri.get("$in"), list):
                uris = uri["$in"]
            elif isinstance(uri, str):
                uris = [uri]
            else:
                raise UsageError("Filter on '_uri' supports only {'$in': [...]} or a string")
            if uris:
                where.append(
                    "FILTER("
                    + " || ".join(f"{subject} = <{namespaces.ensure_full_uri(u)}>" for u in uris)
                    + ")"
                )

        for key, value in filter.items():
            if key in ("_id", "_uri") or value is None:
                continue
            spec = self.entity_type.field(key)
            if spec is None:
                logger.warning(f"Ignoring filter key '{key}': not defined in '{self.name}'")
                continue
            predicate = namespaces.predicate(spec.internal_key)
            obj = f"?o{next(counter)}"
            pattern = f"{subject} {predicate} {obj}."

            if not isinstance(value, Mapping):
                where.append(pattern)
                where.append(f"FILTER({obj} = {self._term_for(spec, value)})")
                continue

            operators = [op for op in value if op.startswith("$")]
            if not operators:
                if spec.reference is None:
                    raise UsageError(f"Field '{key}' is not a reference; nested filters do not apply")
                where.append(pattern)
                nested = self.store.model(spec.reference)
                where.extend(nested._filter_clauses(value, obj, counter))
            elif "$and" in operators:
                if spec.reference is None or not isinstance(value["$and"], list):
                    raise UsageError(f"'$and' on '{key}' expects a list of nested filters")
                nested = self.store.model(spec.reference)
                for inner in value["$and"]:
                    inner_obj = f"?o{next(counter)}"
                    where.append(f"{subject} {predicate} {inner_obj}.")
                    where.extend(nested._filter_clauses(inner, inner_obj, counter))
            elif "$in" in operators:
                options = value["$in"]
                if len(operators) > 1 or not isinstance(options, list):
                    raise UsageError(f"'$in' on '{key}' expects a list and no other operator")
                if options:
                    where.append(pattern)
                    where.append(
                        "FILTER("
                        + " || ".join(f"{obj} = {self._term_for(spec, o)}" for o in options)
                        + ")"
                    )
            elif "$regex" in operators:
                if set(operators) - {"$regex", "$options"}:
                    raise UsageError(f"'$regex' on '{key}' cannot be combined with {operators}")
                where.append(pattern)
                where.append(
                    f"FILTER regex({obj}, {regex_builder(value['$regex'], value.get('$options'))})"
                )
            else:
                unknown = set(operators) - set(COMPARISONS)
                if unknown:
                    raise UsageError(f"Unknown operator(s) {sorted(unknown)} on '{key}'")
                where.append(pattern)
                for operator in operators:
                    operand = self._term_for(spec, value[operator])
                    where.append(f"FILTER({obj} {COMPARISONS[operator]} {operand})")
        return where

    def generate_find_query(self, filter: Optional[Filter] = None) -> str:
        where = ["?s ?p ?o."] + self._filter_clauses(filter or {}, "?s", itertools.count())
        where = list(dict.fromkeys(where))
        return (
            f"{self.store.namespaces.sparql_prefixes()}"
            "CONSTRUCT {\n\t?s ?p ?o\n} WHERE {\n\t" + "\n\t".join(where) + "\n}"
        )

    async def find(
        self,
        filter: Optional[Filter] = None,
        *,
        populates: Populates = None,
        inference: bool = False,
        ignore_transaction: bool = False,
    ) -> DocumentCollection:
        """
        Return every document matching *filter*, optionally populating
        the dotted paths in *populates*.
        """
        self.store.registry.preload(self.name)
        paths = normalize_populates(populates)
        validate_paths(self.store.registry, self.entity_type, paths_to_tree(paths))
        bindings = await self.store.send_construct(
            self.generate_find_query(filter),
            inference=inference,
            ignore_transaction=ignore_transaction,
        )
        subjects = bucket_triples(bindings, self.store.namespaces.full_uri(NAMED_INDIVIDUAL))
        documents = DocumentCollection(
            self.document_from_triples(uri, triples)
            for uri, triples in subjects.items()
            if self.entity_type.tags <= triples.tags
        )
        if paths and documents:
            await documents.populate_multiple(
                paths, inference=inference, ignore_transaction=ignore_transaction
            )
        return documents

    async def find_one(self, filter: Optional[Filter] = None, **kwargs: Any) -> Optional[Document]:
        documents = await self.find(filter, **kwargs)
        return documents[0] if documents else None

    async def find_by_id(self, identifier: Union[str, int], **kwargs: Any) -> Optional[Document]:
        documents = await self.find({"_id": identifier}, **kwargs)
        if len(documents) > 1:
            logger.warning(f"find_by_id({identifier!r}) matched {len(documents)} documents")
        return documents[0] if documents else None

    async def find_by_uri(self, uri: str, **kwargs: Any) -> Optional[Document]:
        documents = await self.find({"_uri": uri}, **kwargs)
        if len(documents) > 1:
            logger.warning(f"find_by_uri({uri!r}) matched {len(documents)} documents")
        return documents[0] if documents else None

    # ──────────────────────────────────────────────────────────────────
    # Writing
    # ──────────────────────────────────────────────────────────────────

    async def generate_creation_query(self, document: Document) -> Optional[str]:
        """Statement that saving *document* would dispatch, or ``None``."""
        return await document.generate_save_query()

    async def save_many(
        self, documents: Iterable[Document], *, ignore_transaction: bool = False
    ) -> List[Document]:
        """Save several documents with a single combined statement."""
        documents = list(documents)
        plan = MutationPlan(self.store.namespaces)
        visited: Set[Document] = set()
        for document in documents:
            await document._synthesize(plan, visited)
        if plan:
            await self.store.send_update(plan.render(), ignore_transaction=ignore_transaction)
            plan.commit()
        return documents

    async def find_one_and_update(
        self, filter: Filter, update: Mapping[str, Any], **kwargs: Any
    ) -> Optional[Document]:
        """
        Apply *update* to the first matching document and save it.
        Keys outside the schema and ``None`` values in *update* are ignored.
        """
        changes = self.clean_data(update)
        document = await self.find_one(filter, **kwargs)
        if document is not None:
            for key, value in changes.items():
                setattr(document, key, value)
            await document.save(ignore_transaction=kwargs.get("ignore_transaction", False))
        return document

    async def find_by_id_and_update(
        self, identifier: Union[str, int], update: Mapping[str, Any], **kwargs: Any
    ) -> Optional[Document]:
        return await self.find_one_and_update({"_id": identifier}, update, **kwargs)

    async def find_by_uri_and_update(
        self, uri: str, update: Mapping[str, Any], **kwargs: Any
    ) -> Optional[Document]:
        return await self.find_one_and_update({"_uri": uri}, update, **kwargs)

    # ──────────────────────────────────────────────────────────────────
    # Deleting
    # ──────────────────────────────────────────────────────────────────

    def cascade_paths(self, _seen: frozenset = frozenset()) -> List[str]:
        """Dotted paths of every cascade-owned reference, cycle-safe."""
        seen = _seen | {self.name}
        paths: List[str] = []
        for spec in self.entity_type.fields:
            if spec.reference is None or not spec.is_cascade:
                continue
            paths.append(spec.external_key)
            nested = self.store.registry.get(spec.reference)
            if nested.name in seen:
                continue
            paths.extend(
                f"{spec.external_key}.{path}"
                for path in self.store.model(nested).cascade_paths(seen)
            )
        return paths

    def delete_patterns(
        self,
        target: Union[Document, str],
        counter: Iterator[int],
        _visited: Optional[Set[Document]] = None,
    ) -> List[str]:
        """
        ``DELETE WHERE`` patterns removing *target*'s outgoing triples and,
        recursively, those of every document it owns by cascade.
        """
        if isinstance(target, str):
            index = next(counter)
            return [f"<{self.store.namespaces.ensure_full_uri(target)}> ?p_{index} ?o_{index}."]
        if target.uri is None:
            raise UsageError(f"Cannot delete {target!r}: it has no URI")
        visited = set() if _visited is None else _visited
        if target in visited:
            return []
        visited.add(target)

        index = next(counter)
        patterns = [f"<{target.uri}> ?p_{index} ?o_{index}."]
        for spec in target.model.entity_type.fields:
            if spec.reference is None or not spec.is_cascade:
                continue
            value = target._values.get(spec.external_key)
            for item in value if isinstance(value, list) else [value]:
                if isinstance(item, Document):
                    patterns.extend(item.model.delete_patterns(item, counter, visited))
                elif isinstance(item, str):
                    patterns.extend(self.delete_patterns(item, counter, visited))
        return patterns

    def _render_deletes(self, patterns: List[str]) -> str:
        return self.store.namespaces.sparql_prefixes() + ";\n".join(
            f"DELETE WHERE {{\n\t{pattern}\n}}" for pattern in patterns
        )

    def generate_delete_query(self, document: Document) -> str:
        return self._render_deletes(self.delete_patterns(document, itertools.count()))

    async def _delete(self, documents: DocumentCollection, ignore_transaction: bool) -> None:
        counter = itertools.count()
        visited: Set[Document] = set()
        patterns = [
            pattern
            for document in documents
            for pattern in self.delete_patterns(document, counter, visited)
        ]
        if patterns:
            await self.store.send_update(
                self._render_deletes(patterns), ignore_transaction=ignore_transaction
            )

    async def find_and_delete(
        self, filter: Optional[Filter] = None, *, ignore_transaction: bool = False
    ) -> DocumentCollection:
        """Delete every matching document and what it owns by cascade."""
        documents = await self.find(
            filter, populates=self.cascade_paths(), ignore_transaction=ignore_transaction
        )
        await self._delete(documents, ignore_transaction)
        return documents

    async def find_one_and_delete(
        self, filter: Optional[Filter] = None, *, ignore_transaction: bool = False
    ) -> Optional[Document]:
        documents = await self.find(
            filter, populates=self.cascade_paths(), ignore_transaction=ignore_transaction
        )
        if not documents:
            return None
        await self._delete(DocumentCollection(documents[:1]), ignore_transaction)
        return documents[0]

    async def find_by_id_and_delete(
        self, identifier: Union[str, int], *, ignore_transaction: bool = False
    ) -> Optional[Document]:
        return await self.find_one_and_delete(
            {"_id": identifier}, ignore_transaction=ignore_transaction
        )

    async def find_by_uri_and_delete(
        self, uri: str, *, ignore_transaction: bool = False
    ) -> Optional[Document]:
        return await self.find_one_and_delete({"_uri": uri}, ignore_transaction=ignore_transaction)

"""
graphdoc.document
=================

:class:`Document` is the in-memory projection of one graph subject.

Identity
--------
A document is identified either by an identifier (minted from the
store's id generator, or supplied as ``_id``) from which the URI
``<entity-type-uri>_<identifier>`` is derived, or by an explicit URI
(``_uri``). A document is *new* until its first successful save.

Mutation tracking
-----------------
Field values live next to a snapshot of the last persisted values.
:meth:`Document.check_modified` recomputes the modified-field set by
comparing the two:

a. snapshot empty, value non-empty → modified;
b. snapshot non-empty, value empty → modified;
c. snapshot is a Document → modified when replaced by another document
   or a plain value, or when that document is itself modified. Assigning
   a mapping merges it into the snapshot document;
d. arrays → modified when lengths differ or an element differs at the
   same position. Document elements are only checked for their own
   modifications, so reordering the same documents is *not* detected.

Saving
------
:meth:`Document.save` walks the document and every nested document it
reaches, collecting ``DELETE WHERE`` and ``INSERT DATA`` clauses into a
:class:`MutationPlan`. The plan is rendered into one statement and
dispatched once; only after the store accepted it are modified sets
cleared and snapshots replaced.
"""

from __future__ import annotations

import asyncio
import datetime
import itertools
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from loguru import logger

from .data_type import encode_reference, to_sparql_value
from .errors import ConfigurationError, DocumentPathError, UsageError, ValueCodecError
from .field_type import FieldSpec, ScalarKind

if TYPE_CHECKING:
    from .model import Model
    from .namespace import Namespaces


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, list) and len(value) == 0)


def _copy_value(value: Any) -> Any:
    if isinstance(value, list):
        return list(value)
    if isinstance(value, dict):
        return dict(value)
    return value


def _copy_values(values: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: _copy_value(value) for key, value in values.items()}


class MutationPlan:
    """
    Clauses collected during one save traversal.

    Object variables are numbered across the whole plan so that clauses
    coming from different fields and documents never collide.
    """

    def __init__(self, namespaces: "Namespaces"):
        self.namespaces = namespaces
        self.deletes: List[str] = []
        self.inserts: List[str] = []
        self.saved: List[Tuple[Document, Dict[str, Any]]] = []
        self._counter = itertools.count()

    def __bool__(self) -> bool:
        return bool(self.deletes or self.inserts)

    def next_index(self) -> int:
        return next(self._counter)

    def delete(self, subject: str, predicate: str) -> None:
        self.deletes.append(f"{subject} {predicate} ?o{self.next_index()}.")

    def insert(self, subject: str, predicate: str, obj: str) -> None:
        self.inserts.append(f"{subject} {predicate} {obj}.")

    def delete_target(self, target: Any) -> None:
        """Delete a pruned nested subject (and what it owns by cascade)."""
        if isinstance(target, Document):
            self.deletes.extend(target.model.delete_patterns(target, self._counter))
        elif isinstance(target, str):
            uri = self.namespaces.ensure_full_uri(target)
            index = self.next_index()
            self.deletes.append(f"<{uri}> ?p_{index} ?o_{index}.")

    def render(self) -> str:
        blocks = [f"DELETE WHERE {{\n\t{clause}\n}}" for clause in self.deletes]
        blocks.append("INSERT DATA {\n\t" + "\n\t".join(self.inserts) + "\n}")
        return self.namespaces.sparql_prefixes() + ";\n".join(blocks)

    def commit(self) -> None:
        for document, snapshot in self.saved:
            document._mark_saved(snapshot)


class Document:
    """
    One document of a :class:`~graphdoc.model.Model`.

    Fields are read and written as attributes (``doc.familyName``) or
    through dotted paths with :meth:`get` / :meth:`set`. Declared fields
    that are not set read as ``None``.
    """

    def __init__(
        self,
        model: "Model",
        data: Optional[Mapping[str, Any]] = None,
        *,
        is_new: bool = True,
        uri: Optional[str] = None,
    ):
        values = dict(data or {})
        identifier = values.pop("_id", None)
        explicit_uri = values.pop("_uri", None) or uri

        self._model = model
        self._identifier: Optional[str] = None if identifier is None else str(identifier)
        self._explicit_uri: Optional[str] = (
            model.store.namespaces.ensure_full_uri(explicit_uri) if explicit_uri else None
        )
        self._derived_uri: Optional[str] = None
        self._is_new = is_new
        # True while the identifier was minted here and never persisted.
        self._minted = False
        self._identity_lock: Optional[asyncio.Lock] = None
        self._manual: Set[str] = set()
        self._modified: Set[str] = set()
        self._values: Dict[str, Any] = values
        self._snapshot: Dict[str, Any] = {} if is_new else _copy_values(values)

    # ──────────────────────────────────────────────────────────────────
    # Attribute access
    # ──────────────────────────────────────────────────────────────────

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        values = self.__dict__.get("_values")
        if values is not None and name in values:
            return values[name]
        model = self.__dict__.get("_model")
        if model is not None and model.entity_type.field(name) is not None:
            return None
        raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_") or hasattr(type(self), name):
            object.__setattr__(self, name, value)
        else:
            self._values[name] = value

    def __delattr__(self, name: str) -> None:
        if name.startswith("_") or hasattr(type(self), name):
            object.__delattr__(self, name)
            return
        try:
            del self._values[name]
        except KeyError:
            raise AttributeError(name) from None

    def __repr__(self) -> str:
        return f"<Document {self._model.entity_type.name} uri={self.uri!r}>"

    # ──────────────────────────────────────────────────────────────────
    # Identity
    # ──────────────────────────────────────────────────────────────────

    @property
    def model(self) -> "Model":
        return self._model

    @property
    def entity_type(self):
        return self._model.entity_type

    @property
    def identifier(self) -> Optional[str]:
        return self._identifier

    @property
    def uri(self) -> Optional[str]:
        if self._explicit_uri is not None:
            return self._explicit_uri
        if self._identifier is None:
            return None
        if self._derived_uri is None:
            self._derived_uri = f"{self._model.entity_type.uri}_{self._identifier}"
        return self._derived_uri

    @property
    def is_new(self) -> bool:
        return self._is_new or self.uri is None

    @property
    def data(self) -> Dict[str, Any]:
        """Shallow projection of the field values."""
        return dict(self._values)

    async def generate_id(self) -> Optional[str]:
        """
        Return the identifier, minting one if the document has neither an
        identifier nor an explicit URI. Concurrent callers share a single
        request to the id generator.
        """
        if self._explicit_uri is not None or self._identifier is not None:
            return self._identifier
        if self._identity_lock is None:
            self._identity_lock = asyncio.Lock()
        async with self._identity_lock:
            if self._identifier is None and self._explicit_uri is None:
                name = self._model.entity_type.name.split(":", 1)[1]
                self._identifier = await self._model.store.id_generator.next_id(name)
                self._minted = True
        return self._identifier

    async def generate_uri(self) -> str:
        await self.generate_id()
        return self.uri

    def _adopt_uri(self, uri: str) -> None:
        self._explicit_uri = self._model.store.namespaces.ensure_full_uri(uri)
        self._minted = False

    # ──────────────────────────────────────────────────────────────────
    # Dotted paths
    # ──────────────────────────────────────────────────────────────────

    @staticmethod
    def _step(container: Any, segment: str, path: str) -> Any:
        if isinstance(container, Document):
            return container._values.get(segment)
        if isinstance(container, list):
            try:
                return container[int(segment)]
            except (ValueError, IndexError):
                raise DocumentPathError(
                    f"Segment '{segment}' of '{path}' is not a valid index"
                ) from None
        if isinstance(container, Mapping):
            return container.get(segment)
        raise DocumentPathError(f"Cannot traverse '{segment}' of '{path}'")

    def get(self, path: str) -> Any:
        """
        Resolve a dotted path such as ``"organization.contacts.0.name"``.

        Returns ``None`` if only the last segment is unset.

        Raises
        ------
        DocumentPathError
            If an intermediate segment is unset or cannot be traversed.
        """
        segments = path.split(".")
        current: Any = self
        for depth, segment in enumerate(segments):
            if current is None:
                raise DocumentPathError(
                    f"'{'.'.join(segments[:depth])}' is not set on path '{path}'"
                )
            current = self._step(current, segment, path)
        return current

    def set(self, path: str, value: Any, *, populated: bool = False) -> None:
        """
        Assign *value* at a dotted path.

        With ``populated=True`` the owning document's snapshot is updated
        as well, so the assignment is not seen as a modification.
        """
        parent_path, _, last = path.rpartition(".")
        container = self.get(parent_path) if parent_path else self
        if isinstance(container, Document):
            container._values[last] = value
            if populated:
                container._snapshot[last] = _copy_value(value)
        elif isinstance(container, list):
            try:
                container[int(last)] = value
            except (ValueError, IndexError):
                raise DocumentPathError(
                    f"Segment '{last}' of '{path}' is not a valid index"
                ) from None
        elif isinstance(container, dict):
            container[last] = value
        else:
            raise DocumentPathError(f"Cannot assign '{last}' of '{path}'")

    # ──────────────────────────────────────────────────────────────────
    # Modification tracking
    # ──────────────────────────────────────────────────────────────────

    def mark_modified(self, keys: str | Iterable[str]) -> None:
        if isinstance(keys, str):
            keys = [keys]
        for key in keys:
            self._manual.add(key)
            self._modified.add(key)

    @property
    def modified_fields(self) -> Set[str]:
        return set(self._modified)

    @property
    def is_modified(self) -> bool:
        return self.check_modified()

    def _merge(self, values: Mapping[str, Any]) -> None:
        for key, value in values.items():
            if key not in ("_id", "_uri"):
                self._values[key] = value

    def check_modified(self, _visited: Optional[Set["Document"]] = None) -> bool:
        """Recompute the modified-field set; ``True`` if it is non-empty."""
        visited = set() if _visited is None else _visited
        if self in visited:
            return False
        visited.add(self)

        modified = set(self._manual)
        if self.uri is None:
            modified.update(self._values)
        for key in list(self._values.keys() | self._snapshot.keys()):
            if self._field_modified(key, visited):
                modified.add(key)
        self._modified = modified
        return bool(modified)

    def _field_modified(self, key: str, visited: Set["Document"]) -> bool:
        initial = self._snapshot.get(key)
        value = self._values.get(key)
        if _is_empty(initial):
            return not _is_empty(value)
        if _is_empty(value):
            return True

        if isinstance(initial, Document):
            if isinstance(value, Mapping):
                initial._merge(value)
                self._values[key] = initial
                return True
            if value is not initial:
                return True
            return initial.check_modified(visited)

        if isinstance(initial, list):
            if not isinstance(value, list) or len(value) != len(initial):
                return True
            changed = False
            for index, (old, new) in enumerate(zip(initial, value)):
                if isinstance(old, Document):
                    if isinstance(new, Mapping):
                        old._merge(new)
                        value[index] = old
                        changed = True
                    elif isinstance(new, Document):
                        # Positional only: a different document in this slot
                        # counts only if it has changes of its own.
                        changed = new.check_modified(visited) or changed
                    else:
                        changed = True
                elif old != new:
                    changed = True
            return changed

        return initial != value

    # ──────────────────────────────────────────────────────────────────
    # Saving
    # ──────────────────────────────────────────────────────────────────

    def _encode_scalar(self, spec: FieldSpec, item: Any) -> str:
        kind = spec.item_type.kind
        if kind == ScalarKind.NAMED_INDIVIDUAL and isinstance(item, Document):
            if item.uri is None:
                raise UsageError(
                    f"Field '{spec.external_key}' references a document that has no URI yet"
                )
            return f"<{item.uri}>"
        return to_sparql_value(item, kind)

    def _uri_of(self, item: Any) -> Optional[str]:
        if isinstance(item, Document):
            return item.uri
        if isinstance(item, str):
            return self._model.store.namespaces.ensure_full_uri(item)
        return None

    async def _link(
        self,
        spec: FieldSpec,
        value: Any,
        previous: Any,
        plan: MutationPlan,
        visited: Set["Document"],
    ) -> Tuple[str, Any]:
        """Resolve one nested-model value to its object term, saving it."""
        if isinstance(value, str):
            return encode_reference(value), value
        if isinstance(value, Mapping):
            document = self._model.store.model(spec.reference).create_document(value)
        elif isinstance(value, Document):
            document = value
        else:
            raise ValueCodecError(
                f"Field '{spec.external_key}' expects a document, a mapping or a "
                f"reference, got {value!r}"
            )
        if document.uri is None:
            prior = self._uri_of(previous)
            if prior is not None:
                document._adopt_uri(prior)
        await document._synthesize(plan, visited)
        return f"<{document.uri}>", document

    async def _synthesize(self, plan: MutationPlan, visited: Set["Document"]) -> None:
        if self in visited:
            return
        visited.add(self)

        entity_type = self._model.entity_type
        namespaces = self._model.store.namespaces
        if self.is_new:
            await self.generate_uri()
            subject = f"<{self.uri}>"
            plan.insert(subject, "rdf:type", ", ".join(entity_type.rdf_types))
            self._modified = set(self._values) | set(self._snapshot) | self._manual
        else:
            if not self.check_modified():
                return
            subject = f"<{self.uri}>"
        # A freshly minted subject cannot have prior triples.
        replace = not (self._is_new and self._minted)

        for key in self._modified:
            if entity_type.field(key) is None:
                raise ConfigurationError(
                    f"Unknown key '{key}' in entity type '{entity_type.name}'"
                )

        for spec in entity_type.fields:
            key = spec.external_key
            if key not in self._modified:
                continue
            value = self._values.get(key)
            previous = self._snapshot.get(key)
            predicate = namespaces.predicate(spec.internal_key)

            if _is_empty(value):
                if replace:
                    plan.delete(subject, predicate)
                if spec.reference is not None and spec.is_cascade and not _is_empty(previous):
                    for old in previous if isinstance(previous, list) else [previous]:
                        plan.delete_target(old)
                continue

            if spec.is_array and not isinstance(value, list):
                raise ValueCodecError(f"Field '{key}' expects a list, got {value!r}")

            if spec.reference is None:
                if replace:
                    plan.delete(subject, predicate)
                for item in value if spec.is_array else [value]:
                    plan.insert(subject, predicate, self._encode_scalar(spec, item))
            elif spec.is_array:
                if replace:
                    plan.delete(subject, predicate)
                prior_items = previous if isinstance(previous, list) else []
                # URIs still linked from this array are never handed to a new element
                taken = {self._uri_of(item) for item in value} - {None}
                resolved = []
                for index, item in enumerate(value):
                    prior = prior_items[index] if index < len(prior_items) else None
                    if self._uri_of(prior) in taken:
                        prior = None
                    term, item = await self._link(spec, item, prior, plan, visited)
                    if isinstance(item, Document):
                        taken.add(item.uri)
                    plan.insert(subject, predicate, term)
                    resolved.append(item)
                value[:] = resolved
                if spec.is_cascade and len(prior_items) != len(resolved):
                    kept = {self._uri_of(item) for item in resolved}
                    for old in prior_items:
                        if self._uri_of(old) not in kept:
                            plan.delete_target(old)
            else:
                term, item = await self._link(spec, value, previous, plan, visited)
                if replace:
                    plan.delete(subject, predicate)
                plan.insert(subject, predicate, term)
                self._values[key] = item

        plan.saved.append(
            (self, {k: _copy_value(v) for k, v in self._values.items() if v is not None})
        )

    def _mark_saved(self, snapshot: Dict[str, Any]) -> None:
        self._snapshot = snapshot
        self._modified = set()
        self._manual = set()
        self._is_new = False
        self._minted = False

    async def generate_save_query(self) -> Optional[str]:
        """
        Return the statement :meth:`save` would dispatch, or ``None``.

        Identifiers of new documents are minted and nested mappings are
        turned into documents, exactly as during a save.
        """
        plan = MutationPlan(self._model.store.namespaces)
        await self._synthesize(plan, set())
        return plan.render() if plan else None

    async def save(self, *, ignore_transaction: bool = False) -> "Document":
        """
        Persist this document and every nested document it owns.

        Saving an unmodified, already persisted document issues no
        statement. On transport failure the modified set and the snapshot
        are left untouched, so a retry re-sends the same changes.
        """
        plan = MutationPlan(self._model.store.namespaces)
        await self._synthesize(plan, set())
        if not plan:
            logger.debug(f"Nothing to save for {self!r}")
            return self
        await self._model.store.send_update(plan.render(), ignore_transaction=ignore_transaction)
        plan.commit()
        return self

    # ──────────────────────────────────────────────────────────────────
    # Population
    # ──────────────────────────────────────────────────────────────────

    async def populate(self, path: str, **kwargs: Any) -> "Document":
        return await self.populate_multiple([path], **kwargs)

    async def populate_multiple(self, paths: Iterable[str], **kwargs: Any) -> "Document":
        """Resolve reference fields along *paths* into nested documents."""
        if self.is_new:
            raise UsageError(f"Cannot populate {self!r}: it has not been saved")
        from .collection import DocumentCollection

        await DocumentCollection([self]).populate_multiple(paths, **kwargs)
        return self

    # ──────────────────────────────────────────────────────────────────
    # Conversion
    # ──────────────────────────────────────────────────────────────────

    def to_dict(self, _visited: Optional[Set["Document"]] = None) -> Dict[str, Any]:
        """
        JSON-ready dict with ``_uri``, ``_id`` and nested documents expanded.

        A document already being expanded further up the chain (a cycle)
        is rendered as its URI; shared siblings are expanded each time.
        """
        ancestors = set() if _visited is None else _visited

        def convert(value: Any) -> Any:
            if isinstance(value, Document):
                return value.uri if value in ancestors else value.to_dict(ancestors)
            if isinstance(value, list):
                return [convert(item) for item in value]
            if isinstance(value, datetime.datetime):
                return value.isoformat()
            return value

        ancestors.add(self)
        try:
            result: Dict[str, Any] = {"_uri": self.uri, "_id": self._identifier}
            for key, value in self._values.items():
                result[key] = convert(value)
        finally:
            ancestors.discard(self)
        return result

    def shallow_copy(self) -> "Document":
        """Copy with the same identity, values and new-state; nested values shared."""
        data = dict(self._values)
        if self._identifier is not None:
            data["_id"] = self._identifier
        return Document(
            self._model, data, is_new=self._is_new, uri=self._explicit_uri
        )

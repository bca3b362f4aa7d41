"""
graphdoc.schema
===============

Entity types and the registry that owns them.

An :class:`EntityType` is an immutable record: canonical name, rdf-type
tags and the normalised field table. Entity types refer to each other
*by name* (see :class:`graphdoc.field_type.Reference`), so mutually
referencing schemas never form object cycles.

The :class:`SchemaRegistry` additionally keeps, per entity type, the
*nested-type map*: every set of rdf-type tags reachable through
reference fields, mapped to the entity type that owns it. The map is
keyed by the tag **set** because sibling types may share tags (e.g.
``{Organization}`` and ``{Organization, Stakeholder}``), and only the
full combination attached to a subject identifies its model.
"""

from __future__ import annotations

import threading
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

from loguru import logger
from pydantic import BaseModel, ConfigDict, PrivateAttr

from .errors import ConfigurationError
from .field_type import FieldSpec, Reference, normalize_fields, normalize_type_name
from .namespace import Namespaces
from .sparql.settings import DEFAULT_PREDICATE_PREFIX, NAMED_INDIVIDUAL

TagSet = FrozenSet[str]


class EntityType(BaseModel):
    """
    Immutable description of one kind of document.

    Attributes
    ----------
    name:
        Prefixed canonical name, e.g. ``":person"``. The derived URI of a
        document is ``<full(name)>_<identifier>``.
    rdf_types:
        Prefixed rdf-type tags, ``owl:NamedIndividual`` first.
    tags:
        Full IRIs of ``rdf_types`` without ``owl:NamedIndividual``; the
        key under which this type appears in nested-type maps.
    fields:
        Normalised field table in declaration order.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    uri: str
    rdf_types: Tuple[str, ...]
    tags: TagSet
    fields: Tuple[FieldSpec, ...]
    predicate_uris: Tuple[str, ...]

    _by_external: Dict[str, FieldSpec] = PrivateAttr(default_factory=dict)
    _by_predicate: Dict[str, FieldSpec] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        self._by_external = {spec.external_key: spec for spec in self.fields}
        self._by_predicate = {
            uri: spec for uri, spec in zip(self.predicate_uris, self.fields)
        }

    @property
    def handle(self) -> str:
        return self.name

    def field(self, external_key: str) -> Optional[FieldSpec]:
        return self._by_external.get(external_key)

    def field_for_predicate(self, predicate_uri: str) -> Optional[FieldSpec]:
        return self._by_predicate.get(predicate_uri)

    def references(self) -> Iterable[str]:
        """Names of the entity types this one links to."""
        for spec in self.fields:
            if spec.reference is not None:
                yield spec.reference


class SchemaRegistry:
    """
    Explicit registry of :class:`EntityType` records, keyed by name.

    Nested-type maps are built lazily by :meth:`preload` and memoised;
    registering (or re-registering) a type invalidates them.
    """

    def __init__(
        self,
        namespaces: Namespaces,
        predicate_prefix: str = DEFAULT_PREDICATE_PREFIX,
    ):
        self.namespaces = namespaces
        self.predicate_prefix = predicate_prefix
        self._types: Dict[str, EntityType] = {}
        self._nested: Dict[str, Dict[TagSet, str]] = {}
        self._lock = threading.Lock()

    def __contains__(self, name: str) -> bool:
        return normalize_type_name(name) in self._types

    def names(self) -> list[str]:
        return sorted(self._types)

    def register(
        self,
        fields: Optional[Mapping[str, Any]],
        name: str,
        rdf_types: Iterable[str] = (),
        prefix: Optional[str] = None,
    ) -> EntityType:
        """
        Normalise *fields* and record a new entity type.

        Parameters
        ----------
        fields:
            Field table, see :func:`graphdoc.field_type.normalize_fields`.
            :class:`EntityType` values are accepted as reference shorthand.
        name:
            Entity-type name, bare (``person``) or prefixed.
        rdf_types:
            Prefixed rdf-type tags. ``owl:NamedIndividual`` is always added.
        prefix:
            Predicate prefix for fields without an explicit internal key.
        """
        if fields is not None:
            fields = {key: _reference_shorthand(value) for key, value in fields.items()}
        specs = normalize_fields(
            fields, self.predicate_prefix if prefix is None else prefix
        )
        type_name = normalize_type_name(name)

        declared = [t for t in rdf_types if t != NAMED_INDIVIDUAL]
        if not declared:
            raise ConfigurationError(f"Entity type '{type_name}' declares no rdf-type")
        tags = frozenset(self.namespaces.ensure_full_uri(t) for t in declared)
        predicate_uris = tuple(
            self.namespaces.full_uri(self.namespaces.predicate(spec.internal_key))
            for spec in specs
        )

        entity_type = EntityType(
            name=type_name,
            uri=self.namespaces.full_uri(type_name),
            rdf_types=(NAMED_INDIVIDUAL, *declared),
            tags=tags,
            fields=tuple(specs),
            predicate_uris=predicate_uris,
        )
        with self._lock:
            if type_name in self._types:
                logger.warning(f"Entity type '{type_name}' is being redefined")
            self._types[type_name] = entity_type
            self._nested.clear()
        return entity_type

    def get(self, name: str) -> EntityType:
        """
        Raises
        ------
        ConfigurationError
            If *name* was never registered; the message lists known names.
        """
        type_name = normalize_type_name(name)
        try:
            return self._types[type_name]
        except KeyError:
            raise ConfigurationError(
                f"Entity type '{type_name}' is not registered; "
                f"available entity types: {self.names()}"
            ) from None

    def preload(self, name: str) -> EntityType:
        """
        Build and memoise the nested-type map of *name*.

        Every entity type reachable through reference fields contributes
        its own tag set. Types already visited in this pass are skipped,
        so mutually referencing schemas terminate. Two different reachable
        types with the same tag set make the map ambiguous and raise.
        """
        root = self.get(name)
        if root.name in self._nested:
            return root

        nested: Dict[TagSet, str] = {}
        visited: set[str] = set()
        stack = list(root.references())
        while stack:
            current = self.get(stack.pop())
            if current.name in visited:
                continue
            visited.add(current.name)
            owner = nested.setdefault(current.tags, current.name)
            if owner != current.name:
                raise ConfigurationError(
                    f"Entity types '{owner}' and '{current.name}' share the rdf-types "
                    f"{sorted(current.tags)} and cannot be told apart"
                )
            stack.extend(current.references())

        if root.tags in nested and nested[root.tags] != root.name:
            raise ConfigurationError(
                f"Entity types '{nested[root.tags]}' and '{root.name}' share the "
                f"rdf-types {sorted(root.tags)} and cannot be told apart"
            )
        with self._lock:
            self._nested[root.name] = nested
        logger.debug(f"Preloaded '{root.name}' with {len(nested)} nested type(s)")
        return root

    def nested_types(self, name: str) -> Dict[TagSet, str]:
        type_name = normalize_type_name(name)
        try:
            return self._nested[type_name]
        except KeyError:
            raise ConfigurationError(
                f"Nested types of '{type_name}' looked up before preload"
            ) from None

    def owning_type(self, root: str, tags: Iterable[str]) -> Optional[EntityType]:
        """
        Resolve the entity type owning a subject that carries *tags*,
        among the types reachable from *root*.

        An exact tag-set match wins. Otherwise the largest registered
        tag set contained in *tags* is used (extra, e.g. inferred,
        tags are tolerated). Returns ``None`` when nothing matches.
        """
        nested = self.nested_types(root)
        subject_tags = frozenset(tags)
        if subject_tags in nested:
            return self._types[nested[subject_tags]]
        candidates = [key for key in nested if key <= subject_tags]
        if not candidates:
            return None
        best = max(len(key) for key in candidates)
        winners = [key for key in candidates if len(key) == best]
        if len(winners) > 1:
            return None
        return self._types[nested[winners[0]]]


def _reference_shorthand(definition: Any) -> Any:
    if isinstance(definition, EntityType):
        return Reference(definition.name)
    if isinstance(definition, list) and len(definition) == 1:
        return [_reference_shorthand(definition[0])]
    if isinstance(definition, Mapping) and "type" in definition:
        return {**definition, "type": _reference_shorthand(definition["type"])}
    return definition

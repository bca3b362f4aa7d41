from typing import Dict, Iterable, Iterator, Mapping, Optional

from loguru import logger

from .errors import ConfigurationError
from .sparql.settings import DEFAULT_NAMESPACES

"""
graphdoc.namespace
==================
Prefix ↔ namespace table used to expand ``prefix:local`` names into full
IRIs, to shorten full IRIs for display, and to emit the ``PREFIX``
prologue of every generated statement.

The default prefix ``""`` is mandatory: bare entity-type names
(``person``) and bare predicates (``has_name``) live in it.
"""


class Namespaces:
    """
    Mutable prefix table seeded with the well-known RDF vocabularies
    (``owl``, ``rdf``, ``rdfs``, ``xml``, ``xsd``).

    Raises
    ------
    ConfigurationError
        If the default namespace ``""`` is missing.
    """

    def __init__(self, namespaces: Optional[Mapping[str, str]] = None):
        self._namespaces: Dict[str, str] = dict(DEFAULT_NAMESPACES)
        for prefix, uri in (namespaces or {}).items():
            self._namespaces[prefix] = uri
        if "" not in self._namespaces:
            raise ConfigurationError(
                "Missing required namespace: the default prefix '' must be defined"
            )

    def __contains__(self, prefix: str) -> bool:
        return prefix in self._namespaces

    def __getitem__(self, prefix: str) -> str:
        try:
            return self._namespaces[prefix]
        except KeyError:
            raise ConfigurationError(
                f"Namespace prefix '{prefix}' is not defined; "
                f"known prefixes: {sorted(self._namespaces)}"
            ) from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._namespaces)

    @property
    def default(self) -> str:
        return self._namespaces[""]

    def items(self):
        return self._namespaces.items()

    def add(self, prefix: str, uri: str) -> None:
        if prefix in self._namespaces:
            raise ConfigurationError(f"Namespace prefix '{prefix}' already exists")
        self._namespaces[prefix] = uri

    def full_uri(self, prefixed: str) -> str:
        """Expand ``prefix:local`` into a full IRI."""
        prefix, sep, local = prefixed.partition(":")
        if not sep:
            raise ConfigurationError(f"'{prefixed}' is not a prefixed name")
        return self[prefix] + local

    def ensure_full_uri(self, value: str) -> str:
        """Return *value* unchanged if it is already a full IRI."""
        if "://" in value:
            return value
        return self.full_uri(value)

    def prefixed_uri(self, full: str) -> Optional[str]:
        """
        Shorten a full IRI using the longest matching namespace.

        Returns ``None`` when no namespace matches.
        """
        best: Optional[str] = None
        for prefix, uri in self._namespaces.items():
            if full.startswith(uri) and (best is None or len(uri) > len(self._namespaces[best])):
                best = prefix
        if best is None:
            logger.debug("No namespace matches '{}'", full)
            return None
        return f"{best}:{full[len(self._namespaces[best]):]}"

    def ensure_prefixed_uri(self, value: str) -> Optional[str]:
        if "://" not in value:
            return value
        return self.prefixed_uri(value)

    def predicate(self, internal_key: str) -> str:
        """
        Return the prefixed predicate used in generated statements.

        Bare keys are placed in the default namespace. Full IRIs are not
        accepted as internal keys.
        """
        if "://" in internal_key:
            raise ConfigurationError(
                f"Internal key '{internal_key}' must be a prefixed name, not a full IRI"
            )
        if ":" in internal_key:
            # Validate the prefix eagerly.
            self.full_uri(internal_key)
            return internal_key
        return f":{internal_key}"

    def sparql_prefixes(self, prefixes: Optional[Iterable[str]] = None) -> str:
        """Render the ``PREFIX`` prologue for *prefixes* (all by default)."""
        selected = self._namespaces if prefixes is None else {p: self[p] for p in prefixes}
        return "".join(f"PREFIX {prefix}: <{uri}>\n" for prefix, uri in selected.items())

from typing import Final

from rdflib.namespace import OWL, RDF, RDFS, XSD

# Default predicate prefix: a field ``name`` is stored under ``:has_name``.
DEFAULT_PREDICATE_PREFIX: Final[str] = "has_"

# Universal rdf-type tag attached to every document subject.
NAMED_INDIVIDUAL: Final[str] = "owl:NamedIndividual"

DEFAULT_NAMESPACES: Final[dict[str, str]] = {
    "owl": str(OWL),
    "rdf": str(RDF),
    "rdfs": str(RDFS),
    "xml": "http://www.w3.org/XML/1998/namespace",
    "xsd": str(XSD),
}

# Environment variables read by the test-suite to reach a live endpoint.
ENV_SPARQL_ENDPOINT_URL: Final[str] = "GRAPHDOC_SPARQL_ENDPOINT_URL"
ENV_SPARQL_UPDATE_URL: Final[str] = "GRAPHDOC_SPARQL_UPDATE_URL"
ENV_SPARQL_USER: Final[str] = "GRAPHDOC_SPARQL_USER"
ENV_SPARQL_PASSWORD: Final[str] = "GRAPHDOC_SPARQL_PASSWORD"

# Content type used for SPARQL UPDATE requests.
SPARQL_UPDATE_CONTENT_TYPE: Final[str] = "application/sparql-update"

"""
Public API for the graphdoc package.

graphdoc maps typed documents onto an RDF triple store and keeps them in
sync through generated SPARQL statements. Most users will interact with:

* :class:`GraphStore` to declare models and reach the store.
* :class:`Model` for ``find`` / ``find_one_and_update`` / ``find_and_delete``.
* :class:`Document` for field access, ``save`` and ``populate``.
* :class:`DocumentCollection` for batched population of query results.
* The field-type helpers (:class:`Reference`, :class:`DeletePolicy`, ...)
  when declaring schemas.
"""

from .errors import (
    GraphDocError,
    ConfigurationError,
    UsageError,
    DocumentPathError,
    ReferenceSyntaxError,
    ValueCodecError,
    TransactionError,
    TransportError,
)
from .field_type import (
    ScalarKind,
    DeletePolicy,
    Scalar,
    Reference,
    Array,
    FieldSpec,
    STRING,
    NUMBER,
    DATETIME,
    BOOLEAN,
    NAMED_INDIVIDUAL_REF,
    as_field_type,
    normalize_fields,
)
from .data_type import to_sparql_value, from_sparql_value, encode_reference
from .namespace import Namespaces
from .schema import EntityType, SchemaRegistry
from .id_generator import IdGenerator, UUIDGenerator, CounterIdGenerator
from .session import Transaction, current_transaction
from .document import Document, MutationPlan
from .collection import DocumentCollection, paths_to_tree, tree_to_paths, validate_paths
from .model import Model, regex_builder
from .store import GraphStore
from .version import __version__ as __version__

__all__ = [
    # errors
    "GraphDocError",
    "ConfigurationError",
    "UsageError",
    "DocumentPathError",
    "ReferenceSyntaxError",
    "ValueCodecError",
    "TransactionError",
    "TransportError",
    # field_type
    "ScalarKind",
    "DeletePolicy",
    "Scalar",
    "Reference",
    "Array",
    "FieldSpec",
    "STRING",
    "NUMBER",
    "DATETIME",
    "BOOLEAN",
    "NAMED_INDIVIDUAL_REF",
    "as_field_type",
    "normalize_fields",
    # data_type
    "to_sparql_value",
    "from_sparql_value",
    "encode_reference",
    # namespace / schema
    "Namespaces",
    "EntityType",
    "SchemaRegistry",
    # id_generator
    "IdGenerator",
    "UUIDGenerator",
    "CounterIdGenerator",
    # session
    "Transaction",
    "current_transaction",
    # document / collection / model / store
    "Document",
    "MutationPlan",
    "DocumentCollection",
    "paths_to_tree",
    "tree_to_paths",
    "validate_paths",
    "Model",
    "regex_builder",
    "GraphStore",
    # version
    "__version__",
]

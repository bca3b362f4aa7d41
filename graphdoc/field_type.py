import datetime
import enum
from typing import Any, Dict, List, Literal, Mapping, Optional, TypeAlias, Union

from pydantic import BaseModel, ConfigDict

from .errors import ConfigurationError
from .sparql.settings import DEFAULT_PREDICATE_PREFIX, NAMED_INDIVIDUAL

"""
graphdoc.field_type
===================
Explicit tagged-union description of a document field, plus the
normalisation that turns caller shorthand into :class:`FieldSpec`
records.

A field type is exactly one of

* :class:`Scalar` – a literal of some :class:`ScalarKind`;
* :class:`Reference` – a nested document of a registered entity type,
  referred to by name (forward and cyclic references are fine);
* :class:`Array` – an ordered collection of one of the above.

Accepted shorthand
------------------
``str``, ``int``/``float`` (number), ``datetime.datetime``, ``bool``,
``"owl:NamedIndividual"`` (untyped reference), ``Reference("name")`` and
one-element lists such as ``[str]`` or ``[Reference("phone")]``.
"""


class ScalarKind(enum.StrEnum):
    """Literal kinds understood by :mod:`graphdoc.data_type`."""

    STRING = "STRING"
    """Quoted, escaped string literal."""

    NUMBER = "NUMBER"
    """Bare numeric literal (xsd:integer / xsd:decimal)."""

    DATETIME = "DATETIME"
    """``"<iso8601>"^^xsd:dateTime``; naive datetimes are taken as UTC."""

    BOOLEAN = "BOOLEAN"
    """Bare ``true`` / ``false``."""

    NAMED_INDIVIDUAL = "NAMED_INDIVIDUAL"
    """Reference to any subject, written as ``<uri>`` or ``prefix:local``."""


class DeletePolicy(enum.StrEnum):
    """What happens to a nested subject when its owning link is removed."""

    CASCADE = "CASCADE"
    NON_CASCADE = "NON_CASCADE"


class Scalar(BaseModel):
    model_config = ConfigDict(frozen=True)

    tag: Literal["scalar"] = "scalar"
    kind: ScalarKind


class Reference(BaseModel):
    """Nested document of the entity type registered under ``entity_type``."""

    model_config = ConfigDict(frozen=True)

    tag: Literal["reference"] = "reference"
    entity_type: str

    def __init__(self, entity_type: str, **data: Any):
        super().__init__(entity_type=normalize_type_name(entity_type), **data)


class Array(BaseModel):
    model_config = ConfigDict(frozen=True)

    tag: Literal["array"] = "array"
    inner: Union[Scalar, Reference]


FieldType: TypeAlias = Union[Scalar, Reference, Array]

STRING = Scalar(kind=ScalarKind.STRING)
NUMBER = Scalar(kind=ScalarKind.NUMBER)
DATETIME = Scalar(kind=ScalarKind.DATETIME)
BOOLEAN = Scalar(kind=ScalarKind.BOOLEAN)
NAMED_INDIVIDUAL_REF = Scalar(kind=ScalarKind.NAMED_INDIVIDUAL)

_PYTHON_TYPE_TABLE: Dict[Any, Scalar] = {
    str: STRING,
    int: NUMBER,
    float: NUMBER,
    bool: BOOLEAN,
    datetime.datetime: DATETIME,
    NAMED_INDIVIDUAL: NAMED_INDIVIDUAL_REF,
}

# Names that cannot be used as external field names, they are taken by
# the Document API.
RESERVED_FIELD_NAMES = frozenset(
    {
        "identifier",
        "uri",
        "is_new",
        "is_modified",
        "modified_fields",
        "data",
        "model",
        "entity_type",
        "get",
        "set",
        "save",
        "populate",
        "populate_multiple",
        "generate_id",
        "generate_uri",
        "generate_save_query",
        "mark_modified",
        "check_modified",
        "to_dict",
        "shallow_copy",
    }
)

_OPTION_KEYS = frozenset({"type", "prefix", "internal_key", "external_key", "on_delete"})


def normalize_type_name(name: str) -> str:
    """``person`` and ``:person`` name the same entity type."""
    return name if ":" in name else f":{name}"


class FieldSpec(BaseModel):
    """
    One normalised field of an entity type.

    ``internal_key`` is the prefixed predicate written to the store,
    ``external_key`` the attribute name on documents.
    """

    model_config = ConfigDict(frozen=True)

    schema_key: str
    internal_key: str
    external_key: str
    type: FieldType
    on_delete: DeletePolicy = DeletePolicy.NON_CASCADE

    @property
    def is_array(self) -> bool:
        return isinstance(self.type, Array)

    @property
    def item_type(self) -> Union[Scalar, Reference]:
        return self.type.inner if isinstance(self.type, Array) else self.type

    @property
    def reference(self) -> Optional[str]:
        """Entity type name of a nested-model field, else ``None``."""
        item = self.item_type
        return item.entity_type if isinstance(item, Reference) else None

    @property
    def is_cascade(self) -> bool:
        return self.on_delete == DeletePolicy.CASCADE


def as_field_type(value: Any) -> FieldType:
    """
    Map caller shorthand to a :data:`FieldType`.

    Raises
    ------
    ConfigurationError
        For unsupported shorthand or nested arrays.
    """
    if isinstance(value, (Scalar, Reference, Array)):
        return value
    if isinstance(value, list):
        if len(value) != 1:
            raise ConfigurationError(
                f"Array field types take exactly one inner type, got {value!r}"
            )
        inner = as_field_type(value[0])
        if isinstance(inner, Array):
            raise ConfigurationError("Nested arrays are not supported")
        return Array(inner=inner)
    try:
        return _PYTHON_TYPE_TABLE[value]
    except (KeyError, TypeError):
        raise ConfigurationError(f"Unsupported field type {value!r}") from None


def normalize_field(
    schema_key: str,
    definition: Any,
    prefix: str = DEFAULT_PREDICATE_PREFIX,
) -> FieldSpec:
    """Turn one entry of a field table into a :class:`FieldSpec`."""
    if isinstance(definition, Mapping):
        unknown = set(definition) - _OPTION_KEYS
        if unknown:
            raise ConfigurationError(
                f"Unknown option(s) {sorted(unknown)} for field '{schema_key}'"
            )
        if "type" not in definition:
            raise ConfigurationError(f"Field '{schema_key}' has no type")
        options = dict(definition)
    else:
        options = {"type": definition}

    field_prefix = options.get("prefix", prefix)
    external_key = options.get("external_key") or schema_key
    if external_key.startswith("_") or external_key in RESERVED_FIELD_NAMES:
        raise ConfigurationError(f"Field name '{external_key}' is reserved")
    try:
        on_delete = DeletePolicy(options.get("on_delete", DeletePolicy.NON_CASCADE))
    except ValueError:
        raise ConfigurationError(
            f"Invalid delete policy {options['on_delete']!r} for field '{schema_key}'"
        ) from None

    return FieldSpec(
        schema_key=schema_key,
        internal_key=options.get("internal_key") or f":{field_prefix}{schema_key}",
        external_key=external_key,
        type=as_field_type(options["type"]),
        on_delete=on_delete,
    )


def normalize_fields(
    fields: Optional[Mapping[str, Any]],
    prefix: str = DEFAULT_PREDICATE_PREFIX,
) -> List[FieldSpec]:
    """
    Normalise a whole field table, keeping declaration order.

    An empty table is allowed (documents with rdf-types only); ``None``
    is not.
    """
    if fields is None:
        raise ConfigurationError("A field table is required to define an entity type")
    specs = [normalize_field(key, definition, prefix) for key, definition in fields.items()]
    seen: Dict[str, str] = {}
    for spec in specs:
        if spec.external_key in seen:
            raise ConfigurationError(
                f"Fields '{seen[spec.external_key]}' and '{spec.schema_key}' "
                f"share the external name '{spec.external_key}'"
            )
        seen[spec.external_key] = spec.schema_key
    return specs

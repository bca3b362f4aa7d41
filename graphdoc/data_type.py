import datetime
import math
import re
from typing import Any, Callable, Dict, Final

from rdflib import Literal
from rdflib.term import Node

from .errors import ReferenceSyntaxError, ValueCodecError
from .field_type import ScalarKind

"""
graphdoc.data_type
==================
Value codec between native Python scalars and the textual literal forms
used inside generated SPARQL statements.

Encoding (Python → statement text)
----------------------------------
* ``STRING``   – quoted and escaped via :meth:`rdflib.Literal.n3`.
* ``NUMBER``   – bare number; ``bool``, NaN and infinities are rejected.
* ``DATETIME`` – ``"<iso8601>"^^xsd:dateTime``. Naive datetimes are
  interpreted as UTC, numbers as POSIX timestamps in seconds, strings
  must be ISO-8601.
* ``BOOLEAN``  – bare ``true`` / ``false``.
* ``NAMED_INDIVIDUAL`` – ``<full-uri>`` or ``prefix:local``.

Decoding (store term → Python)
------------------------------
The target kind is always known from the schema, so decoding is a
simple table lookup in :data:`_DECODERS`; the term's own datatype is
not consulted.
"""

_INTEGER_RE: Final = re.compile(r"[+-]?\d+")


def _to_utc(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


def _encode_string(value: Any) -> str:
    return Literal(str(value)).n3()


def _encode_number(value: Any) -> str:
    if isinstance(value, bool):
        raise ValueCodecError(f"Boolean {value!r} is not a number")
    if isinstance(value, str):
        try:
            value = int(value) if _INTEGER_RE.fullmatch(value.strip()) else float(value)
        except ValueError:
            raise ValueCodecError(f"{value!r} is not a number") from None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueCodecError(f"{value!r} cannot be stored as a number")
        return repr(value)
    raise ValueCodecError(f"{value!r} is not a number")


def _encode_datetime(value: Any) -> str:
    if isinstance(value, datetime.datetime):
        moment = _to_utc(value)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        moment = datetime.datetime.fromtimestamp(value, tz=datetime.timezone.utc)
    elif isinstance(value, str):
        try:
            moment = _to_utc(datetime.datetime.fromisoformat(value))
        except ValueError:
            raise ValueCodecError(f"{value!r} is not an ISO-8601 datetime") from None
    else:
        raise ValueCodecError(f"{value!r} is not a datetime")
    return f'"{moment.isoformat()}"^^xsd:dateTime'


def _encode_boolean(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str) and value in ("true", "false"):
        return value
    raise ValueCodecError(f"{value!r} is not a boolean")


def encode_reference(value: str) -> str:
    """
    Serialise a reference given as a string.

    Full IRIs are wrapped in angle brackets, prefixed names pass through.

    Raises
    ------
    ReferenceSyntaxError
        If *value* is neither a full IRI nor a prefixed name.
    """
    if not isinstance(value, str):
        raise ReferenceSyntaxError(f"Reference must be a string, got {value!r}")
    if "://" in value:
        return f"<{value}>"
    if ":" in value and not any(ch.isspace() for ch in value):
        return value
    raise ReferenceSyntaxError(
        f"Malformed reference {value!r}: expected a full URI or a prefixed name"
    )


_ENCODERS: Dict[ScalarKind, Callable[[Any], str]] = {
    ScalarKind.STRING: _encode_string,
    ScalarKind.NUMBER: _encode_number,
    ScalarKind.DATETIME: _encode_datetime,
    ScalarKind.BOOLEAN: _encode_boolean,
    ScalarKind.NAMED_INDIVIDUAL: encode_reference,
}


def _decode_number(lexical: str) -> int | float:
    if _INTEGER_RE.fullmatch(lexical):
        return int(lexical)
    return float(lexical)


def _decode_datetime(lexical: str) -> datetime.datetime:
    return _to_utc(datetime.datetime.fromisoformat(lexical))


def _decode_boolean(lexical: str) -> bool:
    return lexical in ("true", "1")


_DECODERS: Dict[ScalarKind, Callable[[str], Any]] = {
    ScalarKind.STRING: str,
    ScalarKind.NUMBER: _decode_number,
    ScalarKind.DATETIME: _decode_datetime,
    ScalarKind.BOOLEAN: _decode_boolean,
    ScalarKind.NAMED_INDIVIDUAL: str,
}


def to_sparql_value(value: Any, kind: ScalarKind) -> str:
    """Serialise *value* as the literal form of *kind*."""
    return _ENCODERS[kind](value)


def from_sparql_value(term: Node | str, kind: ScalarKind) -> Any:
    """
    Convert a store term (or its lexical form) back to a Python value.

    Raises
    ------
    ValueCodecError
        If the lexical form is not valid for *kind*.
    """
    lexical = str(term)
    try:
        return _DECODERS[kind](lexical)
    except ValueError as exc:
        raise ValueCodecError(f"Cannot read {lexical!r} as {kind}: {exc}") from exc

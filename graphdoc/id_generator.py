import abc
import asyncio
import uuid
from typing import ClassVar, Dict, Mapping, Optional

"""
graphdoc.id_generator
=====================
Identifier sources for new documents. A document asks for the next
identifier of the sequence named after its entity type; the result is
always a string. ``pattern`` is the regular expression matched against
URIs to recover identifiers from query results.
"""


class IdGenerator(abc.ABC):
    pattern: ClassVar[str]

    @abc.abstractmethod
    async def next_id(self, counter_name: str) -> str:
        """Return a fresh identifier for the sequence *counter_name*."""


class UUIDGenerator(IdGenerator):
    """Random UUID4 identifiers; the sequence name is ignored."""

    pattern: ClassVar[str] = (
        r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
    )

    async def next_id(self, counter_name: str) -> str:
        return str(uuid.uuid4())


class CounterIdGenerator(IdGenerator):
    """
    In-process integer counters, one per sequence name.

    Counters start at 1 unless seeded through ``start``. Suitable for
    tests and single-process tools; not shared across processes.
    """

    pattern: ClassVar[str] = r"\d+"

    def __init__(self, start: Optional[Mapping[str, int]] = None):
        self._counters: Dict[str, int] = dict(start or {})
        self._lock = asyncio.Lock()

    async def next_id(self, counter_name: str) -> str:
        async with self._lock:
            value = self._counters.get(counter_name, 0) + 1
            self._counters[counter_name] = value
        return str(value)

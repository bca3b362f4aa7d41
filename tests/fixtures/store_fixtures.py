import os

import pytest

from graphdoc import CounterIdGenerator, GraphStore
from graphdoc.sparql import (
    ENV_SPARQL_ENDPOINT_URL,
    ENV_SPARQL_PASSWORD,
    ENV_SPARQL_UPDATE_URL,
    ENV_SPARQL_USER,
    MemoryEndpoint,
    ResultKind,
    SparqlEndpoint,
)

TEST_NS = "http://example.org/test#"
NAMESPACES = {"": TEST_NS, "cids": "http://ontology.eil.utoronto.ca/cids/cids#"}


class RecordingEndpoint(MemoryEndpoint):
    """MemoryEndpoint that keeps every statement it receives."""

    def __init__(self):
        super().__init__()
        self.queries: list[tuple[ResultKind, str]] = []
        self.updates: list[str] = []
        self.fail_updates = False

    async def run_query(self, query, kind, inference=False):
        self.queries.append((kind, query))
        return await super().run_query(query, kind, inference)

    async def run_update(self, query, content_type=None):
        if self.fail_updates:
            raise RuntimeError("store unavailable")
        self.updates.append(query)
        await super().run_update(query)

    @property
    def constructs(self) -> list[str]:
        return [query for kind, query in self.queries if kind == ResultKind.GRAPH]

    def reset(self) -> None:
        self.queries.clear()
        self.updates.clear()


@pytest.fixture(scope="function")
def endpoint() -> RecordingEndpoint:
    return RecordingEndpoint()


@pytest.fixture(scope="function")
def store(endpoint) -> GraphStore:
    return GraphStore(endpoint, NAMESPACES, id_generator=CounterIdGenerator())


@pytest.fixture(scope="module")
def sparql_endpoint():
    url = os.getenv(ENV_SPARQL_ENDPOINT_URL)
    if not url:
        pytest.skip(f"{ENV_SPARQL_ENDPOINT_URL} is not configured")
    return SparqlEndpoint(
        url=url,
        update_url=os.getenv(ENV_SPARQL_UPDATE_URL),
        username=os.getenv(ENV_SPARQL_USER),
        password=os.getenv(ENV_SPARQL_PASSWORD),
    )

from pathlib import Path

import pytest
from dotenv import load_dotenv

from graphdoc.session import Transaction

# Load test-time environment variables (e.g. a live SPARQL endpoint).
# Tests that need one skip themselves when the variables are missing.
load_dotenv(Path(__file__).with_name(".env"), override=True)

# Register shared fixtures from the `tests/fixtures` package.
# - store_fixtures: recording in-memory endpoint, GraphStore, live endpoint.
# - schema_fixtures: the person / phone / account / organization models.
pytest_plugins = [
    "tests.fixtures.store_fixtures",
    "tests.fixtures.schema_fixtures",
]


@pytest.fixture(scope="function", autouse=True)
def clear_transaction():
    """
    Make sure no transaction leaks from one test into the next; only one
    may be open per process.
    """
    Transaction.clear()
    yield
    Transaction.clear()

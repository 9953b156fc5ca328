import os

import pytest

# Memory backend and a fixed token table for every test module
os.environ["PERSISTENCE_BACKEND"] = "memory"
os.environ["API_TOKENS"] = "token-alice:alice,token-bob:bob"
os.environ.pop("OPENAI_API_KEY", None)

from taskboard.api.repositories import reset_store  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_store():
    """Each test starts against an empty store."""
    reset_store()
    yield
    reset_store()

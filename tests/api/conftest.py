import pytest
from fastapi.testclient import TestClient
from unittest.mock import patch

from API_LAYER.app import app


@pytest.fixture(scope="session")
def client():
    # No startup event: API tests wire the pipeline themselves
    return TestClient(app)


@pytest.fixture
def wired(orchestrator):
    with patch("API_LAYER.app.orchestrator", new=orchestrator):
        yield orchestrator

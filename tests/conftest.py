"""Shared fixtures for API tests."""

import pytest
from fastapi.testclient import TestClient

from src.main import app


@pytest.fixture
def client() -> TestClient:
    """Test client without lifespan (no Cassandra or Redis)."""
    return TestClient(app)

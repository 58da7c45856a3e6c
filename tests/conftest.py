import pytest
from aioresponses import aioresponses


@pytest.fixture
def api_key() -> str:
    return "test-api-key-123"


@pytest.fixture
def base_url() -> str:
    return "https://test.mappa.ai"


@pytest.fixture
def mock_api():
    with aioresponses() as m:
        yield m


def job_payload(job_id: str = "job-1", status: str = "queued", **extra) -> dict:
    """A job as the API returns it (camelCase)."""
    return {
        "id": job_id,
        "type": "report.generate",
        "status": status,
        "createdAt": "2026-01-01T00:00:00Z",
        "updatedAt": "2026-01-01T00:00:01Z",
        **extra,
    }

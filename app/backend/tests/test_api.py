"""
Test the HTTP API.
"""

from datetime import date

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from curtailment_mining.api.dependencies import get_orchestrator
from curtailment_mining.api.main import create_app
from curtailment_mining.services.reconciliation import ReconciliationOrchestrator

from conftest import make_events, no_sleep

DAY = date(2024, 6, 1)


@pytest_asyncio.fixture
async def client(db, source, fast_config):
    app = create_app(use_lifespan=False)

    async def orchestrator_override():
        yield ReconciliationOrchestrator(source, None, config=fast_config, sleep=no_sleep)

    app.dependency_overrides[get_orchestrator] = orchestrator_override
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_run_and_inspect(client, source):
    source.add(*make_events(DAY, 6))

    response = await client.post(
        "/reconciliation/run",
        json={"start_date": "2024-06-01", "end_date": "2024-06-01"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["repaired"] == 18
    assert body["data"]["units"][0]["status"] == "verified"

    checkpoints = (await client.get("/reconciliation/checkpoints", params={"status": "verified"})).json()
    assert [c["unit"] for c in checkpoints["data"]] == ["2024-06"]

    status = (await client.get(
        "/reconciliation/status", params={"start_date": "2024-06-01", "end_date": "2024-06-02"},
    )).json()
    assert status["data"]["overall_completion_percent"] == 100.0
    assert [d["date"] for d in status["data"]["dates"]] == ["2024-06-01", "2024-06-02"]


@pytest.mark.asyncio
async def test_resume_without_body(client):
    response = await client.post("/reconciliation/resume")

    assert response.status_code == 200
    assert response.json()["data"]["units"] == []


@pytest.mark.asyncio
async def test_reversed_run_range_is_rejected(client):
    response = await client.post(
        "/reconciliation/run",
        json={"start_date": "2024-06-05", "end_date": "2024-06-01"},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_reversed_status_range_is_rejected(client):
    response = await client.get(
        "/reconciliation/status", params={"start_date": "2024-06-05", "end_date": "2024-06-01"},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error_code"] == "VALIDATION_ERROR"

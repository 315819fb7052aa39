import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from app.core.db import get_session
from app.main import create_app
from app.routers.deps import get_orchestrator, get_scheduler
from app.services.datasets import DatasetKind
from app.services.record_mapper import map_pool, map_protocol
from app.services.repositories.market_repository import MarketRepository
from app.services.sync_orchestrator import SyncOrchestrator
from app.tasks.scheduler import SyncScheduler
from conftest import json_handler, pool_raw, protocol_raw


@pytest.fixture
async def api(session_maker, make_orchestrator, test_settings):
    """返回 (client, configure)，configure(handler) 替换 DeFiLlama 的模拟响应"""
    app = create_app()
    state = {"orchestrator": make_orchestrator(json_handler())}
    scheduler = SyncScheduler(state["orchestrator"], session_maker, test_settings)
    scheduler.schedule_jobs()

    async def override_get_session():
        async with session_maker() as session:
            yield session

    def configure(handler):
        state["orchestrator"] = make_orchestrator(handler)

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_orchestrator] = lambda: state["orchestrator"]
    app.dependency_overrides[get_scheduler] = lambda: scheduler

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client, configure


async def _seed(session_maker):
    async with session_maker() as session:
        repo = MarketRepository(session)
        await repo.batch_upsert(
            DatasetKind.POOLS,
            [
                map_pool(pool_raw("eth-1", 5e6), 0),
                map_pool(pool_raw("eth-2", 2e5), 0),
                map_pool(pool_raw("arb-1", 3e6, chain="Arbitrum", project="gmx", symbol="GLP"), 0),
            ],
        )
        await repo.batch_upsert(
            DatasetKind.PROTOCOLS,
            [map_protocol(protocol_raw("1", 1e9)), map_protocol(protocol_raw("2", 2e9, name="Lido", category="Liquid Staking"))],
        )


@pytest.mark.asyncio
async def test_sync_pools_success(api):
    client, configure = api
    configure(json_handler(pools=[pool_raw("a", 2e6), pool_raw("b", 5e5), pool_raw("c", 1e7)]))

    response = await client.post("/api/db/sync-pools")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["poolsProcessed"] == 2
    assert body["data"]["jobId"] is not None
    assert "timestamp" in body


@pytest.mark.asyncio
async def test_sync_pools_source_failure(api):
    client, configure = api
    configure(lambda request: httpx.Response(503))

    response = await client.post("/api/db/sync-pools")

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert "503" in body["error"]
    assert body["data"]["poolsProcessed"] == 0


@pytest.mark.asyncio
async def test_sync_protocols(api):
    client, configure = api
    configure(json_handler(protocols=[protocol_raw("1", 1e9)]))

    response = await client.post("/api/db/sync-protocols")

    assert response.status_code == 200
    assert response.json()["data"]["protocolsProcessed"] == 1


@pytest.mark.asyncio
async def test_sync_unexpected_exception_is_well_formed(api, monkeypatch):
    client, configure = api
    configure(json_handler())

    async def exploding_run(self, name):
        raise RuntimeError("boom")

    monkeypatch.setattr(SyncOrchestrator, "run", exploding_run)

    response = await client.post("/api/db/sync-protocols")

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "boom"
    assert body["data"]["jobId"] is None


@pytest.mark.asyncio
async def test_run_job_endpoint(api):
    client, configure = api
    configure(json_handler(pools=[pool_raw("a", 2e6)]))

    response = await client.post("/api/scheduler/jobs/pools/run")
    assert response.status_code == 200
    assert response.json()["data"]["poolsProcessed"] == 1

    missing = await client.post("/api/scheduler/jobs/tokens/run")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_scheduler_status(api):
    client, _ = api

    response = await client.get("/api/scheduler/status")

    assert response.status_code == 200
    body = response.json()
    assert body["isRunning"] is False
    assert body["jobCount"] == 2
    assert {job["name"] for job in body["jobs"]} == {"pools", "protocols"}


@pytest.mark.asyncio
async def test_sync_jobs_listing(api):
    client, configure = api
    configure(json_handler(pools=[pool_raw("a", 2e6)]))
    await client.post("/api/db/sync-pools")
    configure(lambda request: httpx.Response(502))
    await client.post("/api/db/sync-pools")

    response = await client.get("/api/db/sync-jobs", params={"limit": 5})

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 2
    assert [job["status"] for job in body["items"]] == ["failed", "completed"]
    assert body["items"][0]["error_message"].startswith("Failed to fetch pools")

    too_many = await client.get("/api/db/sync-jobs", params={"limit": 101})
    assert too_many.status_code == 422


@pytest.mark.asyncio
async def test_read_pools(api, session_maker):
    client, _ = api
    await _seed(session_maker)

    response = await client.get("/api/db/pools")

    assert response.status_code == 200
    assert response.headers["cache-control"] == "public, max-age=60, stale-while-revalidate=300"
    body = response.json()
    assert [pool["pool"] for pool in body["data"]] == ["eth-1", "arb-1"]
    assert body["data"][0]["tvlUsd"] == 5e6
    assert body["source"] == "database"

    by_chain = (await client.get("/api/db/pools", params={"chain": "Ethereum"})).json()
    assert [pool["pool"] for pool in by_chain["data"]] == ["eth-1", "eth-2"]

    by_project = (await client.get("/api/db/pools", params={"project": "gmx"})).json()
    assert [pool["pool"] for pool in by_project["data"]] == ["arb-1"]

    searched = (await client.get("/api/db/pools", params={"search": "glp", "chain": "Ethereum"})).json()
    assert [pool["pool"] for pool in searched["data"]] == ["arb-1"]

    low = (await client.get("/api/db/pools", params={"minTvl": 0, "limit": 1})).json()
    assert low["count"] == 1


@pytest.mark.asyncio
async def test_read_protocols_and_stats(api, session_maker):
    client, _ = api
    await _seed(session_maker)

    protocols = await client.get("/api/db/protocols")
    assert protocols.headers["cache-control"].startswith("public")
    assert [p["id"] for p in protocols.json()["data"]] == ["2", "1"]

    searched = (await client.get("/api/db/protocols", params={"search": "staking"})).json()
    assert [p["name"] for p in searched["data"]] == ["Lido"]

    chains = (await client.get("/api/db/stats/chains")).json()
    assert chains["data"][0]["chain"] == "Ethereum"
    assert chains["data"][0]["pool_count"] == 2

    projects = (await client.get("/api/db/stats/projects", params={"limit": 1})).json()
    assert projects["count"] == 1
    assert projects["data"][0]["project"] == "aave-v3"


@pytest.mark.asyncio
async def test_database_test_endpoint(api, session_maker):
    client, _ = api
    await _seed(session_maker)

    response = await client.get("/api/db/test")

    assert response.status_code == 200
    assert response.headers["cache-control"] == "no-cache"
    body = response.json()
    assert body["status"] == "ok"
    assert body["data"]["topPools"][0]["pool"] == "eth-1"
    assert body["data"]["recentJobs"] == []


@pytest.mark.asyncio
async def test_scheduler_health_endpoint(api):
    client, configure = api
    configure(json_handler(pools=[pool_raw("a", 2e6)]))
    await client.post("/api/db/sync-pools")

    body = (await client.get("/api/scheduler/health")).json()

    assert body["success"] is True
    assert body["data"] == {"activeJobs": 0, "runsLast24h": 1}

"""
pytest 公共 fixture

每个测试使用独立的 SQLite 文件数据库，DeFiLlama 请求通过 httpx.MockTransport 模拟
"""

from collections.abc import Callable
from typing import Any

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import Settings
from app.core.db import init_models
from app.services.defillama_client import DefiLlamaClient
from app.services.sync_orchestrator import SyncOrchestrator

POOLS_URL = "https://yields.test/pools"
PROTOCOLS_URL = "https://api.test/protocols"


def pool_raw(pool_id: str, tvl: float, **extra: Any) -> dict[str, Any]:
    """构造一条 yields 接口返回的池子记录"""
    raw = {
        "pool": pool_id,
        "chain": "Ethereum",
        "project": "aave-v3",
        "symbol": "USDC",
        "tvlUsd": tvl,
        "apy": 4.2,
        "apyBase": 3.1,
        "apyReward": 1.1,
        "stablecoin": True,
        "ilRisk": "no",
        "exposure": "single",
        "underlyingTokens": ["0xa0b8"],
        "count": 120,
        "outlier": False,
    }
    raw.update(extra)
    return raw


def protocol_raw(protocol_id: str, tvl: float, **extra: Any) -> dict[str, Any]:
    raw = {
        "id": protocol_id,
        "name": f"Protocol {protocol_id}",
        "slug": f"protocol-{protocol_id}",
        "tvl": tvl,
        "change_1d": 1.5,
        "change_7d": -2.0,
        "chains": ["Ethereum", "Arbitrum"],
        "category": "Lending",
    }
    raw.update(extra)
    return raw


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        app_env="test",
        database_url="sqlite+aiosqlite:///:memory:",
        defillama_pools_url=POOLS_URL,
        defillama_protocols_url=PROTOCOLS_URL,
        batch_delay_seconds=0,
        dev_immediate_run=False,
    )


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


def json_handler(pools: Any = None, protocols: Any = None) -> Callable[[httpx.Request], httpx.Response]:
    """按 URL 返回固定 JSON 的 MockTransport handler"""

    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == POOLS_URL:
            return httpx.Response(200, json={"status": "success", "data": pools or []})
        if str(request.url) == PROTOCOLS_URL:
            return httpx.Response(200, json=protocols or [])
        return httpx.Response(404)

    return handler


@pytest.fixture
def make_client(test_settings):
    def factory(handler: Callable[[httpx.Request], httpx.Response]) -> DefiLlamaClient:
        return DefiLlamaClient(test_settings, transport=httpx.MockTransport(handler))

    return factory


@pytest.fixture
def make_orchestrator(session_maker, test_settings, make_client):
    def factory(handler, settings: Settings | None = None, sleep=None) -> SyncOrchestrator:
        kwargs = {}
        if sleep is not None:
            kwargs["sleep"] = sleep
        return SyncOrchestrator(session_maker, make_client(handler), settings or test_settings, **kwargs)

    return factory

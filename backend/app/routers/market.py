"""池子 / 协议读取 API 路由"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import DatabaseStatus, check_database, get_session
from app.core.exceptions import StorageReadError
from app.schemas.market import ChainStat, PoolResponse, ProjectStat, ProtocolResponse
from app.schemas.sync import SyncJobResponse
from app.services.repositories.market_repository import MarketRepository
from app.services.repositories.sync_job_repository import SyncJobRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/db", tags=["market"])

CACHE_CONTROL = "public, max-age=60, stale-while-revalidate=300"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _read_failure(what: str, error: StorageReadError) -> JSONResponse:
    logger.error(f"获取{what}失败: {error}")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": f"Failed to fetch {what}",
            "message": error.message,
            "timestamp": _now(),
        },
    )


@router.get("/pools")
async def list_pools(
    response: Response,
    chain: str | None = Query(None),
    project: str | None = Query(None),
    search: str | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    min_tvl: float = Query(1_000_000, ge=0, alias="minTvl"),
    session: AsyncSession = Depends(get_session),
):
    """
    获取池子列表

    优先级：search > chain > project > 按 TVL 排序的头部池子
    """
    repo = MarketRepository(session)
    try:
        if search:
            pools = await repo.search_pools(search, limit=limit)
        elif chain:
            pools = await repo.top_pools(min_tvl=0, limit=limit, chain=chain)
        elif project:
            pools = await repo.top_pools(min_tvl=0, limit=limit, project=project)
        else:
            pools = await repo.top_pools(min_tvl=min_tvl, limit=limit)
    except StorageReadError as e:
        return _read_failure("pools", e)

    response.headers["Cache-Control"] = CACHE_CONTROL
    return {
        "success": True,
        "data": [PoolResponse.from_model(pool).model_dump(mode="json") for pool in pools],
        "count": len(pools),
        "source": "database",
        "timestamp": _now(),
    }


@router.get("/protocols")
async def list_protocols(
    response: Response,
    search: str | None = Query(None),
    limit: int = Query(20, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
):
    repo = MarketRepository(session)
    try:
        if search:
            protocols = await repo.search_protocols(search, limit=limit)
        else:
            protocols = await repo.top_protocols(limit=limit)
    except StorageReadError as e:
        return _read_failure("protocols", e)

    response.headers["Cache-Control"] = CACHE_CONTROL
    return {
        "success": True,
        "data": [ProtocolResponse.from_model(p).model_dump(mode="json") for p in protocols],
        "count": len(protocols),
        "source": "database",
        "timestamp": _now(),
    }


@router.get("/stats/chains")
async def chain_stats(response: Response, session: AsyncSession = Depends(get_session)):
    """按链聚合的池子统计"""
    try:
        stats = await MarketRepository(session).chain_stats()
    except StorageReadError as e:
        return _read_failure("chain stats", e)

    response.headers["Cache-Control"] = CACHE_CONTROL
    return {
        "success": True,
        "data": [ChainStat(**item).model_dump() for item in stats],
        "count": len(stats),
        "timestamp": _now(),
    }


@router.get("/stats/projects")
async def project_stats(
    response: Response,
    limit: int = Query(20, ge=1, le=200),
    session: AsyncSession = Depends(get_session),
):
    """按项目聚合的池子统计（TVL 前 limit 个）"""
    try:
        stats = await MarketRepository(session).project_stats(limit=limit)
    except StorageReadError as e:
        return _read_failure("project stats", e)

    response.headers["Cache-Control"] = CACHE_CONTROL
    return {
        "success": True,
        "data": [ProjectStat(**item).model_dump() for item in stats],
        "count": len(stats),
        "timestamp": _now(),
    }


@router.get("/test")
async def database_test(response: Response, session: AsyncSession = Depends(get_session)):
    """
    数据库连通性自检

    返回数据库状态、最近的同步任务、链统计和 TVL 前 5 的池子
    """
    response.headers["Cache-Control"] = "no-cache"

    status = await check_database(session.bind)
    if status is not DatabaseStatus.OK:
        hint = (
            "Tables not initialized, run: python -m scripts.init_db"
            if status is DatabaseStatus.TABLES_MISSING
            else "Database is not reachable"
        )
        return JSONResponse(
            status_code=503,
            headers={"Cache-Control": "no-cache"},
            content={"success": False, "status": status.value, "message": hint, "timestamp": _now()},
        )

    market_repo = MarketRepository(session)
    try:
        jobs = await SyncJobRepository(session).list_recent(limit=5)
        chains = await market_repo.chain_stats()
        pools = await market_repo.top_pools(min_tvl=0, limit=5)
    except StorageReadError as e:
        return _read_failure("database test data", e)

    return {
        "success": True,
        "status": status.value,
        "data": {
            "recentJobs": [SyncJobResponse.model_validate(job).model_dump(mode="json") for job in jobs],
            "chainStats": [ChainStat(**item).model_dump() for item in chains[:10]],
            "topPools": [PoolResponse.from_model(pool).model_dump(mode="json") for pool in pools],
        },
        "timestamp": _now(),
    }

"""同步触发 / 状态 API 路由"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_session
from app.core.exceptions import StorageReadError
from app.schemas.sync import SchedulerStatusResponse, SyncJobListResponse, SyncJobResponse
from app.services.datasets import DatasetKind
from app.services.repositories.sync_job_repository import SyncJobRepository
from app.services.sync_orchestrator import SyncOrchestrator, SyncResult
from app.routers.deps import get_orchestrator, get_scheduler
from app.tasks.scheduler import SyncScheduler

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sync"])


def _sync_response(kind: DatasetKind, result: SyncResult) -> JSONResponse:
    return JSONResponse(
        status_code=200 if result.success else 500,
        content=result.to_payload(kind),
    )


def _unexpected_failure(kind: DatasetKind, error: Exception) -> JSONResponse:
    # 触发接口永远返回格式完整的 JSON
    return JSONResponse(
        status_code=500,
        content=SyncResult(success=False, error=str(error) or type(error).__name__).to_payload(kind),
    )


async def _trigger(orchestrator: SyncOrchestrator, name: str) -> JSONResponse:
    kind = orchestrator.get_task(name).kind
    try:
        result = await orchestrator.run(name)
    except Exception as e:
        logger.error(f"同步 {name} 出现未处理异常: {e}", exc_info=True)
        return _unexpected_failure(kind, e)
    return _sync_response(kind, result)


@router.post("/db/sync-pools")
async def sync_pools(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> JSONResponse:
    """从 DeFiLlama 同步池子（只保留 TVL 达到阈值的池子）"""
    return await _trigger(orchestrator, "pools")


@router.post("/db/sync-protocols")
async def sync_protocols(orchestrator: SyncOrchestrator = Depends(get_orchestrator)) -> JSONResponse:
    """从 DeFiLlama 同步协议列表"""
    return await _trigger(orchestrator, "protocols")


@router.get("/db/sync-jobs", response_model=SyncJobListResponse)
async def list_sync_jobs(
    limit: int = Query(10, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
) -> SyncJobListResponse:
    """最近的同步任务记录"""
    try:
        jobs = await SyncJobRepository(session).list_recent(limit=limit)
    except StorageReadError as e:
        raise HTTPException(status_code=500, detail=f"获取同步任务失败: {e.message}")

    items = [SyncJobResponse.model_validate(job) for job in jobs]
    return SyncJobListResponse(items=items, count=len(items))


@router.get("/scheduler/status", response_model=SchedulerStatusResponse)
async def scheduler_status(scheduler: SyncScheduler = Depends(get_scheduler)) -> SchedulerStatusResponse:
    return SchedulerStatusResponse(**scheduler.status())


@router.post("/scheduler/jobs/{name}/run")
async def run_job_now(
    name: str,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    """
    手动立即执行一个同步任务

    Args:
        name: 任务名（pools / protocols）
    """
    if name not in orchestrator.task_names:
        raise HTTPException(status_code=404, detail=f"任务 {name} 不存在")
    return await _trigger(orchestrator, name)


@router.get("/scheduler/health")
async def scheduler_health(scheduler: SyncScheduler = Depends(get_scheduler)) -> dict:
    """立即执行一次健康检查"""
    report = await scheduler.report_health()
    return {
        "success": report is not None,
        "data": report,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

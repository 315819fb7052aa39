"""路由依赖：从 app.state 取出启动时创建的实例"""

from fastapi import HTTPException, Request

from app.services.sync_orchestrator import SyncOrchestrator
from app.tasks.scheduler import SyncScheduler


def get_orchestrator(request: Request) -> SyncOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="同步服务尚未初始化")
    return orchestrator


def get_scheduler(request: Request) -> SyncScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="调度器尚未初始化")
    return scheduler

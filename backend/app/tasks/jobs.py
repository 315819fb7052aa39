"""定时任务"""

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from app.services.sync_orchestrator import SyncOrchestrator

if TYPE_CHECKING:
    from app.tasks.scheduler import SyncScheduler

logger = logging.getLogger(__name__)


async def _run_and_log(orchestrator: SyncOrchestrator, name: str) -> None:
    logger.info(f"🔄 开始执行定时同步: {name}")
    try:
        result = await orchestrator.run(name)
    except Exception as e:
        logger.error(f"❌ 定时同步 {name} 出错: {e}", exc_info=True)
        return

    if result.success:
        logger.info(f"✅ 定时同步 {name} 完成: 写入 {result.records_processed} 条")
    else:
        logger.error(f"❌ 定时同步 {name} 失败: {result.error}")


async def run_sync_job(scheduler: "SyncScheduler", name: str) -> None:
    """定时同步任务；任何异常都在这里吞掉，不能影响调度器"""
    with scheduler.track_current_task():
        await _run_and_log(scheduler.orchestrator, name)


async def run_all_sync_jobs(scheduler: "SyncScheduler", names: Sequence[str]) -> None:
    """依次执行多个同步（开发模式启动后的一次性同步）"""
    with scheduler.track_current_task():
        for name in names:
            await _run_and_log(scheduler.orchestrator, name)


async def report_health_job(scheduler: "SyncScheduler") -> None:
    try:
        await scheduler.report_health()
    except Exception as e:
        logger.error(f"调度器状态检查出错: {e}", exc_info=True)

import asyncio
import enum
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings, settings as default_settings
from app.core.db import utcnow
from app.core.exceptions import StorageReadError, StorageWriteError
from app.services.repositories.sync_job_repository import SyncJobRepository
from app.services.sync_orchestrator import SyncOrchestrator, SyncResult
from app.tasks import jobs

logger = logging.getLogger(__name__)


class TaskState(str, enum.Enum):
    SCHEDULED = "scheduled"  # 已注册，未启动
    RUNNING = "running"  # 定时触发中


@dataclass
class ScheduledTask:
    name: str
    cron: str
    state: TaskState = TaskState.SCHEDULED


class SyncScheduler:
    """
    同步任务调度器

    由宿主进程（FastAPI 启动事件或独立脚本）创建并持有，不是全局单例。
    stop() 之后可以再次 start()，已注册的任务会重新激活。
    """

    HEALTH_JOB_ID = "scheduler_health"
    DEV_RUN_JOB_ID = "dev_immediate_run"

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        session_maker: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        scheduler: AsyncIOScheduler | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._orchestrator = orchestrator
        self._session_maker = session_maker
        self._settings = settings or default_settings
        self._scheduler = scheduler or AsyncIOScheduler(timezone=self._settings.scheduler_timezone)
        self._clock = clock
        self._tasks: dict[str, ScheduledTask] = {}
        self._is_running = False
        self._is_shut_down = False
        self._in_flight: set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def orchestrator(self) -> SyncOrchestrator:
        return self._orchestrator

    @staticmethod
    def _job_id(name: str) -> str:
        return f"sync_{name}"

    def _cron_for(self, name: str) -> str:
        crons = {
            "pools": self._settings.pools_cron,
            "protocols": self._settings.protocols_cron,
        }
        return crons[name]

    def schedule_jobs(self) -> None:
        """注册所有同步任务（不启动）"""
        if self._tasks:
            return

        logger.info("📅 注册定时同步任务...")
        for name in self._orchestrator.task_names:
            self._tasks[name] = ScheduledTask(name=name, cron=self._cron_for(name))
            logger.info(f"📅 已注册任务: {name} ({self._tasks[name].cron} {self._settings.scheduler_timezone})")

        # 开发环境：启动后延迟几秒立即同步一次，与定时计划无关
        if self._settings.should_run_immediately:
            delay = self._settings.dev_immediate_delay_seconds
            logger.info(f"🔧 开发模式: {delay:g} 秒后立即执行一次同步")
            self._scheduler.add_job(
                jobs.run_all_sync_jobs,
                "date",
                run_date=datetime.now(timezone.utc) + timedelta(seconds=delay),
                args=[self, list(self._tasks)],
                id=self.DEV_RUN_JOB_ID,
                replace_existing=True,
            )

        logger.info(f"📋 共注册 {len(self._tasks)} 个任务")

    def start(self) -> None:
        """激活所有已注册任务，并启动每小时一次的健康报告"""
        if self._is_running:
            return

        # 先解析全部 cron，任何一个非法都不会留下半启动的状态
        triggers = {
            task.name: CronTrigger.from_crontab(task.cron, timezone=self._settings.scheduler_timezone)
            for task in self._tasks.values()
        }

        logger.info("▶️ 启动同步调度器...")
        for task in self._tasks.values():
            self._scheduler.add_job(
                jobs.run_sync_job,
                triggers[task.name],
                args=[self, task.name],
                id=self._job_id(task.name),
                replace_existing=True,
                max_instances=1,  # 上一次还没跑完时跳过本次触发
                coalesce=True,
            )
            task.state = TaskState.RUNNING
            logger.info(f"🟢 已启动任务: {task.name}")

        self._scheduler.add_job(
            jobs.report_health_job,
            "interval",
            seconds=self._settings.health_interval_seconds,
            args=[self],
            id=self.HEALTH_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        if not self._scheduler.running:
            self._scheduler.start()

        self._is_running = True
        logger.info("✨ 同步调度器已启动")

    def stop(self) -> None:
        """停用所有任务并取消健康报告；正在执行的同步不会被中断"""
        logger.info("⏹️ 停止同步调度器...")
        for task in self._tasks.values():
            self._remove_job(self._job_id(task.name))
            task.state = TaskState.SCHEDULED
            logger.info(f"🔴 已停止任务: {task.name}")

        self._remove_job(self.HEALTH_JOB_ID)
        self._remove_job(self.DEV_RUN_JOB_ID)

        self._is_running = False
        logger.info("💤 同步调度器已停止")

    async def shutdown(self) -> None:
        """
        进程退出时调用

        先停用触发器，再等正在执行的同步结束，最后关闭 APScheduler。
        AsyncIOExecutor 关闭时会取消还没结束的协程，所以等待必须在它之前。
        """
        if self._is_shut_down:
            return
        self._is_shut_down = True

        self.stop()
        await self.wait_for_running(self._settings.shutdown_wait_seconds)

        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            # AsyncIOScheduler.shutdown 通过 call_soon_threadsafe 在事件循环中执行
            await asyncio.sleep(0)

    @contextmanager
    def track_current_task(self) -> Iterator[None]:
        """在任务体内登记当前 asyncio 任务，供 wait_for_running 等待"""
        task = asyncio.current_task()
        if task is not None:
            self._in_flight.add(task)
        try:
            yield
        finally:
            if task is not None:
                self._in_flight.discard(task)

    async def wait_for_running(self, timeout: float | None = None) -> bool:
        """
        等待所有正在执行的同步结束

        Returns:
            超时前全部结束返回 True
        """
        current = asyncio.current_task()
        pending = {task for task in self._in_flight if not task.done() and task is not current}
        if not pending:
            return True

        logger.info(f"⏳ 等待 {len(pending)} 个正在执行的同步结束...")
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        if still_running:
            logger.warning(f"⚠️ 等待超时，仍有 {len(still_running)} 个同步未结束")
            return False

        logger.info("✅ 正在执行的同步已全部结束")
        return True

    def _remove_job(self, job_id: str) -> None:
        if self._scheduler.get_job(job_id) is not None:
            self._scheduler.remove_job(job_id)

    def status(self) -> dict[str, Any]:
        jobs_status = []
        for task in self._tasks.values():
            job = self._scheduler.get_job(self._job_id(task.name))
            next_run = job.next_run_time if job is not None else None
            jobs_status.append(
                {
                    "name": task.name,
                    "state": task.state.value,
                    "schedule": task.cron,
                    "nextRun": next_run.isoformat() if next_run else None,
                }
            )

        return {
            "isRunning": self._is_running,
            "jobCount": len(self._tasks),
            "jobs": jobs_status,
        }

    async def run_now(self, name: str) -> SyncResult:
        """手动立即执行一次同步；未知任务名抛出 KeyError"""
        logger.info(f"🏃 手动执行任务: {name}")
        return await self._orchestrator.run(name)

    async def report_health(self) -> dict[str, int] | None:
        """输出调度器状态：运行中的任务数 + 最近 24 小时的任务记录数"""
        since = self._clock() - timedelta(hours=24)
        try:
            async with self._session_maker() as session:
                runs = await SyncJobRepository(session).count_since(since)
        except StorageReadError as e:
            logger.warning(f"⚠️ 调度器状态检查失败: {e}")
            return None

        active = sum(1 for task in self._tasks.values() if task.state is TaskState.RUNNING)
        logger.info(f"📊 调度器状态: {active} 个任务运行中, 最近 24 小时 {runs} 次执行")
        return {"activeJobs": active, "runsLast24h": runs}

    async def record_startup(self) -> None:
        """在 sync_jobs 中记录一次调度器启动"""
        try:
            async with self._session_maker() as session:
                await SyncJobRepository(session).record_completed("scheduler-startup")
            logger.info("📝 已记录调度器启动")
        except StorageWriteError as e:
            logger.warning(f"记录调度器启动失败: {e}")

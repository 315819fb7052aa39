"""
DeFiLlama 数据同步编排

一次同步的流程：
    创建任务记录 -> 拉取数据 -> 映射/过滤 -> 分批 upsert -> 记录任务终态

拉取或写入失败都会把任务记为 failed，并带上已经成功写入的条数。
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings, settings as default_settings
from app.core.exceptions import StorageWriteError
from app.services.datasets import DatasetKind
from app.services.defillama_client import DefiLlamaClient
from app.services.job_tracker import JobTracker
from app.services.record_mapper import map_records
from app.services.repositories.market_repository import MarketRepository
from app.services.repositories.sync_job_repository import SyncJobRepository

logger = logging.getLogger(__name__)

_KIND_LABELS = {
    DatasetKind.POOLS: "池子",
    DatasetKind.PROTOCOLS: "协议",
}


@dataclass(frozen=True)
class SyncTask:
    """一个可调度的同步任务"""

    name: str
    kind: DatasetKind
    chunk_size: int
    min_tvl: float = 0

    @property
    def job_type(self) -> str:
        return self.kind.job_type


@dataclass
class SyncResult:
    success: bool
    job_id: int | None = None
    records_processed: int = 0
    total_source_records: int = 0
    admitted_records: int = 0
    error: str | None = None

    def to_payload(self, kind: DatasetKind) -> dict[str, Any]:
        """触发接口返回的 JSON"""
        label = _KIND_LABELS[kind]
        payload: dict[str, Any] = {
            "success": self.success,
            "message": (
                f"成功同步 {self.records_processed} 个{label}"
                if self.success
                else f"{label}同步失败"
            ),
            "data": {
                "jobId": self.job_id,
                f"{kind.value}Processed": self.records_processed,
                "totalSourceRecords": self.total_source_records,
                "admittedRecords": self.admitted_records,
            },
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if not self.success:
            payload["error"] = self.error or "Unknown error"
        return payload


def build_tasks(settings: Settings) -> dict[str, SyncTask]:
    return {
        "pools": SyncTask(
            name="pools",
            kind=DatasetKind.POOLS,
            chunk_size=settings.pools_chunk_size,
            min_tvl=settings.pool_min_tvl,
        ),
        "protocols": SyncTask(
            name="protocols",
            kind=DatasetKind.PROTOCOLS,
            chunk_size=settings.protocols_chunk_size,
        ),
    }


def _chunked(records: Sequence[dict[str, Any]], size: int) -> list[Sequence[dict[str, Any]]]:
    return [records[i:i + size] for i in range(0, len(records), size)]


class SyncOrchestrator:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        client: DefiLlamaClient,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._session_maker = session_maker
        self._client = client
        self._settings = settings or default_settings
        self._sleep = sleep
        self._tasks = build_tasks(self._settings)

    @property
    def task_names(self) -> list[str]:
        return list(self._tasks)

    def get_task(self, name: str) -> SyncTask:
        """未知任务名抛出 KeyError"""
        try:
            return self._tasks[name]
        except KeyError:
            raise KeyError(f"Job {name} not found") from None

    async def run(self, name: str) -> SyncResult:
        """执行一次同步，返回结果（不会因为拉取/写入失败而抛异常）"""
        task = self.get_task(name)
        logger.info(f"开始同步 {task.name}...")

        async with self._session_maker() as session:
            tracker = JobTracker(SyncJobRepository(session))
            market_repo = MarketRepository(session)

            try:
                handle = await tracker.begin(task.job_type)
            except StorageWriteError as e:
                # 任务记录都建不了，没有可以收尾的 job
                logger.error(f"同步 {task.name} 无法创建任务记录: {e}")
                return SyncResult(success=False, error=e.message)

            result = SyncResult(success=False, job_id=handle.job_id)
            try:
                # 拉取
                payload = await self._client.fetch(task.kind)
                raw_records = self._client.extract_records(task.kind, payload)
                result.total_source_records = len(raw_records)
                logger.info(f"📥 从 DeFiLlama 获取到 {len(raw_records)} 条 {task.kind.value}")

                # 映射 + 过滤
                records = map_records(task.kind, raw_records, task.min_tvl)
                result.admitted_records = len(records)
                if task.kind is DatasetKind.POOLS:
                    logger.info(f"💎 TVL >= ${task.min_tvl:,.0f} 的池子: {len(records)} 个")

                # 分批写入
                await self._write_chunks(market_repo, task, records, result)
            except asyncio.CancelledError:
                await tracker.fail(handle, "Sync cancelled", result.records_processed)
                raise
            except Exception as e:
                result.error = str(e) or type(e).__name__
                logger.error(
                    f"❌ 同步 {task.name} 失败（已写入 {result.records_processed} 条）: {result.error}",
                    exc_info=True,
                )
                await tracker.fail(handle, result.error, result.records_processed)
                return result

            result.success = True
            await tracker.succeed(handle, result.records_processed)
            logger.info(f"🎉 同步 {task.name} 完成，共写入 {result.records_processed} 条")
            return result

    async def _write_chunks(
        self,
        repo: MarketRepository,
        task: SyncTask,
        records: Sequence[dict[str, Any]],
        result: SyncResult,
    ) -> None:
        """
        按 chunk_size 顺序写入，每批成功后累加 result.records_processed

        某一批失败时直接抛出 StorageWriteError，后面的批次不再处理；
        之前成功的批次已经各自提交
        """
        if not records:
            logger.info(f"⚠️ 没有需要同步的 {task.kind.value}")
            return

        chunks = _chunked(records, task.chunk_size)
        for index, chunk in enumerate(chunks, 1):
            logger.info(f"📦 处理批次 {index}/{len(chunks)}（{len(chunk)} 条 {task.kind.value}）")
            await repo.batch_upsert(task.kind, chunk)
            result.records_processed += len(chunk)
            logger.info(f"✅ 已处理 {result.records_processed}/{len(records)}")

            # 批次之间稍作等待，避免触发限流
            if index < len(chunks) and self._settings.batch_delay_seconds > 0:
                await self._sleep(self._settings.batch_delay_seconds)

"""同步任务跟踪：保证每次 begin 恰好对应一次终态记录"""

import logging
from dataclasses import dataclass

from app.core.exceptions import StorageWriteError
from app.models.sync_job import SyncJob, SyncJobStatus
from app.services.repositories.sync_job_repository import SyncJobRepository

logger = logging.getLogger(__name__)


@dataclass
class JobHandle:
    job_id: int
    job_type: str
    finished: bool = False


class JobTracker:
    def __init__(self, repository: SyncJobRepository) -> None:
        self._repo = repository

    async def begin(self, job_type: str) -> JobHandle:
        """创建 running 任务；失败时直接抛出 StorageWriteError"""
        job = await self._repo.create_job(job_type)
        return JobHandle(job_id=job.id, job_type=job_type)

    async def succeed(self, handle: JobHandle, records_processed: int) -> SyncJob | None:
        return await self._finish(handle, SyncJobStatus.COMPLETED, records_processed, None)

    async def fail(self, handle: JobHandle, error_message: str, records_processed: int = 0) -> SyncJob | None:
        return await self._finish(handle, SyncJobStatus.FAILED, records_processed, error_message)

    async def _finish(
        self,
        handle: JobHandle,
        status: SyncJobStatus,
        records_processed: int,
        error_message: str | None,
    ) -> SyncJob | None:
        if handle.finished:
            raise RuntimeError(f"同步任务 {handle.job_id} 已经记录过终态")
        handle.finished = True

        try:
            return await self._repo.update_job(handle.job_id, status, records_processed, error_message)
        except StorageWriteError as e:
            # 审计记录写不进去不影响同步结果本身
            logger.error(f"记录同步任务 {handle.job_id} 终态失败（{status.value}）: {e}")
            return None

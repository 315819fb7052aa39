"""同步任务数据访问层"""

import logging
from collections.abc import Sequence
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import utcnow
from app.core.exceptions import StorageReadError, StorageWriteError
from app.models.sync_job import SyncJob, SyncJobStatus

logger = logging.getLogger(__name__)


class SyncJobRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create_job(self, job_type: str) -> SyncJob:
        """新建一条 running 状态的任务记录"""
        now = utcnow()
        job = SyncJob(
            job_type=job_type,
            status=SyncJobStatus.RUNNING.value,
            started_at=now,
            created_at=now,
            records_processed=0,
        )
        try:
            self._session.add(job)
            await self._session.commit()
            await self._session.refresh(job)
        except SQLAlchemyError as e:
            await self._session.rollback()
            logger.error(f"创建同步任务失败: {job_type} - {e}")
            raise StorageWriteError(f"Failed to create sync job '{job_type}': {e}") from e

        logger.info(f"已创建同步任务: {job_type} (ID: {job.id})")
        return job

    async def update_job(
        self,
        job_id: int,
        status: SyncJobStatus,
        records_processed: int,
        error_message: str | None = None,
    ) -> SyncJob:
        """
        把任务切换到终态（completed / failed）

        Raises:
            StorageWriteError: 任务不存在或写入失败
        """
        status = SyncJobStatus(status)
        if not status.is_terminal:
            raise ValueError(f"update_job 只接受终态，收到: {status.value}")

        try:
            job = await self._session.get(SyncJob, job_id)
            if job is None:
                raise StorageWriteError(f"Sync job {job_id} not found")

            now = utcnow()
            job.status = status.value
            job.completed_at = now
            job.records_processed = max(int(records_processed), 0)
            job.error_message = error_message if status is SyncJobStatus.FAILED else None
            if job.started_at:
                job.duration_seconds = int((now - job.started_at).total_seconds())

            await self._session.commit()
            await self._session.refresh(job)
        except SQLAlchemyError as e:
            await self._session.rollback()
            logger.error(f"更新同步任务 {job_id} 失败: {e}")
            raise StorageWriteError(f"Failed to update sync job {job_id}: {e}") from e

        logger.info(f"已更新同步任务 {job_id}: {status.value}")
        return job

    async def record_completed(self, job_type: str) -> SyncJob:
        """直接记录一条已完成的任务（如调度器启动事件）"""
        now = utcnow()
        job = SyncJob(
            job_type=job_type,
            status=SyncJobStatus.COMPLETED.value,
            started_at=now,
            completed_at=now,
            created_at=now,
            records_processed=0,
            duration_seconds=0,
        )
        try:
            self._session.add(job)
            await self._session.commit()
            await self._session.refresh(job)
        except SQLAlchemyError as e:
            await self._session.rollback()
            raise StorageWriteError(f"Failed to record '{job_type}': {e}") from e
        return job

    async def get(self, job_id: int) -> SyncJob | None:
        try:
            return await self._session.get(SyncJob, job_id)
        except SQLAlchemyError as e:
            raise StorageReadError(f"Failed to read sync job {job_id}: {e}") from e

    async def list_recent(self, *, limit: int = 10) -> Sequence[SyncJob]:
        try:
            result = await self._session.execute(
                select(SyncJob)
                .order_by(SyncJob.created_at.desc(), SyncJob.id.desc())
                .limit(limit)
            )
        except SQLAlchemyError as e:
            logger.error(f"获取最近同步任务失败: {e}")
            raise StorageReadError(f"Failed to list sync jobs: {e}") from e
        return result.scalars().all()

    async def count_since(self, since: datetime) -> int:
        """统计 since 之后创建的任务数"""
        if since.tzinfo is not None:
            # 库里存的是 naive UTC
            since = since.astimezone(timezone.utc).replace(tzinfo=None)
        try:
            result = await self._session.execute(
                select(func.count(SyncJob.id)).where(SyncJob.created_at >= since)
            )
        except SQLAlchemyError as e:
            raise StorageReadError(f"Failed to count sync jobs: {e}") from e
        return int(result.scalar() or 0)

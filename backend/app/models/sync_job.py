"""同步任务模型"""

import enum

from sqlalchemy import Column, DateTime, Index, Integer, String, Text

from app.core.db import Base, utcnow


class SyncJobStatus(str, enum.Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not SyncJobStatus.RUNNING


class SyncJob(Base):
    """同步任务表，每次同步尝试对应一行，用于审计和状态查询"""

    __tablename__ = "sync_jobs"
    __table_args__ = (Index("ix_sync_jobs_type_status", "job_type", "status"),)

    id = Column(Integer, primary_key=True, index=True)
    job_type = Column(String(50), nullable=False)  # 任务类型（如 "pools-sync"）
    status = Column(String(20), default=SyncJobStatus.RUNNING.value, nullable=False)  # running, completed, failed
    started_at = Column(DateTime, default=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)  # 只有终态才有值
    records_processed = Column(Integer, default=0, nullable=False)  # 成功写入的记录数（不是拉取数）
    error_message = Column(Text, nullable=True)  # 只有 failed 才有值
    duration_seconds = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

"""同步任务 / 调度器 Schema"""

from datetime import datetime

from pydantic import BaseModel, Field


class SyncJobResponse(BaseModel):
    """同步任务记录"""

    id: int
    job_type: str = Field(..., description="任务类型，如 pools-sync")
    status: str = Field(..., description="running / completed / failed")
    started_at: datetime | None = None
    completed_at: datetime | None = Field(None, description="只有终态才有值")
    records_processed: int = Field(0, description="成功写入的记录数")
    error_message: str | None = None
    duration_seconds: int | None = None

    class Config:
        from_attributes = True


class SyncJobListResponse(BaseModel):
    items: list[SyncJobResponse] = Field(default_factory=list)
    count: int = 0


class SchedulerJobStatus(BaseModel):
    name: str
    state: str = Field(..., description="scheduled / running")
    schedule: str = Field(..., description="cron 表达式")
    nextRun: str | None = None


class SchedulerStatusResponse(BaseModel):
    isRunning: bool
    jobCount: int
    jobs: list[SchedulerJobStatus] = Field(default_factory=list)

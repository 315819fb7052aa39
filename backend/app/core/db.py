import enum
import logging
from datetime import datetime, timezone
from typing import AsyncIterator

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app.core.config import settings

logger = logging.getLogger(__name__)


Base = declarative_base()

_engine: AsyncEngine | None = None
_SessionLocal: async_sessionmaker[AsyncSession] | None = None


class DatabaseStatus(str, enum.Enum):
    """数据库连通性检查结果"""

    OK = "ok"
    TABLES_MISSING = "tables_missing"  # 能连上，但表还没创建
    UNREACHABLE = "unreachable"


def utcnow() -> datetime:
    """naive UTC 时间（SQLite 不存储时区信息）"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = create_async_engine(settings.database_url, future=True, echo=False)
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _SessionLocal


async def get_session() -> AsyncIterator[AsyncSession]:
    session_maker = get_sessionmaker()
    async with session_maker() as session:
        yield session


async def init_models(engine: AsyncEngine | None = None) -> None:
    import app.models.sync_job  # noqa: F401
    import app.models.pool  # noqa: F401
    import app.models.protocol  # noqa: F401

    engine = engine or get_engine()
    async with engine.begin() as conn:
        # 创建所有表
        await conn.run_sync(Base.metadata.create_all)


async def check_database(engine: AsyncEngine | None = None) -> DatabaseStatus:
    """
    检查数据库连接

    通过检查 sync_jobs 表是否存在区分"未初始化"和"连不上"，
    不依赖错误信息的文本内容
    """
    engine = engine or get_engine()
    try:
        async with engine.connect() as conn:
            has_table = await conn.run_sync(
                lambda sync_conn: inspect(sync_conn).has_table("sync_jobs")
            )
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"数据库连接失败: {e}")
        return DatabaseStatus.UNREACHABLE

    if not has_table:
        logger.warning("数据库已连接，但表尚未初始化")
        return DatabaseStatus.TABLES_MISSING

    return DatabaseStatus.OK


async def dispose_engine() -> None:
    global _engine, _SessionLocal
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _SessionLocal = None

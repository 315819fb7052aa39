"""池子 / 协议数据访问层"""

import logging
from collections.abc import Sequence
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import utcnow
from app.core.exceptions import StorageReadError, StorageWriteError
from app.models.pool import Pool
from app.models.protocol import Protocol
from app.services.datasets import DatasetKind

logger = logging.getLogger(__name__)

_MODELS = {
    DatasetKind.POOLS: Pool,
    DatasetKind.PROTOCOLS: Protocol,
}


def model_for(kind: DatasetKind):
    return _MODELS[kind]


class MarketRepository:
    """池子和协议的批量写入与查询"""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    def _dialect_name(self) -> str:
        return self._session.get_bind().dialect.name

    async def batch_upsert(self, kind: DatasetKind, records: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
        """
        按业务主键批量 upsert（不存在则插入，存在则整行覆盖）

        一次调用 = 一条语句 + 一个事务：要么整批生效，要么整批回滚

        Raises:
            StorageWriteError: 写入失败（已回滚）
        """
        if not records:
            return []

        table = model_for(kind).__table__
        natural_key = kind.natural_key
        now = utcnow()
        values = [{**record, "updated_at": now} for record in records]

        if self._dialect_name() == "postgresql":
            insert_stmt = pg_insert(table).values(values)
        else:
            insert_stmt = sqlite_insert(table).values(values)

        # 覆盖除主键、业务主键、created_at 以外的所有列
        update_columns = {
            column.name: insert_stmt.excluded[column.name]
            for column in table.columns
            if column.name not in ("id", natural_key, "created_at")
        }
        stmt = insert_stmt.on_conflict_do_update(
            index_elements=[table.c[natural_key]],
            set_=update_columns,
        ).returning(*table.columns)

        try:
            result = await self._session.execute(stmt)
            written = [dict(row) for row in result.mappings().all()]
            await self._session.commit()
        except SQLAlchemyError as e:
            await self._session.rollback()
            logger.error(f"批量写入 {kind.value} 失败（{len(records)} 条）: {e}")
            raise StorageWriteError(f"Batch upsert of {len(records)} {kind.value} failed: {e}") from e

        logger.debug(f"已写入 {len(written)} 条 {kind.value}")
        return written

    async def read_top(
        self,
        kind: DatasetKind,
        *,
        filters: dict[str, Any] | None = None,
        order_by: str | None = "-tvl_usd",
        limit: int = 100,
    ) -> Sequence[Any]:
        """
        简单的过滤 + 排序 + 限制条数查询

        Args:
            filters: {"chain": "Ethereum"} 表示等值过滤，{"min_tvl_usd": 1e6} 表示 >= 下限
            order_by: 列名，"-" 前缀表示降序
        """
        model = model_for(kind)
        query = select(model)

        try:
            for key, value in (filters or {}).items():
                if value is None:
                    continue
                if key.startswith("min_"):
                    query = query.where(_column(model, key[4:]) >= value)
                else:
                    query = query.where(_column(model, key) == value)

            if order_by:
                descending = order_by.startswith("-")
                column = _column(model, order_by.lstrip("-"))
                query = query.order_by(column.desc() if descending else column.asc())
        except ValueError as e:
            raise StorageReadError(str(e)) from e

        return await self._fetch_all(query.limit(limit))

    async def top_pools(
        self,
        *,
        min_tvl: float = 1_000_000,
        limit: int = 100,
        chain: str | None = None,
        project: str | None = None,
    ) -> Sequence[Pool]:
        """按 TVL 降序获取池子"""
        return await self.read_top(
            DatasetKind.POOLS,
            filters={"min_tvl_usd": min_tvl, "chain": chain, "project": project},
            order_by="-tvl_usd",
            limit=limit,
        )

    async def search_pools(self, term: str, *, limit: int = 50) -> Sequence[Pool]:
        """按 symbol / project / chain 模糊搜索池子"""
        pattern = f"%{term}%"
        query = (
            select(Pool)
            .where(or_(Pool.symbol.ilike(pattern), Pool.project.ilike(pattern), Pool.chain.ilike(pattern)))
            .order_by(Pool.tvl_usd.desc())
            .limit(limit)
        )
        return await self._fetch_all(query)

    async def top_protocols(self, *, limit: int = 20) -> Sequence[Protocol]:
        return await self.read_top(DatasetKind.PROTOCOLS, order_by="-tvl_usd", limit=limit)

    async def search_protocols(self, term: str, *, limit: int = 20) -> Sequence[Protocol]:
        """按 name / slug / category 模糊搜索协议"""
        pattern = f"%{term}%"
        query = (
            select(Protocol)
            .where(
                or_(Protocol.name.ilike(pattern), Protocol.slug.ilike(pattern), Protocol.category.ilike(pattern))
            )
            .order_by(Protocol.tvl_usd.desc())
            .limit(limit)
        )
        return await self._fetch_all(query)

    async def chain_stats(self) -> list[dict[str, Any]]:
        """按链聚合（交给数据库 GROUP BY，不把整表读进内存）"""
        query = (
            select(
                Pool.chain.label("chain"),
                func.count(Pool.id).label("pool_count"),
                func.sum(Pool.tvl_usd).label("total_tvl"),
                func.avg(Pool.apy).label("avg_apy"),
                func.max(Pool.tvl_usd).label("max_pool_tvl"),
            )
            .where(Pool.tvl_usd > 0)
            .group_by(Pool.chain)
            .order_by(func.sum(Pool.tvl_usd).desc())
        )
        return await self._fetch_stats(query)

    async def project_stats(self, *, limit: int = 20) -> list[dict[str, Any]]:
        """按项目聚合，取 TVL 前 limit 个"""
        query = (
            select(
                Pool.project.label("project"),
                func.count(Pool.id).label("pool_count"),
                func.sum(Pool.tvl_usd).label("total_tvl"),
                func.avg(Pool.apy).label("avg_apy"),
                func.sum(Pool.volume_usd_1d).label("total_volume_24h"),
            )
            .where(Pool.tvl_usd > 0)
            .group_by(Pool.project)
            .order_by(func.sum(Pool.tvl_usd).desc())
            .limit(limit)
        )
        return await self._fetch_stats(query)

    async def _fetch_all(self, query) -> Sequence[Any]:
        try:
            result = await self._session.execute(query)
        except SQLAlchemyError as e:
            logger.error(f"查询失败: {e}")
            raise StorageReadError(f"Query failed: {e}") from e
        return result.scalars().all()

    async def _fetch_stats(self, query) -> list[dict[str, Any]]:
        try:
            result = await self._session.execute(query)
        except SQLAlchemyError as e:
            logger.error(f"聚合查询失败: {e}")
            raise StorageReadError(f"Aggregate query failed: {e}") from e

        stats = []
        for row in result.mappings().all():
            item = dict(row)
            # avg 在不同数据库上可能返回 Decimal / None
            for key in ("total_tvl", "avg_apy", "max_pool_tvl", "total_volume_24h"):
                if key in item:
                    item[key] = float(item[key] or 0)
            stats.append(item)
        return stats


def _column(model, name: str):
    column = model.__table__.columns.get(name)
    if column is None:
        raise ValueError(f"Unknown column '{name}' on {model.__tablename__}")
    return getattr(model, name)

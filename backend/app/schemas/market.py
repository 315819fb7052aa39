"""池子 / 协议读取接口 Schema（字段沿用 DeFiLlama 的驼峰命名）"""

from datetime import date, datetime

from pydantic import BaseModel, Field

from app.models.pool import Pool
from app.models.protocol import Protocol


class PoolResponse(BaseModel):
    pool: str = Field(..., description="DeFiLlama 池子 ID")
    chain: str | None = None
    project: str | None = None
    symbol: str | None = None
    tvlUsd: float = 0
    apy: float = 0
    apyBase: float = 0
    apyReward: float = 0
    apyMean30d: float = 0
    volumeUsd1d: float = 0
    volumeUsd7d: float = 0
    stablecoin: bool = False
    ilRisk: str | None = None
    exposure: str | None = None
    poolMeta: str | None = None
    underlyingTokens: list[str] | None = None
    url: str | None = None
    mu: float = 0
    sigma: float = 0
    count: int | None = None
    outlier: bool = False
    inception: date | None = None
    updatedAt: datetime | None = None

    @classmethod
    def from_model(cls, pool: Pool) -> "PoolResponse":
        return cls(
            pool=pool.defillama_pool_id,
            chain=pool.chain,
            project=pool.project,
            symbol=pool.symbol,
            tvlUsd=pool.tvl_usd or 0,
            apy=pool.apy or 0,
            apyBase=pool.apy_base or 0,
            apyReward=pool.apy_reward or 0,
            apyMean30d=pool.apy_mean_30d or 0,
            volumeUsd1d=pool.volume_usd_1d or 0,
            volumeUsd7d=pool.volume_usd_7d or 0,
            stablecoin=bool(pool.stablecoin),
            ilRisk=pool.il_risk,
            exposure=pool.exposure,
            poolMeta=pool.pool_meta,
            underlyingTokens=pool.underlying_tokens,
            url=pool.url,
            mu=pool.mu or 0,
            sigma=pool.sigma or 0,
            count=pool.count,
            outlier=bool(pool.outlier),
            inception=pool.inception,
            updatedAt=pool.updated_at,
        )


class ProtocolResponse(BaseModel):
    id: str = Field(..., description="DeFiLlama 协议 ID（没有时为 slug）")
    name: str | None = None
    slug: str | None = None
    tvl: float = 0
    change_1d: float | None = None
    change_7d: float | None = None
    chains: list[str] = Field(default_factory=list)
    category: str | None = None
    url: str | None = None
    logo: str | None = None
    updatedAt: datetime | None = None

    @classmethod
    def from_model(cls, protocol: Protocol) -> "ProtocolResponse":
        return cls(
            id=protocol.defillama_id,
            name=protocol.name,
            slug=protocol.slug,
            tvl=protocol.tvl_usd or 0,
            change_1d=protocol.change_1d,
            change_7d=protocol.change_7d,
            chains=protocol.chains or [],
            category=protocol.category,
            url=protocol.url,
            logo=protocol.logo,
            updatedAt=protocol.updated_at,
        )


class ChainStat(BaseModel):
    chain: str | None
    pool_count: int
    total_tvl: float
    avg_apy: float
    max_pool_tvl: float


class ProjectStat(BaseModel):
    project: str | None
    pool_count: int
    total_tvl: float
    avg_apy: float
    total_volume_24h: float

"""流动性池模型"""

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, Float, Integer, String, Text

from app.core.db import Base, utcnow


class Pool(Base):
    """DeFiLlama 流动性池快照表（按 defillama_pool_id 整行覆盖更新）"""

    __tablename__ = "pools"

    id = Column(Integer, primary_key=True, index=True)

    # DeFiLlama 返回的池子 ID（唯一标识）
    defillama_pool_id = Column(String(500), unique=True, nullable=False, index=True)
    symbol = Column(String(255), nullable=True)
    chain = Column(String(100), nullable=True, index=True)
    project = Column(String(255), nullable=True, index=True)

    # 市场数据
    tvl_usd = Column(Float, nullable=True, index=True)  # 单位：美元
    apy = Column(Float, nullable=True, index=True)  # 单位：百分比
    apy_base = Column(Float, nullable=True)
    apy_reward = Column(Float, nullable=True)
    apy_mean_30d = Column(Float, nullable=True)
    volume_usd_1d = Column(Float, nullable=True)
    volume_usd_7d = Column(Float, nullable=True)

    stablecoin = Column(Boolean, default=False, nullable=False)
    il_risk = Column(String(50), nullable=True)  # 无常损失风险（yes / no）
    exposure = Column(String(100), nullable=True)  # single / multi
    pool_meta = Column(Text, nullable=True)
    underlying_tokens = Column(JSON, nullable=True)  # 底层代币地址列表
    url = Column(Text, nullable=True)

    # 统计字段
    mu = Column(Float, nullable=True)
    sigma = Column(Float, nullable=True)
    count = Column(Integer, nullable=True)
    outlier = Column(Boolean, default=False, nullable=False)
    inception = Column(Date, nullable=True)

    # 时间戳
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False, index=True)

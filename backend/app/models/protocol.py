"""DeFi 协议模型"""

from sqlalchemy import JSON, Column, DateTime, Float, Integer, String, Text

from app.core.db import Base, utcnow


class Protocol(Base):
    """DeFiLlama 协议快照表（按 defillama_id 整行覆盖更新）"""

    __tablename__ = "protocols"

    id = Column(Integer, primary_key=True, index=True)

    # DeFiLlama 的协议 ID，没有时用 slug
    defillama_id = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    slug = Column(String(255), nullable=True, index=True)

    tvl_usd = Column(Float, nullable=True, index=True)  # 单位：美元
    change_1d = Column(Float, nullable=True)  # 24h 变化（百分比）
    change_7d = Column(Float, nullable=True)  # 7d 变化（百分比）
    chains = Column(JSON, nullable=True)  # 协议部署的链列表
    category = Column(String(100), nullable=True)
    url = Column(Text, nullable=True)
    logo = Column(Text, nullable=True)

    # 时间戳
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False, index=True)

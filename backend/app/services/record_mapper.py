"""
DeFiLlama 原始记录 -> 数据库记录的映射

所有函数都是纯函数：不做 I/O，不抛异常。单个字段格式不对时退回默认值，
不会让整批数据失败。
"""

import math
from collections.abc import Iterable
from datetime import date, datetime, timezone
from typing import Any

from app.services.datasets import DatasetKind


def _to_float(value: Any, default: float | None = 0.0) -> float | None:
    if value is None or isinstance(value, bool):
        return default
    try:
        result = float(value)
    except (ValueError, TypeError):
        return default
    if not math.isfinite(result):
        return default
    return result


def _to_int(value: Any, default: int | None = 0) -> int | None:
    result = _to_float(value, None)
    if result is None:
        return default
    return int(result)


def _to_bool(value: Any) -> bool:
    # 只认 JSON 里的 true，其余（null、缺失、字符串）都当 false
    return value is True


def _to_str(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _to_str_list(value: Any) -> list[str] | None:
    if not isinstance(value, list):
        return None
    return [str(item) for item in value if item is not None]


def _to_date(value: Any) -> date | None:
    """inception 可能是 ISO 日期字符串，也可能是秒级时间戳"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc).date()
        except (ValueError, OverflowError, OSError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            pass
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            return None
    return None


def map_pool(raw: Any, min_tvl: float) -> dict[str, Any] | None:
    """
    映射单个池子

    Args:
        raw: yields.llama.fi/pools 返回的单条记录
        min_tvl: 准入阈值，tvlUsd >= min_tvl 才保留

    Returns:
        数据库记录；低于阈值或缺少池子 ID 时返回 None（丢弃）
    """
    if not isinstance(raw, dict):
        return None

    pool_id = _to_str(raw.get("pool"))
    if pool_id is None:
        return None

    tvl_usd = _to_float(raw.get("tvlUsd"))
    if tvl_usd < min_tvl:
        return None

    return {
        "defillama_pool_id": pool_id,
        "symbol": _to_str(raw.get("symbol")),
        "chain": _to_str(raw.get("chain")),
        "project": _to_str(raw.get("project")),
        "tvl_usd": tvl_usd,
        "apy": _to_float(raw.get("apy")),
        "apy_base": _to_float(raw.get("apyBase")),
        "apy_reward": _to_float(raw.get("apyReward")),
        "apy_mean_30d": _to_float(raw.get("apyMean30d")),
        "volume_usd_1d": _to_float(raw.get("volumeUsd1d")),
        "volume_usd_7d": _to_float(raw.get("volumeUsd7d")),
        "stablecoin": _to_bool(raw.get("stablecoin")),
        "il_risk": _to_str(raw.get("ilRisk")),
        "exposure": _to_str(raw.get("exposure")),
        "pool_meta": _to_str(raw.get("poolMeta")),
        "underlying_tokens": _to_str_list(raw.get("underlyingTokens")),
        "url": _to_str(raw.get("url")),
        "mu": _to_float(raw.get("mu")),
        "sigma": _to_float(raw.get("sigma")),
        "count": _to_int(raw.get("count")),
        "outlier": _to_bool(raw.get("outlier")),
        "inception": _to_date(raw.get("inception")),
    }


def map_protocol(raw: Any) -> dict[str, Any] | None:
    """映射单个协议，id 和 slug 都没有时返回 None"""
    if not isinstance(raw, dict):
        return None

    slug = _to_str(raw.get("slug"))
    defillama_id = _to_str(raw.get("id")) or slug
    if defillama_id is None:
        return None

    chains = _to_str_list(raw.get("chains"))

    return {
        "defillama_id": defillama_id,
        "name": _to_str(raw.get("name")),
        "slug": slug or defillama_id,
        "tvl_usd": _to_float(raw.get("tvl")),
        "change_1d": _to_float(raw.get("change_1d"), None),
        "change_7d": _to_float(raw.get("change_7d"), None),
        "chains": chains if chains is not None else [],
        "category": _to_str(raw.get("category")),
        "url": _to_str(raw.get("url")),
        "logo": _to_str(raw.get("logo")),
    }


def map_records(kind: DatasetKind, raw_records: Iterable[Any], min_tvl: float = 0) -> list[dict[str, Any]]:
    """
    批量映射并丢弃 None

    同一批里出现重复的业务主键时保留最后一条（一条 upsert 语句不能两次更新同一行）
    """
    by_key: dict[str, dict[str, Any]] = {}
    natural_key = kind.natural_key

    for raw in raw_records:
        if kind is DatasetKind.POOLS:
            record = map_pool(raw, min_tvl)
        else:
            record = map_protocol(raw)
        if record is not None:
            by_key[record[natural_key]] = record

    return list(by_key.values())

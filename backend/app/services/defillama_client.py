"""DeFiLlama API 客户端"""

import logging
from typing import Any

import httpx

from app.core.config import Settings, settings as default_settings
from app.core.exceptions import SourceMalformed, SourceUnavailable
from app.services.datasets import DatasetKind

logger = logging.getLogger(__name__)


class DefiLlamaClient:
    """DeFiLlama API 客户端，只负责拉取原始 JSON，不做重试"""

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or default_settings
        self._client = httpx.AsyncClient(
            timeout=self._settings.request_timeout_seconds,
            headers={
                "Accept": "application/json",
                "User-Agent": "DeFi-Dashboard-Sync/1.0",
            },
            transport=transport,
        )

    def url_for(self, kind: DatasetKind) -> str:
        if kind is DatasetKind.POOLS:
            return self._settings.defillama_pools_url
        return self._settings.defillama_protocols_url

    async def fetch(self, kind: DatasetKind) -> Any:
        """
        获取数据集的原始响应

        Args:
            kind: 数据集类型（pools / protocols）

        Returns:
            API 返回的 JSON，不做任何修改

        Raises:
            SourceUnavailable: 网络错误、超时或非 2xx 响应
            SourceMalformed: 响应体不是合法 JSON
        """
        url = self.url_for(kind)
        logger.info(f"请求 DeFiLlama {kind.value}: {url}")

        try:
            response = await self._client.get(url)
        except httpx.TimeoutException as e:
            logger.error(f"DeFiLlama 请求超时: {url}")
            raise SourceUnavailable(f"Failed to fetch {kind.value}: request timed out ({e})") from e
        except httpx.HTTPError as e:
            logger.error(f"DeFiLlama 请求失败: {url} - {e}")
            raise SourceUnavailable(f"Failed to fetch {kind.value}: {e}") from e

        if not response.is_success:
            logger.error(f"DeFiLlama API 请求失败: {response.status_code} - {response.text[:200]}")
            raise SourceUnavailable(
                f"Failed to fetch {kind.value}: HTTP {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:  # JSONDecodeError / UnicodeDecodeError
            logger.error(f"DeFiLlama 响应不是合法 JSON: {url}")
            raise SourceMalformed(f"Invalid JSON from DeFiLlama {kind.value} endpoint: {e}") from e

        logger.info(f"响应状态: {response.status_code}, 响应长度: {len(response.content)}")
        return data

    @staticmethod
    def extract_records(kind: DatasetKind, payload: Any) -> list[dict[str, Any]]:
        """
        从响应中取出记录列表

        pools 返回 {"status": "success", "data": [...]}，protocols 直接返回数组
        """
        if kind is DatasetKind.POOLS:
            records = payload.get("data") if isinstance(payload, dict) else None
        else:
            records = payload

        if not isinstance(records, list):
            raise SourceMalformed(f"Invalid response format from DeFiLlama {kind.value} endpoint")

        return records

    async def close(self) -> None:
        """关闭 HTTP 客户端"""
        await self._client.aclose()

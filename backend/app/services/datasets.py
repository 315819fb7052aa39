"""数据集类型定义"""

import enum


class DatasetKind(str, enum.Enum):
    """可同步的数据集"""

    POOLS = "pools"
    PROTOCOLS = "protocols"

    @property
    def natural_key(self) -> str:
        """数据库中用于 upsert 去重的业务主键列"""
        return _NATURAL_KEYS[self]

    @property
    def job_type(self) -> str:
        """写入 sync_jobs.job_type 的任务类型"""
        return f"{self.value}-sync"


_NATURAL_KEYS = {
    DatasetKind.POOLS: "defillama_pool_id",
    DatasetKind.PROTOCOLS: "defillama_id",
}

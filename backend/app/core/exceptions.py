"""同步子系统的异常定义"""


class SyncError(Exception):
    """所有同步相关异常的基类"""

    kind = "sync_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class SourceError(SyncError):
    """外部数据源异常"""

    kind = "source_error"


class SourceUnavailable(SourceError):
    """数据源不可达：网络错误、超时或非 2xx 响应"""

    kind = "source_unavailable"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class SourceMalformed(SourceError):
    """响应体无法解析为 JSON，或结构不符合预期"""

    kind = "source_malformed"


class StorageError(SyncError):
    """存储层异常"""

    kind = "storage_error"


class StorageWriteError(StorageError):
    """批量写入或任务记录写入失败"""

    kind = "storage_write_error"


class StorageReadError(StorageError):
    """状态/健康查询失败"""

    kind = "storage_read_error"

from functools import lru_cache

from apscheduler.triggers.cron import CronTrigger
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,  # 环境变量名不区分大小写
    )

    # 运行环境（production 环境下不执行启动后的立即同步）
    app_env: str = "development"
    log_level: str = "INFO"

    # 数据库配置（可选，默认使用 SQLite）
    database_url: str = "sqlite+aiosqlite:///./defi_sync.db"

    # DeFiLlama 数据源
    defillama_pools_url: str = "https://yields.llama.fi/pools"
    defillama_protocols_url: str = "https://api.llama.fi/protocols"
    request_timeout_seconds: float = Field(default=60.0, gt=0)  # pools 端点响应较慢

    # 池子准入阈值
    # 环境变量名：POOL_MIN_TVL
    pool_min_tvl: float = Field(
        default=1_000_000,
        ge=0,
        description="最小 TVL（美元），低于此值的池子不会写入数据库",
    )

    # 批量写入配置
    pools_chunk_size: int = Field(default=100, gt=0)
    protocols_chunk_size: int = Field(default=50, gt=0)
    batch_delay_seconds: float = Field(default=1.0, ge=0)  # 批次之间的间隔，避免触发限流

    # 定时任务配置（cron 表达式 + 时区）
    pools_cron: str = "0 2 * * *"
    protocols_cron: str = "0 3 * * *"
    scheduler_timezone: str = "UTC"
    scheduler_enabled: bool = True

    # 开发模式：启动后延迟几秒立即执行一次同步
    # 未设置时根据 app_env 决定
    dev_immediate_run: bool | None = None
    dev_immediate_delay_seconds: float = Field(default=5.0, ge=0)

    # 调度器健康报告间隔（秒）
    health_interval_seconds: int = Field(default=3600, gt=0)

    # 关闭时等待正在执行的同步结束的最长时间（秒）
    shutdown_wait_seconds: float = Field(default=300.0, gt=0)

    @field_validator("pools_cron", "protocols_cron")
    @classmethod
    def check_cron(cls, value: str) -> str:
        """加载配置时就校验 cron 表达式，避免调度器启动到一半才失败"""
        try:
            CronTrigger.from_crontab(value, timezone="UTC")
        except ValueError as e:
            raise ValueError(f"无效的 cron 表达式 '{value}': {e}") from e
        return value

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"

    @property
    def should_run_immediately(self) -> bool:
        if self.dev_immediate_run is not None:
            return self.dev_immediate_run
        return not self.is_production

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """
        自定义设置源优先级
        确保环境变量和 .env 文件都能正确读取
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,  # .env 文件
            file_secret_settings,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

"""独立运行同步调度器（不启动 API 服务）

使用方法：
    python -m scripts.run_scheduler

Ctrl+C / SIGTERM 会停止所有任务后退出；正在执行的同步不会被中断
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path

# 添加项目根目录到 Python 路径
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from app.core.config import settings
from app.core.db import dispose_engine, get_sessionmaker, init_models
from app.core.logging import setup_logging
from app.services.defillama_client import DefiLlamaClient
from app.services.sync_orchestrator import SyncOrchestrator
from app.tasks.scheduler import SyncScheduler

setup_logging(settings.log_level)
logger = logging.getLogger(__name__)


async def main() -> None:
    logger.info("🚀 启动 DeFiLlama 同步调度器...")
    await init_models()

    client = DefiLlamaClient(settings)
    session_maker = get_sessionmaker()
    orchestrator = SyncOrchestrator(session_maker, client, settings)
    scheduler = SyncScheduler(orchestrator, session_maker, settings)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows 不支持 add_signal_handler，依赖 KeyboardInterrupt
            pass

    try:
        await scheduler.record_startup()
        scheduler.schedule_jobs()
        scheduler.start()
        logger.info("✨ 调度器运行中，按 Ctrl+C 退出")
        await stop_event.wait()
        logger.info("🛑 收到退出信号，正在停止调度器...")
    finally:
        # 等正在执行的同步结束后再关闭 HTTP 客户端和数据库连接
        await scheduler.shutdown()
        await client.close()
        await dispose_engine()
        logger.info("👋 调度器已退出")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass

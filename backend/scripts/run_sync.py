"""手动执行同步任务

使用方法：
    python -m scripts.run_sync run pools       # 立即同步池子
    python -m scripts.run_sync run protocols   # 立即同步协议
    python -m scripts.run_sync list            # 列出可用任务
    python -m scripts.run_sync status          # 查看调度配置和最近的任务记录
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# 添加项目根目录到 Python 路径
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from app.core.config import settings
from app.core.db import dispose_engine, get_sessionmaker, init_models
from app.core.exceptions import StorageReadError
from app.core.logging import setup_logging
from app.services.defillama_client import DefiLlamaClient
from app.services.repositories.sync_job_repository import SyncJobRepository
from app.services.sync_orchestrator import SyncOrchestrator
from app.tasks.scheduler import SyncScheduler

setup_logging(settings.log_level)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="DeFiLlama 同步任务")
    sub = parser.add_subparsers(dest="command", required=True)

    run_parser = sub.add_parser("run", help="立即执行一个同步任务")
    run_parser.add_argument("name", help="任务名（pools / protocols）")

    sub.add_parser("list", help="列出可用任务")
    sub.add_parser("status", help="查看调度配置和最近的任务记录")
    return parser


async def run_job(orchestrator: SyncOrchestrator, name: str) -> int:
    if name not in orchestrator.task_names:
        print(f"❌ 任务 {name} 不存在，可用任务: {', '.join(orchestrator.task_names)}")
        return 1

    result = await orchestrator.run(name)
    if result.success:
        print(f"✅ {name} 同步完成: 写入 {result.records_processed} 条 (job #{result.job_id})")
        return 0

    print(f"❌ {name} 同步失败: {result.error} (已写入 {result.records_processed} 条)")
    return 1


async def show_status(scheduler: SyncScheduler) -> int:
    scheduler.schedule_jobs()
    status = scheduler.status()

    print("\n" + "=" * 60)
    print("📅 定时任务")
    print("=" * 60)
    for job in status["jobs"]:
        print(f"  {job['name']:<12} {job['schedule']:<15} {settings.scheduler_timezone}")

    async with get_sessionmaker()() as session:
        try:
            jobs = await SyncJobRepository(session).list_recent(limit=10)
        except StorageReadError as e:
            print(f"❌ 读取任务记录失败: {e}")
            return 1

    print("\n" + "=" * 60)
    print("📋 最近的任务记录")
    print("=" * 60)
    if not jobs:
        print("  (暂无记录)")
    for job in jobs:
        print(
            f"  #{job.id:<5} {job.job_type:<18} {job.status:<10} "
            f"{job.records_processed:>6} 条  {job.started_at:%Y-%m-%d %H:%M:%S}"
            + (f"  错误: {job.error_message}" if job.error_message else "")
        )
    print()
    return 0


async def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    await init_models()
    client = DefiLlamaClient(settings)
    session_maker = get_sessionmaker()
    orchestrator = SyncOrchestrator(session_maker, client, settings)

    try:
        if args.command == "list":
            for name in orchestrator.task_names:
                task = orchestrator.get_task(name)
                print(f"  {name:<12} -> {task.job_type}")
            return 0

        if args.command == "status":
            # 只读状态，不启动调度器
            scheduler = SyncScheduler(orchestrator, session_maker, settings.model_copy(update={"dev_immediate_run": False}))
            return await show_status(scheduler)

        return await run_job(orchestrator, args.name)
    finally:
        await client.close()
        await dispose_engine()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.db import dispose_engine, get_sessionmaker, init_models
from app.core.logging import setup_logging
from app.services.defillama_client import DefiLlamaClient
from app.services.sync_orchestrator import SyncOrchestrator
from app.tasks.scheduler import SyncScheduler
from .routers import market, sync

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(title="DeFi Sync API")

    # CORS 中间件必须在所有路由之前添加
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(sync.router, prefix="/api")
    app.include_router(market.router, prefix="/api")

    @app.get("/")
    async def read_root():
        return {"message": "DeFi Sync API", "docs": "/docs"}

    @app.on_event("startup")
    async def startup_event() -> None:
        setup_logging(settings.log_level)

        try:
            logger.info("正在初始化数据库...")
            await init_models()
            logger.info("数据库初始化完成")
        except Exception as e:
            logger.error(f"数据库初始化失败: {e}", exc_info=True)
            # 不抛出异常，读取接口会通过 /api/db/test 报告数据库状态
            logger.warning("应用将继续运行，但某些功能可能不可用")

        client = DefiLlamaClient(settings)
        session_maker = get_sessionmaker()
        orchestrator = SyncOrchestrator(session_maker, client, settings)
        scheduler = SyncScheduler(orchestrator, session_maker, settings)

        app.state.client = client
        app.state.orchestrator = orchestrator
        app.state.scheduler = scheduler

        if settings.scheduler_enabled:
            logger.info("正在启动同步调度器...")
            await scheduler.record_startup()
            scheduler.schedule_jobs()
            scheduler.start()
        else:
            logger.info("调度器已禁用（SCHEDULER_ENABLED=false），只能手动触发同步")

        logger.info("应用启动完成！")

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        try:
            scheduler = getattr(app.state, "scheduler", None)
            if scheduler is not None:
                # 等正在执行的同步结束后再关闭 HTTP 客户端和数据库连接
                await scheduler.shutdown()
            client = getattr(app.state, "client", None)
            if client is not None:
                await client.close()
        finally:
            await dispose_engine()
            logger.info("应用已停止")

    return app


app = create_app()

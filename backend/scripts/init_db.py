"""初始化数据库脚本

创建 sync_jobs / pools / protocols 表，并检查数据库状态

使用方法：
    python -m scripts.init_db
"""

import asyncio
import logging
import sys
from pathlib import Path

# 添加项目根目录到 Python 路径
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from app.core.config import settings
from app.core.db import DatabaseStatus, check_database, dispose_engine, init_models
from app.core.logging import setup_logging

setup_logging(settings.log_level)
logger = logging.getLogger(__name__)


async def main():
    """初始化数据库"""
    try:
        logger.info("开始初始化数据库...")
        await init_models()
        status = await check_database()
        if status is not DatabaseStatus.OK:
            logger.error(f"数据库初始化后状态异常: {status.value}")
            sys.exit(1)
        logger.info("数据库初始化完成！")
        logger.info(f"数据库地址: {settings.database_url}")
    except Exception as e:
        logger.error(f"数据库初始化失败: {e}", exc_info=True)
        sys.exit(1)
    finally:
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())

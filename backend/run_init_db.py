import asyncio
import logging

from trustcore.core.database import close_db, init_db
from trustcore.core.logging_config import setup_logging

# 配置日志
setup_logging()
logger = logging.getLogger(__name__)


async def main():
    logger.info("Initializing database tables...")
    try:
        await init_db()
        logger.info("Database tables initialized successfully.")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise
    finally:
        await close_db()

if __name__ == "__main__":
    asyncio.run(main())

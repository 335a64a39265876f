"""日志配置

在进程启动时（Celery worker、初始化脚本）调用 setup_logging()。
"""

import logging
import logging.config
import sys
from typing import Any, Dict, Optional

from trustcore.core.config import get_settings


def get_logging_config(log_level: str = "INFO") -> Dict[str, Any]:
    """
    获取日志配置字典

    Args:
        log_level: 默认日志级别 (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Returns:
        logging.config.dictConfig 可用的配置
    """
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": "default",
                "stream": sys.stdout,
            },
        },
        "loggers": {
            "trustcore": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
            # SQL 日志太吵，只保留警告
            "sqlalchemy.engine": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
            "celery": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
        },
        "root": {
            "level": log_level,
            "handlers": ["console"],
        },
    }


def setup_logging(log_level: Optional[str] = None) -> None:
    """配置全局日志"""
    level = (log_level or get_settings().log_level).upper()
    logging.config.dictConfig(get_logging_config(level))
    logging.getLogger(__name__).info(f"Logging configured at level {level}")


def mask_email(email: str) -> str:
    """遮罩邮箱，日志中不出现完整地址"""
    try:
        local, domain = email.split("@", 1)
    except ValueError:
        return "***"
    if len(local) <= 1:
        masked_local = "*"
    else:
        masked_local = local[0] + "*" * (len(local) - 1)
    return f"{masked_local}@{domain}"

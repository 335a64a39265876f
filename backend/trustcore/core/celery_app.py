"""Celery 配置"""

from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging as celery_setup_logging

from trustcore.core.config import get_settings
from trustcore.core.logging_config import setup_logging

settings = get_settings()

celery_app = Celery(
    "trustcore_tasks",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

# Celery 配置
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=1800,  # 全量重算可能较慢
    task_soft_time_limit=1500,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# 定时任务
celery_app.conf.beat_schedule = {
    # 每周一凌晨重算 TrustScore
    "recalculate-trust-scores-weekly": {
        "task": "trustcore.tasks.recalculate_trust_scores",
        "schedule": crontab(minute=0, hour=3, day_of_week=1),
    },
    "prune-otp-rate-limits-hourly": {
        "task": "trustcore.tasks.prune_otp_rate_limits",
        "schedule": crontab(minute=15),
    },
}

# 自动发现任务
celery_app.autodiscover_tasks(["trustcore"])


@celery_setup_logging.connect
def configure_worker_logging(**kwargs):
    """worker 使用与应用相同的日志配置"""
    setup_logging()

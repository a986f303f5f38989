# chatcart/celery_worker.py
from celery import Celery

from chatcart.utils.settings import Settings

settings = Settings.from_env()

celery_app = Celery(
    "chatcart",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

# taski musza byc zaimportowane zeby worker je zarejestrowal
celery_app.conf.imports = (
    "chatcart.tasks.expire",
    "chatcart.services.notification_service",
)

celery_app.conf.beat_schedule = {
    "expire-carts-every-minute": {
        "task": "chatcart.tasks.expire.expire_carts_task",
        "schedule": 60.0,
    },
    "purge-expired-carts-hourly": {
        "task": "chatcart.tasks.expire.purge_expired_carts_task",
        "schedule": 3600.0,
    },
}

celery_app.conf.timezone = "UTC"

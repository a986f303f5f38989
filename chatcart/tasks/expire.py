# chatcart/tasks/expire.py
from chatcart.celery_worker import celery_app
from chatcart.dependencies import build_context
from chatcart.utils.logging import get_logger
from chatcart.utils.settings import Settings

logger = get_logger(__name__)


def expire_carts(context) -> int:
    with context.database.session() as db:
        return context.cart_service(db).cleanup_expired_carts()


def purge_expired_carts(context) -> int:
    with context.database.session() as db:
        return context.cart_service(db).purge_expired_carts()


@celery_app.task(name="chatcart.tasks.expire.expire_carts_task")
def expire_carts_task():
    logger.info("Expire carts task started")

    context = build_context(Settings.from_env())
    try:
        count = expire_carts(context)
    finally:
        context.close()

    logger.info(f"Expire carts task finished, {count} carts expired")
    return {"expired": count}


@celery_app.task(name="chatcart.tasks.expire.purge_expired_carts_task")
def purge_expired_carts_task():
    logger.info("Purge expired carts task started")

    context = build_context(Settings.from_env())
    try:
        count = purge_expired_carts(context)
    finally:
        context.close()

    logger.info(f"Purge expired carts task finished, {count} carts deleted")
    return {"purged": count}

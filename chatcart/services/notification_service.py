# chatcart/services/notification_service.py
from chatcart.celery_worker import celery_app
from chatcart.utils.logging import get_logger

logger = get_logger(__name__)


class RecoveryNotifier:
    """
    Sygnal dla schedulera przypomnien o porzuconym koszyku.
    Wysylka idzie przez Celery, wywolujacy nie czeka na wynik.
    """

    def stop_sequence(self, phone: str, reason: str) -> None:
        stop_recovery_sequence_task.delay(phone, reason)


@celery_app.task(name="chatcart.services.notification_service.stop_recovery_sequence_task")
def stop_recovery_sequence_task(phone: str, reason: str):
    """
    Celery task, scheduler przypomnien jest poza tym serwisem.
    Tutaj tylko logujemy zatrzymanie sekwencji.
    """
    logger.info(f"[RECOVERY] Stop reminder sequence for {phone}: {reason}")
    return {"phone": phone, "reason": reason, "status": "stopped"}

# chatcart/main.py
import uvicorn
from fastapi import FastAPI

from chatcart import __version__
from chatcart.api import register
from chatcart.dependencies import CartContext, build_context
from chatcart.utils.logging import configure_logging, get_logger
from chatcart.utils.settings import Settings

logger = get_logger(__name__)


def create_app(settings: Settings | None = None, context: CartContext | None = None) -> FastAPI:
    if context is None:
        settings = settings or Settings.from_env()
        configure_logging(settings.log_level)

        # notifier importuje celery, tylko dla prawdziwego wdrozenia
        from chatcart.services.notification_service import RecoveryNotifier

        context = build_context(settings, notifier=RecoveryNotifier())

    logger.info("Initializing database")
    context.database.create_all()

    app = FastAPI(
        title="Chat Cart Service",
        version=__version__,
    )
    app.state.context = context
    register(app)

    return app


if __name__ == "__main__":
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)

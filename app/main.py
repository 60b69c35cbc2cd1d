import logging.config

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.metrics import router as metrics_router
from app.api.ws import router as ws_router
from app.config import get_settings
from app.services.realtime import create_chat_service


settings = get_settings()

LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        }
    },
    "handlers": {
        "default": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        }
    },
    "root": {
        "handlers": ["default"],
        "level": "INFO",
    },
    "loggers": {
        "eventconnect.realtime": {"level": settings.log_level.upper()},
        "app.api.ws": {"level": settings.log_level.upper()},
        "app.services": {"level": settings.log_level.upper()},
    },
}


logging.config.dictConfig(LOGGING_CONFIG)

app = FastAPI(title=settings.app_name, debug=settings.debug)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(origin).rstrip("/") for origin in settings.cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["system"])
def health_check() -> dict[str, object]:
    """Liveness probe reporting the state of the realtime service."""
    service = getattr(app.state, "chat_service", None)
    if service is None:
        return {"status": "starting", "environment": settings.environment, "connected_users": 0}
    return {
        "status": "ok",
        "environment": settings.environment,
        "connected_users": service.connected_users_count(),
        "reconciler_running": service.reconciler.running,
    }


@app.on_event("startup")
async def _startup() -> None:
    if getattr(app.state, "chat_service", None) is None:
        app.state.chat_service = create_chat_service(settings)
    await app.state.chat_service.start()


@app.on_event("shutdown")
async def _shutdown() -> None:
    service = getattr(app.state, "chat_service", None)
    if service is not None:
        await service.close()


app.include_router(ws_router)
app.include_router(metrics_router)

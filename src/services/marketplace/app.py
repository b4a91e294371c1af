# src/services/marketplace/app.py
"""
FastAPI приложение маркетплейса.

Endpoints (префикс /api/v1):
- /trips - заказ, подтверждение, назначение, отмена, завершение
- /wallets - кошельки, проводки, корректировки
- /payouts - выплаты водителям
- /notifications - уведомления и объявления
- /users - справочник адресатов объявлений
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from src.common.constants import TypeMsg
from src.common.exceptions import (
    ActiveTripExistsError,
    DuplicateReferenceError,
    InsufficientFundsError,
    InvalidTransitionError,
    MarketplaceError,
    NotFoundError,
    NotificationNotStoredError,
    SettlementError,
    TransitionNotPermittedError,
)
from src.common.logger import log_error, log_info, setup_logging
from src.config import settings
from src.services.marketplace.dependencies import (
    cleanup_dependencies,
    get_db,
    get_event_bus,
    init_dependencies,
)
from src.services.marketplace.routes import ROUTERS
from src.services.marketplace.schemas import ErrorResponse, HealthStatus

SERVICE_NAME = "marketplace"

ERROR_STATUS: list[tuple[type[MarketplaceError], int, str]] = [
    (NotFoundError, status.HTTP_404_NOT_FOUND, "NOT_FOUND"),
    (ActiveTripExistsError, status.HTTP_409_CONFLICT, "ACTIVE_TRIP_EXISTS"),
    (InvalidTransitionError, status.HTTP_409_CONFLICT, "INVALID_TRANSITION"),
    (DuplicateReferenceError, status.HTTP_409_CONFLICT, "DUPLICATE_REFERENCE"),
    (InsufficientFundsError, status.HTTP_402_PAYMENT_REQUIRED, "INSUFFICIENT_FUNDS"),
    (TransitionNotPermittedError, status.HTTP_403_FORBIDDEN, "TRANSITION_NOT_PERMITTED"),
    (SettlementError, status.HTTP_500_INTERNAL_SERVER_ERROR, "SETTLEMENT_FAILED"),
    (NotificationNotStoredError, status.HTTP_503_SERVICE_UNAVAILABLE, "NOTIFICATION_NOT_STORED"),
]


def error_status(exc: MarketplaceError) -> tuple[int, str]:
    for exc_type, code, error_code in ERROR_STATUS:
        if isinstance(exc, exc_type):
            return code, error_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR, "INTERNAL_ERROR"


# === LIFESPAN ===

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Жизненный цикл приложения."""
    # Startup
    setup_logging()
    await log_info("Запуск сервиса маркетплейса...", type_msg=TypeMsg.INFO)

    db = None
    if settings.storage.STORAGE_BACKEND == "postgres":
        from src.infra.database import init_db
        db = await init_db()

    event_bus = None
    if settings.rabbitmq.RABBITMQ_ENABLED:
        from src.infra.event_bus import init_event_bus
        event_bus = await init_event_bus()

    await init_dependencies(settings, db, event_bus)

    yield

    # Shutdown
    await log_info("Остановка сервиса маркетплейса...", type_msg=TypeMsg.INFO)
    await cleanup_dependencies()
    if event_bus is not None:
        from src.infra.event_bus import close_event_bus
        await close_event_bus()
    if db is not None:
        from src.infra.database import close_db
        await close_db()


# === APP ===

app = FastAPI(
    title="Ziba Marketplace",
    description="Поездки, эскроу, кошельки и уведомления маркетплейса такси.",
    version=settings.system.VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

for router in ROUTERS:
    app.include_router(router, prefix="/api/v1")


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    code, error_code = error_status(exc)
    if code >= 500:
        await log_error(f"{request.method} {request.url.path}: {exc}")
    body = ErrorResponse(error_code=error_code, message=str(exc))
    return JSONResponse(status_code=code, content=body.model_dump())


# === HEALTH CHECK ===

@app.get("/health", response_model=HealthStatus, tags=["Health"])
async def health_check() -> HealthStatus:
    """Проверка здоровья сервиса и его подключений."""
    dependencies: dict[str, str] = {"storage": settings.storage.STORAGE_BACKEND}

    db = get_db()
    if db is not None:
        dependencies["postgres"] = "ok" if await db.health_check() else "down"

    event_bus = get_event_bus()
    if event_bus is not None:
        dependencies["rabbitmq"] = "ok" if await event_bus.health_check() else "down"

    degraded = any(value == "down" for value in dependencies.values())
    return HealthStatus(
        status="degraded" if degraded else "healthy",
        service=SERVICE_NAME,
        version=settings.system.VERSION,
        dependencies=dependencies,
    )

# src/services/marketplace/dependencies.py
"""
Dependency Injection для сервиса маркетплейса.

Сервисы создаются один раз при старте приложения. Хранилища выбираются
по storage.STORAGE_BACKEND: memory или postgres (нужен подключённый db).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from src.common.constants import TypeMsg
from src.common.logger import log_info
from src.core.billing.payouts import PayoutService
from src.core.billing.repository import InMemoryPayoutRepository, PayoutRepository
from src.core.billing.service import SettlementEngine
from src.core.notifications.repository import (
    InMemoryNotificationRepository,
    InMemoryUserDirectory,
    NotificationRepository,
    UserDirectoryRepository,
)
from src.core.notifications.service import NotificationService
from src.core.trips.active import ActiveTripRegistry
from src.core.trips.repository import InMemoryTripRepository, TripRepository
from src.core.trips.service import TripLifecycleService
from src.core.wallets.repository import InMemoryWalletRepository, WalletRepository
from src.core.wallets.service import WalletLedger

if TYPE_CHECKING:
    from src.config.loader import Settings
    from src.infra.database import DatabaseManager
    from src.infra.event_bus import EventBus


@dataclass
class Services:
    """Собранные сервисы приложения."""
    ledger: WalletLedger
    settlement: SettlementEngine
    notifications: NotificationService
    directory: InMemoryUserDirectory | UserDirectoryRepository
    payouts: PayoutService
    trips: TripLifecycleService
    active_trips: ActiveTripRegistry


_services: Optional[Services] = None
_db: "DatabaseManager | None" = None
_event_bus: "EventBus | None" = None


def build_services(
    config: "Settings",
    db: "DatabaseManager | None" = None,
    event_bus: "EventBus | None" = None,
) -> Services:
    """
    Собирает граф сервисов.

    Args:
        config: Настройки приложения
        db: Менеджер БД (обязателен для postgres)
        event_bus: Шина событий (необязательна)
    """
    currency = config.billing.CURRENCY

    if config.storage.STORAGE_BACKEND == "postgres":
        if db is None:
            raise RuntimeError("Для хранилища postgres нужен подключённый DatabaseManager")
        wallet_store = WalletRepository(db, currency=currency)
        trip_store = TripRepository(db)
        notification_store = NotificationRepository(db)
        directory = UserDirectoryRepository(db)
        payout_store = PayoutRepository(db)
    else:
        wallet_store = InMemoryWalletRepository(currency=currency)
        trip_store = InMemoryTripRepository()
        notification_store = InMemoryNotificationRepository()
        directory = InMemoryUserDirectory()
        payout_store = InMemoryPayoutRepository()

    ledger = WalletLedger(wallet_store, platform_wallet_id=config.billing.PLATFORM_WALLET_ID)
    settlement = SettlementEngine(
        ledger,
        event_bus=event_bus,
        commission_rate=config.billing.PLATFORM_COMMISSION_RATE,
    )
    notifications = NotificationService(
        notification_store,
        directory=directory,
        send_timeout=config.notifications.NOTIFICATION_SEND_TIMEOUT,
        language=config.domain.DEFAULT_LANGUAGE,
        currency=currency,
    )
    payouts = PayoutService(
        ledger,
        payout_store,
        notifications,
        event_bus=event_bus,
        review_threshold=config.billing.PAYOUT_REVIEW_THRESHOLD,
        currency=currency,
    )
    active_trips = ActiveTripRegistry(eviction_delay=config.trips.ACTIVE_TRIP_EVICTION_DELAY)
    trips = TripLifecycleService(
        trip_store,
        settlement,
        notifications,
        active_trips,
        event_bus=event_bus,
        currency=currency,
    )

    return Services(
        ledger=ledger,
        settlement=settlement,
        notifications=notifications,
        directory=directory,
        payouts=payouts,
        trips=trips,
        active_trips=active_trips,
    )


async def init_dependencies(
    config: "Settings",
    db: "DatabaseManager | None" = None,
    event_bus: "EventBus | None" = None,
) -> Services:
    """Инициализировать зависимости при старте приложения."""
    global _services, _db, _event_bus
    _db = db
    _event_bus = event_bus
    _services = build_services(config, db, event_bus)
    await _services.ledger.ensure_platform_wallet()
    await log_info(
        f"Сервисы маркетплейса собраны (хранилище: {config.storage.STORAGE_BACKEND})",
        type_msg=TypeMsg.INFO,
    )
    return _services


def get_services() -> Services:
    if _services is None:
        raise RuntimeError("Сервисы не инициализированы. Вызовите init_dependencies()")
    return _services


def get_db() -> "DatabaseManager | None":
    return _db


def get_event_bus() -> "EventBus | None":
    return _event_bus


def get_ledger() -> WalletLedger:
    return get_services().ledger


def get_trip_service() -> TripLifecycleService:
    return get_services().trips


def get_payout_service() -> PayoutService:
    return get_services().payouts


def get_notification_service() -> NotificationService:
    return get_services().notifications


def get_user_directory() -> InMemoryUserDirectory | UserDirectoryRepository:
    return get_services().directory


async def cleanup_dependencies() -> None:
    """Остановить таймеры и сбросить сервисы при остановке приложения."""
    global _services, _db, _event_bus
    if _services is not None:
        await _services.active_trips.shutdown()
    _services = None
    _db = None
    _event_bus = None

# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("RABBITMQ_ENABLED", "false")

from src.common.constants import OwnerType
from src.core.billing.payouts import PayoutService
from src.core.billing.repository import InMemoryPayoutRepository
from src.core.billing.service import SettlementEngine
from src.core.notifications.repository import InMemoryNotificationRepository, InMemoryUserDirectory
from src.core.notifications.service import NotificationService
from src.core.trips.active import ActiveTripRegistry
from src.core.trips.models import DriverInfo
from src.core.trips.repository import InMemoryTripRepository
from src.core.trips.service import TripLifecycleService
from src.core.wallets.repository import InMemoryWalletRepository
from src.core.wallets.service import WalletLedger


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture(scope="session")
def lang_dict_path(project_root: Path) -> Path:
    """Путь к файлу локализации."""
    return project_root / "config" / "lang_dict.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "PROJECT_NAME": "ziba_test",
        "VERSION": "1.0.0-test",
        "DEBUG": False,
        "ENVIRONMENT": "test",
        "MARKETPLACE_HOST": "127.0.0.1",
        "MARKETPLACE_PORT": 9000,
        "LOG_LEVEL": "INFO",
        "LOG_TO_FILE": False,
        "LOG_FILE_PATH": "logs/test.log",
        "LOG_FORMAT": "json",
        "LOG_MAX_BYTES": 1024,
        "DEFAULT_LANGUAGE": "en",
        "SUPPORTED_LANGUAGES": ["en", "ru"],
        "DB_HOST": "db.internal",
        "DB_PORT": 5433,
        "DB_NAME": "ziba_test",
        "DB_USER": "ziba",
        "DB_MIN_POOL_SIZE": 1,
        "DB_MAX_POOL_SIZE": 4,
        "RABBITMQ_ENABLED": False,
        "RABBITMQ_EXCHANGE": "ziba.test",
        "STORAGE_BACKEND": "memory",
        "PLATFORM_COMMISSION_RATE": 0.15,
        "CURRENCY": "NGN",
        "PLATFORM_WALLET_ID": "PLATFORM",
        "PAYOUT_REVIEW_THRESHOLD": 20000.0,
        "ACTIVE_TRIP_EVICTION_DELAY": 0.5,
        "NOTIFICATION_SEND_TIMEOUT": 2.0,
    }


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

@pytest.fixture
def mock_db() -> AsyncMock:
    """Мок менеджера базы данных."""
    db = AsyncMock()
    db.fetchrow = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value="INSERT 0 1")
    db.fetchval = AsyncMock(return_value=None)
    return db


@pytest.fixture
def mock_event_bus() -> AsyncMock:
    """Мок шины событий."""
    event_bus = AsyncMock()
    event_bus.publish = AsyncMock(return_value=None)
    event_bus.is_connected = True
    return event_bus


# =============================================================================
# ФИКСТУРЫ СЕРВИСОВ (хранилища в памяти)
# =============================================================================

@pytest.fixture
def wallet_store() -> InMemoryWalletRepository:
    return InMemoryWalletRepository(currency="NGN")


@pytest.fixture
def ledger(wallet_store: InMemoryWalletRepository) -> WalletLedger:
    return WalletLedger(wallet_store, platform_wallet_id="PLATFORM")


@pytest.fixture
def notification_store() -> InMemoryNotificationRepository:
    return InMemoryNotificationRepository()


@pytest.fixture
def directory() -> InMemoryUserDirectory:
    return InMemoryUserDirectory()


@pytest.fixture
def notifications(
    notification_store: InMemoryNotificationRepository,
    directory: InMemoryUserDirectory,
) -> NotificationService:
    return NotificationService(notification_store, directory=directory, send_timeout=1.0)


@pytest.fixture
def settlement(ledger: WalletLedger, mock_event_bus: AsyncMock) -> SettlementEngine:
    return SettlementEngine(ledger, event_bus=mock_event_bus, commission_rate=0.10)


@pytest.fixture
def trip_store() -> InMemoryTripRepository:
    return InMemoryTripRepository()


@pytest.fixture
def active_trips() -> ActiveTripRegistry:
    return ActiveTripRegistry(eviction_delay=0.05)


@pytest.fixture
def trip_service(
    trip_store: InMemoryTripRepository,
    settlement: SettlementEngine,
    notifications: NotificationService,
    active_trips: ActiveTripRegistry,
    mock_event_bus: AsyncMock,
) -> TripLifecycleService:
    return TripLifecycleService(
        trip_store,
        settlement,
        notifications,
        active_trips,
        event_bus=mock_event_bus,
    )


@pytest.fixture
def payout_service(
    ledger: WalletLedger,
    notifications: NotificationService,
    mock_event_bus: AsyncMock,
) -> PayoutService:
    return PayoutService(
        ledger,
        InMemoryPayoutRepository(),
        notifications,
        event_bus=mock_event_bus,
        review_threshold=50000.0,
    )


@pytest.fixture
def driver() -> DriverInfo:
    """Пример водителя."""
    return DriverInfo(
        id="driver-1",
        name="Musa",
        vehicle_type="sedan",
        vehicle_plate="LAG-123-XY",
        rating=4.8,
        phone="+2348010000000",
    )


@pytest.fixture
async def funded_rider(ledger: WalletLedger) -> str:
    """Пассажир с балансом 5000."""
    await ledger.adjust_balance("rider-1", OwnerType.RIDER, 5000.0, "Top-up")
    return "rider-1"


# =============================================================================
# УТИЛИТЫ
# =============================================================================

@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Создаёт временный файл конфигурации."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2))
    return config_file

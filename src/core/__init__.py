# src/core/__init__.py
"""
Доменный слой (Core Domain).
Бизнес-логика маркетплейса; хранилища и шина передаются в сервисы извне.
"""

from src.core.wallets import WalletLedger
from src.core.trips import TripLifecycleService, TripStateMachine
from src.core.billing import PayoutService, SettlementEngine
from src.core.notifications import NotificationService

__all__ = [
    "WalletLedger",
    "TripLifecycleService",
    "TripStateMachine",
    "PayoutService",
    "SettlementEngine",
    "NotificationService",
]

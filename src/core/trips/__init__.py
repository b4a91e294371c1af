# src/core/trips/__init__.py
"""
Домен поездок: модели, граф переходов, сервис жизненного цикла.
"""

from src.core.trips.active import ActiveTripRegistry
from src.core.trips.models import DriverInfo, PaymentInfo, StatusHistoryEntry, Trip
from src.core.trips.repository import InMemoryTripRepository, TripRepository
from src.core.trips.service import TripLifecycleService, TripStatusView
from src.core.trips.state_machine import TripStateMachine

__all__ = [
    "ActiveTripRegistry",
    "DriverInfo",
    "PaymentInfo",
    "StatusHistoryEntry",
    "Trip",
    "InMemoryTripRepository",
    "TripRepository",
    "TripLifecycleService",
    "TripStatusView",
    "TripStateMachine",
]

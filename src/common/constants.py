# src/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class UserRole(str, Enum):
    """Роли участников маркетплейса."""
    RIDER = "rider"
    DRIVER = "driver"
    ADMIN = "admin"


class OwnerType(str, Enum):
    """Типы владельцев кошельков."""
    RIDER = "rider"
    DRIVER = "driver"
    PLATFORM = "platform"


class TripStatus(str, Enum):
    """Статусы поездки."""
    REQUESTED = "REQUESTED"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PayoutStatus(str, Enum):
    """Статусы выплаты водителю."""
    HELD = "HELD"
    SENT = "SENT"
    REJECTED = "REJECTED"


class PaymentMethod(str, Enum):
    """Способы оплаты."""
    WALLET = "wallet"
    CASH = "cash"
    CARD = "card"


class ActorRole(str, Enum):
    """Инициаторы переходов поездки."""
    RIDER = "rider"
    DRIVER = "driver"
    ADMIN = "admin"
    SYSTEM = "system"

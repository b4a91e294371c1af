# src/common/exceptions.py
"""
Доменные исключения маркетплейса.
HTTP-слой сопоставляет их с кодами ответа.
"""

from __future__ import annotations


class MarketplaceError(Exception):
    """Базовое исключение маркетплейса."""


class NotFoundError(MarketplaceError):
    """Сущность не найдена."""


class TripNotFoundError(NotFoundError):
    """Поездка не найдена."""

    def __init__(self, trip_id: str) -> None:
        self.trip_id = trip_id
        super().__init__(f"Trip {trip_id} not found")


class PayoutNotFoundError(NotFoundError):
    """Выплата не найдена."""

    def __init__(self, payout_id: str) -> None:
        self.payout_id = payout_id
        super().__init__(f"Payout {payout_id} not found")


class InvalidTransitionError(MarketplaceError):
    """Недопустимый переход состояния (поездки или выплаты)."""

    def __init__(self, entity_id: str, current: str, target: str) -> None:
        self.entity_id = entity_id
        self.current = current
        self.target = target
        super().__init__(f"Cannot move {entity_id} from {current} to {target}")


class ActiveTripExistsError(MarketplaceError):
    """У пассажира уже есть активная поездка."""

    def __init__(self, rider_id: str, trip_id: str) -> None:
        self.rider_id = rider_id
        self.trip_id = trip_id
        super().__init__(f"Rider {rider_id} already has active trip {trip_id}")


class InsufficientFundsError(MarketplaceError):
    """Недостаточно средств на кошельке для строгого списания."""

    def __init__(self, owner_id: str, required: float, available: float) -> None:
        self.owner_id = owner_id
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient funds for {owner_id}: required {required:.2f}, available {available:.2f}"
        )


class DuplicateReferenceError(MarketplaceError):
    """Пакет проводок с такой ссылкой уже применён."""

    def __init__(self, reference: str) -> None:
        self.reference = reference
        super().__init__(f"Ledger reference {reference} already applied")


class SettlementError(MarketplaceError):
    """Расчёт по поездке не выполнен; переход состояния отменяется."""


class TransitionNotPermittedError(MarketplaceError):
    """Роль инициатора не может выполнить этот переход."""

    def __init__(self, role: str, target: str) -> None:
        self.role = role
        self.target = target
        super().__init__(f"Role '{role}' cannot perform transition to '{target}'")


class NotificationNotStoredError(MarketplaceError):
    """Уведомление не удалось сохранить в хранилище."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"Notification for {user_id} was not stored")

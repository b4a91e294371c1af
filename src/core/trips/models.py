# src/core/trips/models.py
"""
Модели данных поездок.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.common.constants import ActorRole, PaymentMethod, TripStatus


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DriverInfo(BaseModel):
    """Водитель, назначенный на поездку."""

    id: str = Field(..., description="ID водителя")
    name: str = Field(..., min_length=1, description="Имя водителя")
    vehicle_type: str = Field(..., description="Класс автомобиля")
    vehicle_plate: str = Field(..., description="Госномер")
    rating: float = Field(5.0, ge=0.0, le=5.0, description="Рейтинг")
    phone: Optional[str] = Field(None, description="Телефон")


class PaymentInfo(BaseModel):
    """Состояние оплаты поездки."""

    fare: float = Field(..., ge=0.0, description="Стоимость поездки")
    rider_paid: bool = Field(False, description="Пассажир оплатил")
    driver_paid: bool = Field(False, description="Водителю начислено")
    platform_commission: float = Field(0.0, ge=0.0, description="Комиссия платформы")
    escrow_held: bool = Field(False, description="Средства удерживаются в эскроу")

    @model_validator(mode="after")
    def check_release_before_payout(self) -> "PaymentInfo":
        """Водителю нельзя начислить, пока средства в эскроу."""
        if self.driver_paid and self.escrow_held:
            raise ValueError("driver_paid requires escrow to be released")
        return self


class StatusHistoryEntry(BaseModel):
    """Запись истории статусов."""

    status: TripStatus
    timestamp: datetime = Field(default_factory=utc_now)
    actor: ActorRole = ActorRole.SYSTEM


class Trip(BaseModel):
    """Модель поездки."""
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=lambda: str(uuid4()), description="UUID поездки")
    rider_id: str = Field(..., description="ID пассажира")

    # Маршрут
    pickup: str = Field(..., min_length=1, description="Место посадки")
    dropoff: str = Field(..., min_length=1, description="Место назначения")
    pickup_lat: Optional[float] = Field(None, ge=-90, le=90)
    pickup_lng: Optional[float] = Field(None, ge=-180, le=180)
    distance_km: float = Field(0.0, ge=0.0, description="Расстояние в км")
    duration_min: float = Field(0.0, ge=0.0, description="Длительность в минутах")

    # Оплата
    fare: float = Field(..., ge=0.0, description="Стоимость")
    currency: str = Field("NGN", description="Валюта")
    payment_method: PaymentMethod = Field(PaymentMethod.WALLET, description="Способ оплаты")
    payment: PaymentInfo

    # Статус
    status: TripStatus = Field(TripStatus.REQUESTED, description="Статус поездки")
    driver: Optional[DriverInfo] = None
    status_history: list[StatusHistoryEntry] = Field(default_factory=list)
    cancellation_reason: Optional[str] = None

    # Временные метки
    created_at: datetime = Field(default_factory=utc_now)
    confirmed_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        """Завершена или отменена (дальнейшие изменения запрещены)."""
        return self.status in (TripStatus.COMPLETED, TripStatus.CANCELLED)

    @property
    def is_active(self) -> bool:
        return not self.is_terminal

    def with_status(self, status: TripStatus, actor: ActorRole, **changes) -> "Trip":
        """Копия поездки в новом статусе с записью в истории."""
        now = utc_now()
        history = [*self.status_history, StatusHistoryEntry(status=status, timestamp=now, actor=actor)]
        return self.model_copy(update={"status": status, "status_history": history, **changes})

# src/services/marketplace/schemas.py
"""
Модели запросов и ответов HTTP API маркетплейса.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.common.constants import ActorRole, PaymentMethod, TripStatus, UserRole
from src.core.notifications.models import AnnouncementAudience, NotificationType
from src.core.trips.models import DriverInfo, StatusHistoryEntry


class ErrorResponse(BaseModel):
    """Стандартный ответ с ошибкой."""

    error_code: str
    message: str
    details: dict[str, Any] | None = None


class HealthStatus(BaseModel):
    """Статус здоровья сервиса."""

    service: str
    status: str = "healthy"  # healthy, degraded
    version: str | None = None
    dependencies: dict[str, str] = Field(default_factory=dict)


# =============================================================================
# ПОЕЗДКИ
# =============================================================================

class TripCreateRequest(BaseModel):
    """Заказ поездки. Стоимость рассчитана вне сервиса."""

    rider_id: str = Field(..., min_length=1)
    pickup: str = Field(..., min_length=1)
    dropoff: str = Field(..., min_length=1)
    fare: float = Field(..., ge=0)
    distance_km: float = Field(0.0, ge=0)
    duration_min: float = Field(0.0, ge=0)
    pickup_lat: Optional[float] = Field(None, ge=-90, le=90)
    pickup_lng: Optional[float] = Field(None, ge=-180, le=180)
    payment_method: PaymentMethod = PaymentMethod.WALLET


class ActorRequest(BaseModel):
    """Инициатор перехода."""

    actor: Optional[ActorRole] = None


class AssignDriverRequest(ActorRequest):
    driver: DriverInfo


class CancelTripRequest(ActorRequest):
    reason: Optional[str] = Field(None, max_length=500)


class TripStatusResponse(BaseModel):
    trip_id: str
    status: TripStatus
    is_terminal: bool
    can_cancel: bool
    next_statuses: list[TripStatus]
    history: list[StatusHistoryEntry]


# =============================================================================
# КОШЕЛЬКИ И ВЫПЛАТЫ
# =============================================================================

class AdjustBalanceRequest(BaseModel):
    """Корректировка баланса администратором (пополнение или списание)."""

    delta: float = Field(..., description="Положительное - пополнение, отрицательное - списание")
    description: Optional[str] = Field(None, max_length=500)
    notify: bool = True


class AdjustBalanceResponse(BaseModel):
    owner_id: str
    balance: float


class AffordabilityResponse(BaseModel):
    rider_id: str
    amount: float
    can_afford: bool


class PayoutCreateRequest(BaseModel):
    driver_id: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    hold_for_review: Optional[bool] = None
    reason: Optional[str] = Field(None, max_length=500)


class PayoutRejectRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


# =============================================================================
# УВЕДОМЛЕНИЯ
# =============================================================================

class NotificationCreateRequest(BaseModel):
    """Одиночное уведомление."""

    user_id: str = Field(..., min_length=1)
    role: UserRole
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=2000)
    type: NotificationType = NotificationType.SYSTEM
    metadata: Optional[dict[str, Any]] = None


class AnnouncementRequest(BaseModel):
    """Объявление администратора; поля в camelCase, как у клиентов API."""
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=2000)
    target_audience: AnnouncementAudience = Field(AnnouncementAudience.ALL, alias="targetAudience")
    admin_id: str = Field(..., min_length=1, alias="adminId")


class AnnouncementResponse(BaseModel):
    count: int
    failed: int = 0


class UserRegistrationRequest(BaseModel):
    """Запись в справочнике активных пользователей."""

    user_id: str = Field(..., min_length=1)
    role: UserRole
    active: bool = True


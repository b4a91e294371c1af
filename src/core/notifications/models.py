# src/core/notifications/models.py
"""
Модели уведомлений и результатов рассылки.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from src.common.constants import UserRole


class NotificationType(str, Enum):
    """Типы уведомлений."""
    RIDE_REQUESTED = "RIDE_REQUESTED"
    RIDE_ASSIGNED = "RIDE_ASSIGNED"
    DRIVER_ASSIGNED = "DRIVER_ASSIGNED"
    TRIP_STARTED = "TRIP_STARTED"
    TRIP_COMPLETED = "TRIP_COMPLETED"
    TRIP_CANCELLED = "TRIP_CANCELLED"
    RIDE_COMPLETED = "RIDE_COMPLETED"
    PAYMENT_HELD = "PAYMENT_HELD"
    PAYMENT_RELEASED = "PAYMENT_RELEASED"
    PAYOUT_SENT = "PAYOUT_SENT"
    RATING_RECEIVED = "RATING_RECEIVED"
    REPORT_STATUS = "REPORT_STATUS"
    WALLET_UPDATED = "WALLET_UPDATED"
    STATUS_CHANGE = "STATUS_CHANGE"
    ADMIN_ANNOUNCEMENT = "ADMIN_ANNOUNCEMENT"
    SYSTEM = "SYSTEM"


class AnnouncementAudience(str, Enum):
    """Аудитория объявления администратора."""
    ALL = "all"
    RIDERS = "riders"
    DRIVERS = "drivers"

    @property
    def roles(self) -> list[UserRole]:
        if self == AnnouncementAudience.RIDERS:
            return [UserRole.RIDER]
        if self == AnnouncementAudience.DRIVERS:
            return [UserRole.DRIVER]
        return [UserRole.RIDER, UserRole.DRIVER]


class Notification(BaseModel):
    """Уведомление (создаётся один раз и не изменяется)."""
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str = Field(..., description="Получатель")
    role: UserRole = Field(..., description="Роль получателя")
    title: str
    message: str
    type: NotificationType
    metadata: Optional[dict[str, Any]] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Announcement(BaseModel):
    """Объявление администратора для группы пользователей."""

    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=2000)
    target_audience: AnnouncementAudience = AnnouncementAudience.ALL
    admin_id: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class Recipient:
    """Адресат одной отправки в составе рассылки."""
    user_id: str
    role: UserRole
    title: str
    message: str
    metadata: Optional[dict[str, Any]] = None


@dataclass
class FailedDelivery:
    """Неудачная отправка."""
    user_id: str
    role: UserRole
    error: str


@dataclass
class FanOutResult:
    """Итог рассылки: успешные уведомления и отказы."""
    delivered: list[Notification] = field(default_factory=list)
    failed: list[FailedDelivery] = field(default_factory=list)

    @property
    def delivered_count(self) -> int:
        return len(self.delivered)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def is_degraded(self) -> bool:
        """Хотя бы одна отправка не удалась."""
        return bool(self.failed)

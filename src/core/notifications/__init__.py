# src/core/notifications/__init__.py
"""
Домен уведомлений.
"""

from src.core.notifications.models import (
    AnnouncementAudience,
    FanOutResult,
    Notification,
    NotificationType,
)
from src.core.notifications.repository import (
    InMemoryNotificationRepository,
    InMemoryUserDirectory,
    NotificationRepository,
    UserDirectoryRepository,
)
from src.core.notifications.service import NotificationService

__all__ = [
    "AnnouncementAudience",
    "FanOutResult",
    "Notification",
    "NotificationType",
    "InMemoryNotificationRepository",
    "InMemoryUserDirectory",
    "NotificationRepository",
    "UserDirectoryRepository",
    "NotificationService",
]

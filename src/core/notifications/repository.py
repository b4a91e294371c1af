# src/core/notifications/repository.py
"""
Хранилища уведомлений и справочник активных пользователей.
"""

from __future__ import annotations

import json

from asyncpg import Record

from src.common.constants import UserRole
from src.core.notifications.models import Notification, NotificationType
from src.infra.database import DatabaseManager


class InMemoryNotificationRepository:
    """Уведомления в памяти процесса."""

    def __init__(self) -> None:
        self._items: list[Notification] = []

    async def add(self, notification: Notification) -> Notification:
        self._items.append(notification)
        return notification

    async def list_for_user(self, user_id: str, limit: int = 50) -> list[Notification]:
        """Уведомления пользователя, новые первыми."""
        found = [n for n in reversed(self._items) if n.user_id == user_id]
        return found[:limit]

    async def count(self) -> int:
        return len(self._items)


class NotificationRepository:
    """Уведомления в PostgreSQL."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def add(self, notification: Notification) -> Notification:
        await self._db.execute(
            """
            INSERT INTO notifications (id, user_id, role, title, message, type, metadata, created_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8)
            """,
            notification.id,
            notification.user_id,
            notification.role.value,
            notification.title,
            notification.message,
            notification.type.value,
            json.dumps(notification.metadata, default=str) if notification.metadata is not None else None,
            notification.created_at,
        )
        return notification

    async def list_for_user(self, user_id: str, limit: int = 50) -> list[Notification]:
        rows = await self._db.fetch(
            """
            SELECT id, user_id, role, title, message, type, metadata, created_at
            FROM notifications
            WHERE user_id = $1
            ORDER BY created_at DESC
            LIMIT $2
            """,
            user_id,
            limit,
        )
        return [self._row_to_notification(row) for row in rows]

    async def count(self) -> int:
        return await self._db.fetchval("SELECT COUNT(*) FROM notifications")

    @staticmethod
    def _row_to_notification(row: Record) -> Notification:
        metadata = row["metadata"]
        if isinstance(metadata, str):
            metadata = json.loads(metadata)
        return Notification(
            id=str(row["id"]),
            user_id=row["user_id"],
            role=UserRole(row["role"]),
            title=row["title"],
            message=row["message"],
            type=NotificationType(row["type"]),
            metadata=metadata,
            created_at=row["created_at"],
        )


# =============================================================================
# СПРАВОЧНИК ПОЛЬЗОВАТЕЛЕЙ
# =============================================================================

class InMemoryUserDirectory:
    """Активные пассажиры и водители (для объявлений)."""

    def __init__(self) -> None:
        self._users: dict[tuple[UserRole, str], bool] = {}

    async def register(self, user_id: str, role: UserRole, active: bool = True) -> None:
        self._users[(role, user_id)] = active

    async def list_active_user_ids(self, role: UserRole) -> list[str]:
        return [user_id for (r, user_id), active in self._users.items() if r == role and active]


class UserDirectoryRepository:
    """Справочник в PostgreSQL: пассажиры в users, водители в drivers."""

    _TABLES = {
        UserRole.RIDER: "users",
        UserRole.DRIVER: "drivers",
    }

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    def _table(self, role: UserRole) -> str:
        table = self._TABLES.get(role)
        if table is None:
            raise ValueError(f"Роль {role.value} не хранится в справочнике")
        return table

    async def register(self, user_id: str, role: UserRole, active: bool = True) -> None:
        await self._db.execute(
            f"""
            INSERT INTO {self._table(role)} (id, status)
            VALUES ($1, $2)
            ON CONFLICT (id) DO UPDATE SET status = EXCLUDED.status
            """,
            user_id,
            "ACTIVE" if active else "SUSPENDED",
        )

    async def list_active_user_ids(self, role: UserRole) -> list[str]:
        rows = await self._db.fetch(
            f"SELECT id FROM {self._table(role)} WHERE status = 'ACTIVE' ORDER BY id",
        )
        return [row["id"] for row in rows]

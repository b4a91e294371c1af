# src/core/notifications/service.py
"""
Сервис уведомлений.

Создаёт записи уведомлений для всех затронутых участников. Составные
операции отправляют независимые уведомления параллельно и ждут все;
отказ одной отправки не влияет на остальные и попадает в FanOutResult.
Доставка до устройств (push, SMS) вне этого сервиса.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Protocol

from src.common.constants import TypeMsg, UserRole
from src.common.localization import format_amount, get_text
from src.common.logger import log_error, log_info, log_warning
from src.core.notifications.models import (
    Announcement,
    AnnouncementAudience,
    FailedDelivery,
    FanOutResult,
    Notification,
    NotificationType,
    Recipient,
)


class NotificationStore(Protocol):
    async def add(self, notification: Notification) -> Notification: ...

    async def list_for_user(self, user_id: str, limit: int = 50) -> list[Notification]: ...


class UserDirectory(Protocol):
    async def list_active_user_ids(self, role: UserRole) -> list[str]: ...


REPORT_STATUS_KEYS = {
    "REVIEWED": "REPORT_STATUS_REVIEWED",
    "ACTION_TAKEN": "REPORT_STATUS_ACTION_TAKEN",
    "DISMISSED": "REPORT_STATUS_DISMISSED",
}

ACCOUNT_STATUS_KEYS = {
    "ACTIVE": "STATUS_CHANGE_ACTIVE",
    "SUSPENDED": "STATUS_CHANGE_SUSPENDED",
    "APPROVED": "STATUS_CHANGE_APPROVED",
    "REJECTED": "STATUS_CHANGE_REJECTED",
}


class NotificationService:
    """
    Сервис уведомлений.

    Реализует:
    - Создание одиночного уведомления (ошибка логируется, не пробрасывается)
    - Параллельную рассылку с отчётом о частичных отказах
    - Уведомления по событиям поездки, эскроу и выплат
    - Объявления администратора для групп пользователей
    """

    def __init__(
        self,
        store: NotificationStore,
        directory: Optional[UserDirectory] = None,
        send_timeout: float = 5.0,
        language: str = "en",
        currency: str = "NGN",
    ) -> None:
        """
        Args:
            store: Хранилище уведомлений
            directory: Справочник активных пользователей (для объявлений)
            send_timeout: Ограничение времени одной отправки (секунды)
            language: Язык текстов
            currency: Валюта по умолчанию
        """
        self._store = store
        self._directory = directory
        self._send_timeout = send_timeout
        self._language = language
        self._currency = currency

    def _text(self, key: str, **kwargs: Any) -> str:
        return get_text(key, self._language, **kwargs)

    def _amount(self, amount: float, currency: Optional[str]) -> str:
        return format_amount(amount, currency or self._currency)

    # =========================================================================
    # БАЗОВЫЕ ОПЕРАЦИИ
    # =========================================================================

    async def _deliver(self, recipient: Recipient, notification_type: NotificationType) -> Notification:
        notification = Notification(
            user_id=recipient.user_id,
            role=recipient.role,
            title=recipient.title,
            message=recipient.message,
            type=notification_type,
            metadata=recipient.metadata,
        )
        await asyncio.wait_for(self._store.add(notification), timeout=self._send_timeout)
        await log_info(
            f"Уведомление {notification_type.value} создано для {recipient.role.value} {recipient.user_id}",
            type_msg=TypeMsg.DEBUG,
        )
        return notification

    async def create_notification(
        self,
        user_id: str,
        role: UserRole,
        title: str,
        message: str,
        notification_type: NotificationType,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[Notification]:
        """
        Создаёт одно уведомление.

        Returns:
            Уведомление или None, если создать не удалось
        """
        try:
            return await self._deliver(
                Recipient(user_id=user_id, role=role, title=title, message=message, metadata=metadata),
                notification_type,
            )
        except Exception as e:
            await log_error(f"Не удалось создать уведомление {notification_type.value} для {user_id}: {e!r}")
            return None

    async def fan_out(self, notification_type: NotificationType, recipients: list[Recipient]) -> FanOutResult:
        """
        Параллельно создаёт уведомления для всех адресатов и ждёт все отправки.

        Args:
            notification_type: Тип уведомлений
            recipients: Адресаты

        Returns:
            Успешные уведомления и отказы
        """
        outcomes = await asyncio.gather(
            *(self._deliver(recipient, notification_type) for recipient in recipients),
            return_exceptions=True,
        )

        result = FanOutResult()
        for recipient, outcome in zip(recipients, outcomes):
            if isinstance(outcome, BaseException):
                error = "timeout" if isinstance(outcome, asyncio.TimeoutError) else repr(outcome)
                result.failed.append(FailedDelivery(user_id=recipient.user_id, role=recipient.role, error=error))
            else:
                result.delivered.append(outcome)

        if result.is_degraded:
            await log_warning(
                f"Рассылка {notification_type.value}: доставлено {result.delivered_count}, "
                f"отказов {result.failed_count}"
            )
        return result

    async def list_notifications(self, user_id: str, limit: int = 50) -> list[Notification]:
        """Уведомления пользователя, новые первыми."""
        return await self._store.list_for_user(user_id, limit)

    # =========================================================================
    # ПОЕЗДКИ
    # =========================================================================

    async def notify_ride_requested(
        self,
        rider_id: str,
        trip_id: str,
        pickup: str,
        dropoff: str,
        fare: float,
        currency: Optional[str] = None,
    ) -> FanOutResult:
        return await self.fan_out(NotificationType.RIDE_REQUESTED, [
            Recipient(
                user_id=rider_id,
                role=UserRole.RIDER,
                title=self._text("RIDE_REQUESTED_TITLE"),
                message=self._text(
                    "RIDE_REQUESTED_MESSAGE",
                    pickup=pickup,
                    dropoff=dropoff,
                    amount=self._amount(fare, currency),
                ),
                metadata={"tripId": trip_id, "fare": fare, "currency": currency or self._currency},
            ),
        ])

    async def notify_driver_assigned(
        self,
        rider_id: str,
        trip_id: str,
        driver_name: str,
        vehicle_plate: str,
    ) -> FanOutResult:
        """Пассажиру: кто и на какой машине едет."""
        return await self.fan_out(NotificationType.DRIVER_ASSIGNED, [
            Recipient(
                user_id=rider_id,
                role=UserRole.RIDER,
                title=self._text("DRIVER_ASSIGNED_TITLE"),
                message=self._text("DRIVER_ASSIGNED_MESSAGE", driver_name=driver_name, plate=vehicle_plate),
                metadata={"tripId": trip_id, "driverName": driver_name, "vehiclePlate": vehicle_plate},
            ),
        ])

    async def notify_trip_started(self, rider_id: str, driver_id: str, trip_id: str) -> FanOutResult:
        title = self._text("TRIP_STARTED_TITLE")
        metadata = {"tripId": trip_id}
        return await self.fan_out(NotificationType.TRIP_STARTED, [
            Recipient(rider_id, UserRole.RIDER, title, self._text("TRIP_STARTED_RIDER_MESSAGE"), metadata),
            Recipient(driver_id, UserRole.DRIVER, title, self._text("TRIP_STARTED_DRIVER_MESSAGE"), metadata),
        ])

    async def notify_trip_completed(
        self,
        rider_id: str,
        driver_id: str,
        trip_id: str,
        fare: float,
        currency: Optional[str] = None,
        driver_earnings: Optional[float] = None,
    ) -> FanOutResult:
        """
        Пассажиру и водителю о завершении поездки.

        Args:
            rider_id: ID пассажира
            driver_id: ID водителя
            trip_id: ID поездки
            fare: Стоимость поездки
            currency: Валюта
            driver_earnings: Доля водителя; если не задана, в тексте водителя стоимость поездки
        """
        currency = currency or self._currency
        title = self._text("TRIP_COMPLETED_TITLE")
        metadata = {"tripId": trip_id, "fare": fare, "currency": currency}
        earnings = fare if driver_earnings is None else driver_earnings
        return await self.fan_out(NotificationType.TRIP_COMPLETED, [
            Recipient(
                rider_id,
                UserRole.RIDER,
                title,
                self._text("TRIP_COMPLETED_RIDER_MESSAGE", amount=self._amount(fare, currency)),
                dict(metadata),
            ),
            Recipient(
                driver_id,
                UserRole.DRIVER,
                title,
                self._text("TRIP_COMPLETED_DRIVER_MESSAGE", amount=self._amount(earnings, currency)),
                dict(metadata),
            ),
        ])

    async def notify_trip_cancelled(
        self,
        rider_id: str,
        trip_id: str,
        pickup: str,
        dropoff: str,
        driver_id: Optional[str] = None,
        refunded_amount: Optional[float] = None,
        currency: Optional[str] = None,
    ) -> FanOutResult:
        """Пассажиру (с суммой возврата, если был) и назначенному водителю."""
        title = self._text("TRIP_CANCELLED_TITLE")
        metadata: dict[str, Any] = {"tripId": trip_id}
        if refunded_amount:
            metadata["refunded"] = refunded_amount
            rider_message = self._text(
                "TRIP_CANCELLED_REFUND_MESSAGE", amount=self._amount(refunded_amount, currency)
            )
        else:
            rider_message = self._text("TRIP_CANCELLED_MESSAGE", pickup=pickup, dropoff=dropoff)

        recipients = [Recipient(rider_id, UserRole.RIDER, title, rider_message, metadata)]
        if driver_id:
            recipients.append(Recipient(
                driver_id,
                UserRole.DRIVER,
                title,
                self._text("TRIP_CANCELLED_MESSAGE", pickup=pickup, dropoff=dropoff),
                {"tripId": trip_id},
            ))
        return await self.fan_out(NotificationType.TRIP_CANCELLED, recipients)

    # =========================================================================
    # ДЕНЬГИ
    # =========================================================================

    async def notify_payment_held(
        self,
        driver_id: str,
        amount: float,
        currency: Optional[str] = None,
        trip_id: Optional[str] = None,
        payout_id: Optional[str] = None,
    ) -> FanOutResult:
        currency = currency or self._currency
        metadata: dict[str, Any] = {"amount": amount, "currency": currency}
        if trip_id:
            metadata["tripId"] = trip_id
        if payout_id:
            metadata["payoutId"] = payout_id
        return await self.fan_out(NotificationType.PAYMENT_HELD, [
            Recipient(
                driver_id,
                UserRole.DRIVER,
                self._text("PAYMENT_HELD_TITLE"),
                self._text("PAYMENT_HELD_MESSAGE", amount=self._amount(amount, currency)),
                metadata,
            ),
        ])

    async def notify_payment_released(
        self,
        driver_id: str,
        trip_id: str,
        amount: float,
        currency: Optional[str] = None,
    ) -> FanOutResult:
        currency = currency or self._currency
        return await self.fan_out(NotificationType.PAYMENT_RELEASED, [
            Recipient(
                driver_id,
                UserRole.DRIVER,
                self._text("PAYMENT_RELEASED_TITLE"),
                self._text("PAYMENT_RELEASED_MESSAGE", amount=self._amount(amount, currency)),
                {"tripId": trip_id, "amount": amount, "currency": currency},
            ),
        ])

    async def notify_payout_sent(
        self,
        driver_id: str,
        amount: float,
        payout_id: str,
        currency: Optional[str] = None,
    ) -> FanOutResult:
        currency = currency or self._currency
        return await self.fan_out(NotificationType.PAYOUT_SENT, [
            Recipient(
                driver_id,
                UserRole.DRIVER,
                self._text("PAYOUT_SENT_TITLE"),
                self._text("PAYOUT_SENT_MESSAGE", amount=self._amount(amount, currency)),
                {"payoutId": payout_id, "amount": amount, "currency": currency},
            ),
        ])

    async def notify_wallet_update(
        self,
        user_id: str,
        role: UserRole,
        amount: float,
        is_credit: bool,
        currency: Optional[str] = None,
        description: Optional[str] = None,
    ) -> FanOutResult:
        """Пополнение или списание; description заменяет стандартный текст."""
        currency = currency or self._currency
        key = "WALLET_CREDITED_MESSAGE" if is_credit else "WALLET_DEBITED_MESSAGE"
        return await self.fan_out(NotificationType.WALLET_UPDATED, [
            Recipient(
                user_id,
                role,
                self._text("WALLET_UPDATED_TITLE"),
                description or self._text(key, amount=self._amount(amount, currency)),
                {
                    "amount": amount,
                    "currency": currency,
                    "transactionType": "credit" if is_credit else "debit",
                },
            ),
        ])

    # =========================================================================
    # ПРОЧЕЕ
    # =========================================================================

    async def notify_rating_received(
        self,
        user_id: str,
        role: UserRole,
        rating: int,
        trip_id: str,
    ) -> FanOutResult:
        return await self.fan_out(NotificationType.RATING_RECEIVED, [
            Recipient(
                user_id,
                role,
                self._text("RATING_RECEIVED_TITLE"),
                self._text("RATING_RECEIVED_MESSAGE", rating=rating),
                {"tripId": trip_id, "rating": rating},
            ),
        ])

    async def notify_report_status(
        self,
        user_id: str,
        role: UserRole,
        status: str,
        report_id: str,
    ) -> FanOutResult:
        key = REPORT_STATUS_KEYS.get(status, "REPORT_STATUS_DEFAULT")
        return await self.fan_out(NotificationType.REPORT_STATUS, [
            Recipient(
                user_id,
                role,
                self._text("REPORT_STATUS_TITLE"),
                self._text(key, status=status),
                {"reportId": report_id, "status": status},
            ),
        ])

    async def notify_status_change(
        self,
        user_id: str,
        role: UserRole,
        new_status: str,
        reason: Optional[str] = None,
    ) -> FanOutResult:
        key = ACCOUNT_STATUS_KEYS.get(new_status, "STATUS_CHANGE_DEFAULT")
        return await self.fan_out(NotificationType.STATUS_CHANGE, [
            Recipient(
                user_id,
                role,
                self._text("STATUS_CHANGE_TITLE"),
                reason or self._text(key, status=new_status),
                {"newStatus": new_status, "reason": reason},
            ),
        ])

    async def send_admin_announcement(
        self,
        title: str,
        message: str,
        target_audience: AnnouncementAudience,
        admin_id: str,
    ) -> FanOutResult:
        """
        Объявление всем активным пользователям выбранной аудитории.

        Args:
            title: Заголовок
            message: Текст
            target_audience: all, riders или drivers
            admin_id: Автор объявления

        Returns:
            Итог рассылки; delivered_count - число созданных уведомлений
        """
        if self._directory is None:
            raise RuntimeError("Справочник пользователей не подключён")

        announcement = Announcement(
            title=title,
            message=message,
            target_audience=target_audience,
            admin_id=admin_id,
        )
        metadata = {"adminId": admin_id, "targetAudience": announcement.target_audience.value}

        recipients: list[Recipient] = []
        for role in announcement.target_audience.roles:
            for user_id in await self._directory.list_active_user_ids(role):
                recipients.append(Recipient(user_id, role, announcement.title, announcement.message, dict(metadata)))

        result = await self.fan_out(NotificationType.ADMIN_ANNOUNCEMENT, recipients)
        await log_info(
            f"Объявление от {admin_id} ({announcement.target_audience.value}): "
            f"доставлено {result.delivered_count} из {len(recipients)}",
            type_msg=TypeMsg.INFO,
        )
        return result

# src/core/billing/payouts.py
"""
Выплаты водителям.

Крупные (или помеченные вручную) выплаты сначала удерживаются
на проверку: сумма уходит с баланса водителя в резерв. Администратор
затем отправляет выплату или отклоняет её с возвратом на баланс.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Protocol

from src.common.constants import OwnerType, PayoutStatus, TypeMsg, UserRole
from src.common.exceptions import InvalidTransitionError, PayoutNotFoundError, SettlementError
from src.common.locks import KeyedLock
from src.common.logger import log_error, log_info
from src.core.billing.models import Payout
from src.core.notifications.service import NotificationService
from src.core.wallets.models import LedgerEntryType, LedgerMove
from src.core.wallets.service import WalletLedger
from src.infra.event_bus import DomainEvent, EventBus, EventTypes


class PayoutStore(Protocol):
    async def get(self, payout_id: str) -> Optional[Payout]: ...

    async def save(self, payout: Payout) -> Payout: ...

    async def list_by_driver(self, driver_id: str) -> list[Payout]: ...


class PayoutService:
    """Запрос, отправка и отклонение выплат водителям."""

    def __init__(
        self,
        ledger: WalletLedger,
        store: PayoutStore,
        notifications: NotificationService,
        event_bus: Optional[EventBus] = None,
        review_threshold: float = 50000.0,
        currency: str = "NGN",
    ) -> None:
        """
        Args:
            ledger: Реестр кошельков
            store: Хранилище выплат
            notifications: Сервис уведомлений
            event_bus: Шина событий (необязательна)
            review_threshold: Выплаты от этой суммы удерживаются на проверку
            currency: Валюта выплат
        """
        self._ledger = ledger
        self._store = store
        self._notifications = notifications
        self._event_bus = event_bus
        self._review_threshold = review_threshold
        self._currency = currency
        self._locks = KeyedLock()

    async def _publish(self, event_type: str, payout: Payout) -> None:
        if self._event_bus is None:
            return
        try:
            await self._event_bus.publish(DomainEvent(
                event_type=event_type,
                payload={
                    "payout_id": payout.id,
                    "driver_id": payout.driver_id,
                    "amount": payout.amount,
                    "currency": payout.currency,
                    "status": payout.status.value,
                },
            ))
        except Exception as pub_error:
            await log_error(f"Не удалось опубликовать {event_type}: {pub_error}")

    async def _save_or_revert(self, payout: Payout, moves: list[LedgerMove], reference: str) -> Payout:
        """
        Записывает выплату. Если запись не удалась, применяет обратный
        пакет под ссылкой {reference}-REVERSAL и поднимает SettlementError.
        """
        try:
            return await self._store.save(payout)
        except Exception as e:
            await log_error(f"Не удалось записать выплату {payout.id}: {e!r}", exc_info=True)
            inverse = [move.inverted() for move in reversed(moves)]
            await self._ledger.apply_moves(inverse, f"{reference}-REVERSAL")
            raise SettlementError(f"Payout {payout.id} was not saved, funds movement reverted") from e

    def needs_review(self, amount: float) -> bool:
        return amount >= self._review_threshold

    async def get_payout(self, payout_id: str) -> Payout:
        payout = await self._store.get(payout_id)
        if payout is None:
            raise PayoutNotFoundError(payout_id)
        return payout

    async def list_payouts(self, driver_id: str) -> list[Payout]:
        return await self._store.list_by_driver(driver_id)

    async def request_payout(
        self,
        driver_id: str,
        amount: float,
        hold_for_review: Optional[bool] = None,
        reason: Optional[str] = None,
    ) -> Payout:
        """
        Создаёт выплату с баланса водителя.

        Args:
            driver_id: ID водителя
            amount: Сумма выплаты
            hold_for_review: Удержать на проверку; None - решить по порогу
            reason: Причина удержания

        Returns:
            Выплата в статусе HELD или SENT

        Raises:
            InsufficientFundsError: на балансе водителя не хватает
        """
        amount = round(amount, 2)
        if amount <= 0:
            raise ValueError("Сумма выплаты должна быть положительной")

        held = self.needs_review(amount) if hold_for_review is None else hold_for_review
        payout = Payout(
            driver_id=driver_id,
            amount=amount,
            currency=self._currency,
            status=PayoutStatus.HELD if held else PayoutStatus.SENT,
            reason=reason,
        )

        if held:
            move = LedgerMove(
                owner_id=driver_id,
                owner_type=OwnerType.DRIVER,
                entry_type=LedgerEntryType.HOLD,
                balance_delta=-amount,
                held_delta=amount,
                description=f"Payout {payout.id} held for review",
            )
            reference = f"PAYOUT-HOLD-{payout.id}"
            await self._ledger.apply_moves([move], reference)
        else:
            payout.resolved_at = payout.created_at
            move = LedgerMove(
                owner_id=driver_id,
                owner_type=OwnerType.DRIVER,
                entry_type=LedgerEntryType.PAYOUT,
                balance_delta=-amount,
                description=f"Payout {payout.id}",
            )
            reference = f"PAYOUT-{payout.id}"
            await self._ledger.apply_moves([move], reference)

        await self._save_or_revert(payout, [move], reference)
        await log_info(
            f"Выплата {payout.id} водителю {driver_id} на {amount:.2f}: {payout.status.value}",
            type_msg=TypeMsg.INFO,
        )

        if held:
            await self._notifications.notify_payment_held(driver_id, amount, self._currency, payout_id=payout.id)
            await self._publish(EventTypes.PAYOUT_HELD, payout)
        else:
            await self._notifications.notify_payout_sent(driver_id, amount, payout.id, self._currency)
            await self._publish(EventTypes.PAYOUT_SENT, payout)
        return payout

    async def release_payout(self, payout_id: str) -> Payout:
        """
        Отправляет удержанную выплату.

        Raises:
            PayoutNotFoundError: выплаты нет
            InvalidTransitionError: выплата уже отправлена или отклонена
        """
        async with self._locks.hold(payout_id):
            payout = await self.get_payout(payout_id)
            if payout.status != PayoutStatus.HELD:
                raise InvalidTransitionError(payout_id, payout.status.value, PayoutStatus.SENT.value)

            move = LedgerMove(
                owner_id=payout.driver_id,
                owner_type=OwnerType.DRIVER,
                entry_type=LedgerEntryType.PAYOUT,
                held_delta=-payout.amount,
                description=f"Payout {payout.id} released",
            )
            reference = f"PAYOUT-RELEASE-{payout.id}"
            await self._ledger.apply_moves([move], reference)

            payout = payout.model_copy(update={
                "status": PayoutStatus.SENT,
                "resolved_at": datetime.now(timezone.utc),
            })
            await self._save_or_revert(payout, [move], reference)

        await log_info(f"Выплата {payout.id} отправлена после проверки", type_msg=TypeMsg.INFO)
        await self._notifications.notify_payout_sent(payout.driver_id, payout.amount, payout.id, payout.currency)
        await self._publish(EventTypes.PAYOUT_SENT, payout)
        return payout

    async def reject_payout(self, payout_id: str, reason: Optional[str] = None) -> Payout:
        """
        Отклоняет удержанную выплату; сумма возвращается на баланс водителя.

        Raises:
            PayoutNotFoundError: выплаты нет
            InvalidTransitionError: выплата уже отправлена или отклонена
        """
        async with self._locks.hold(payout_id):
            payout = await self.get_payout(payout_id)
            if payout.status != PayoutStatus.HELD:
                raise InvalidTransitionError(payout_id, payout.status.value, PayoutStatus.REJECTED.value)

            move = LedgerMove(
                owner_id=payout.driver_id,
                owner_type=OwnerType.DRIVER,
                entry_type=LedgerEntryType.REFUND,
                balance_delta=payout.amount,
                held_delta=-payout.amount,
                description=f"Payout {payout.id} rejected",
            )
            reference = f"PAYOUT-REJECT-{payout.id}"
            await self._ledger.apply_moves([move], reference)

            payout = payout.model_copy(update={
                "status": PayoutStatus.REJECTED,
                "reason": reason or payout.reason,
                "resolved_at": datetime.now(timezone.utc),
            })
            await self._save_or_revert(payout, [move], reference)

        await log_info(f"Выплата {payout.id} отклонена: {reason}", type_msg=TypeMsg.INFO)
        await self._notifications.notify_wallet_update(
            payout.driver_id,
            UserRole.DRIVER,
            payout.amount,
            is_credit=True,
            currency=payout.currency,
        )
        await self._publish(EventTypes.PAYOUT_REJECTED, payout)
        return payout

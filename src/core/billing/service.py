# src/core/billing/service.py
"""
Эскроу и расчёты по поездкам.

Стоимость поездки удерживается на кошельке пассажира при подтверждении,
при завершении делится между водителем и платформой, при отмене
возвращается пассажиру. Каждая операция - один атомарный пакет
в реестре кошельков со своей ссылкой, поэтому повторный расчёт
одной и той же поездки невозможен.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from src.common.constants import OwnerType, TypeMsg
from src.common.exceptions import (
    DuplicateReferenceError,
    InsufficientFundsError,
    SettlementError,
)
from src.common.logger import log_error, log_info
from src.core.trips.models import PaymentInfo, Trip
from src.core.wallets.models import LedgerEntryType, LedgerMove
from src.core.wallets.service import WalletLedger
from src.infra.event_bus import DomainEvent, EventBus, EventTypes


@dataclass
class FareSplit:
    """Разделение стоимости поездки."""
    fare: float
    commission: float
    driver_share: float


@dataclass
class SettlementResult:
    """Результат операции эскроу."""
    trip_id: str
    reference: str
    payment: PaymentInfo
    split: FareSplit
    moves: list[LedgerMove] = field(default_factory=list)


class SettlementEngine:
    """
    Движок расчётов.

    Реализует:
    - Расчёт комиссии платформы и доли водителя
    - Удержание стоимости в эскроу
    - Расчёт завершённой поездки
    - Возврат при отмене
    - Компенсацию уже применённого пакета
    """

    def __init__(
        self,
        ledger: WalletLedger,
        event_bus: Optional[EventBus] = None,
        commission_rate: float = 0.10,
    ) -> None:
        """
        Args:
            ledger: Реестр кошельков
            event_bus: Шина событий (необязательна)
            commission_rate: Доля платформы (0.10 = 10%)
        """
        self._ledger = ledger
        self._event_bus = event_bus
        self._commission_rate = commission_rate

    @property
    def commission_rate(self) -> float:
        return self._commission_rate

    def calculate_split(self, fare: float) -> FareSplit:
        """
        Комиссия округляется до копеек, водитель получает остаток,
        так что commission + driver_share == fare.
        """
        fare = round(fare, 2)
        commission = round(fare * self._commission_rate, 2)
        return FareSplit(fare=fare, commission=commission, driver_share=round(fare - commission, 2))

    def initial_payment(self, fare: float) -> PaymentInfo:
        """Состояние оплаты новой поездки: ничего не удержано и не оплачено."""
        return PaymentInfo(fare=round(fare, 2), platform_commission=self.calculate_split(fare).commission)

    async def _publish(self, event_type: str, payload: dict) -> None:
        if self._event_bus is None:
            return
        try:
            await self._event_bus.publish(DomainEvent(event_type=event_type, payload=payload))
        except Exception as pub_error:
            await log_error(f"Не удалось опубликовать {event_type}: {pub_error}")

    async def _apply(self, moves: list[LedgerMove], reference: str, trip_id: str) -> None:
        """Пакет в реестре; неожиданные ошибки превращаются в SettlementError."""
        try:
            await self._ledger.apply_moves(moves, reference, trip_id=trip_id)
        except (InsufficientFundsError, DuplicateReferenceError):
            raise
        except Exception as e:
            await log_error(f"Сбой реестра при пакете {reference}: {e!r}", exc_info=True)
            raise SettlementError(f"Ledger failure for {reference}") from e

    # =========================================================================
    # ОПЕРАЦИИ ЭСКРОУ
    # =========================================================================

    async def hold_fare(self, trip: Trip) -> SettlementResult:
        """
        Переносит стоимость с баланса пассажира в резерв.

        Raises:
            InsufficientFundsError: на балансе меньше стоимости (ничего не изменено)
        """
        split = self.calculate_split(trip.fare)
        reference = f"HOLD-{trip.id}"
        moves = [
            LedgerMove(
                owner_id=trip.rider_id,
                owner_type=OwnerType.RIDER,
                entry_type=LedgerEntryType.HOLD,
                balance_delta=-split.fare,
                held_delta=split.fare,
                description=f"Escrow hold for trip {trip.id}",
            ),
        ]
        await self._apply(moves, reference, trip.id)

        payment = PaymentInfo(
            fare=split.fare,
            rider_paid=False,
            driver_paid=False,
            platform_commission=split.commission,
            escrow_held=True,
        )
        await log_info(f"Поездка {trip.id}: удержано {split.fare:.2f} у пассажира {trip.rider_id}", type_msg=TypeMsg.INFO)
        await self._publish(EventTypes.PAYMENT_HELD, {
            "trip_id": trip.id,
            "rider_id": trip.rider_id,
            "amount": split.fare,
            "currency": trip.currency,
        })
        return SettlementResult(trip_id=trip.id, reference=reference, payment=payment, split=split, moves=moves)

    async def settle_completed_trip(self, trip: Trip) -> SettlementResult:
        """
        Расчёт завершённой поездки одним пакетом:
        резерв пассажира (или его баланс, если эскроу не было) -> водитель и платформа.

        Raises:
            InsufficientFundsError: эскроу не было и на балансе пассажира не хватает
            DuplicateReferenceError: поездка уже рассчитана
            SettlementError: сбой реестра
        """
        if trip.driver is None:
            raise SettlementError(f"Trip {trip.id} has no driver to settle with")

        split = self.calculate_split(trip.fare)
        reference = f"SETTLE-{trip.id}"

        if trip.payment.escrow_held:
            rider_move = LedgerMove(
                owner_id=trip.rider_id,
                owner_type=OwnerType.RIDER,
                entry_type=LedgerEntryType.RELEASE,
                held_delta=-split.fare,
                description=f"Escrow release for trip {trip.id}",
            )
        else:
            rider_move = LedgerMove(
                owner_id=trip.rider_id,
                owner_type=OwnerType.RIDER,
                entry_type=LedgerEntryType.DEBIT,
                balance_delta=-split.fare,
                description=f"Fare capture for trip {trip.id}",
            )

        moves = [
            rider_move,
            LedgerMove(
                owner_id=trip.driver.id,
                owner_type=OwnerType.DRIVER,
                entry_type=LedgerEntryType.CREDIT,
                balance_delta=split.driver_share,
                description=f"Earnings for trip {trip.id}",
            ),
            self._ledger.platform_move(
                split.commission,
                LedgerEntryType.COMMISSION,
                f"Commission for trip {trip.id}",
            ),
        ]
        await self._apply(moves, reference, trip.id)

        payment = PaymentInfo(
            fare=split.fare,
            rider_paid=True,
            driver_paid=True,
            platform_commission=split.commission,
            escrow_held=False,
        )
        await log_info(
            f"Поездка {trip.id} рассчитана: водителю {split.driver_share:.2f}, платформе {split.commission:.2f}",
            type_msg=TypeMsg.INFO,
        )
        await self._publish(EventTypes.PAYMENT_RELEASED, {
            "trip_id": trip.id,
            "rider_id": trip.rider_id,
            "driver_id": trip.driver.id,
            "fare": split.fare,
            "driver_share": split.driver_share,
            "commission": split.commission,
            "currency": trip.currency,
        })
        return SettlementResult(trip_id=trip.id, reference=reference, payment=payment, split=split, moves=moves)

    async def refund_cancelled_trip(self, trip: Trip) -> Optional[SettlementResult]:
        """
        Возвращает удержанную стоимость пассажиру целиком, без комиссии.

        Returns:
            Результат возврата или None, если ничего не удерживалось
        """
        if not trip.payment.escrow_held:
            return None

        split = self.calculate_split(trip.fare)
        reference = f"REFUND-{trip.id}"
        moves = [
            LedgerMove(
                owner_id=trip.rider_id,
                owner_type=OwnerType.RIDER,
                entry_type=LedgerEntryType.REFUND,
                balance_delta=split.fare,
                held_delta=-split.fare,
                description=f"Refund for cancelled trip {trip.id}",
            ),
        ]
        await self._apply(moves, reference, trip.id)

        payment = trip.payment.model_copy(update={"escrow_held": False})
        await log_info(f"Поездка {trip.id}: возвращено {split.fare:.2f} пассажиру {trip.rider_id}", type_msg=TypeMsg.INFO)
        await self._publish(EventTypes.PAYMENT_REFUNDED, {
            "trip_id": trip.id,
            "rider_id": trip.rider_id,
            "amount": split.fare,
            "currency": trip.currency,
        })
        return SettlementResult(trip_id=trip.id, reference=reference, payment=payment, split=split, moves=moves)

    async def revert(self, result: SettlementResult) -> None:
        """
        Применяет обратный пакет к уже применённому.
        Используется, когда запись поездки не удалась после движения средств.
        """
        reference = f"{result.reference}-REVERSAL"
        inverse = [move.inverted() for move in reversed(result.moves)]
        await self._ledger.apply_moves(inverse, reference, trip_id=result.trip_id)
        await log_info(f"Пакет {result.reference} отменён пакетом {reference}", type_msg=TypeMsg.WARNING)

# src/core/trips/service.py
"""
Сервис жизненного цикла поездки.

Каждый переход выполняется под локом поездки: проверка графа,
движение средств через движок расчётов, запись поездки, затем
событие в шину и уведомления. Сбой уведомлений или шины не отменяет
переход; сбой расчёта отменяет. Если запись поездки не удалась после
движения средств, пакет компенсируется обратным.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Optional, Protocol

from src.common.constants import ActorRole, PaymentMethod, TripStatus, TypeMsg
from src.common.exceptions import (
    ActiveTripExistsError,
    SettlementError,
    TripNotFoundError,
)
from src.common.locks import KeyedLock
from src.common.logger import log_error, log_info
from src.core.notifications.service import NotificationService
from src.core.trips.active import ActiveTripRegistry
from src.core.trips.models import DriverInfo, StatusHistoryEntry, Trip, utc_now
from src.core.trips.state_machine import TripStateMachine
from src.infra.event_bus import DomainEvent, EventBus, EventTypes

if TYPE_CHECKING:
    from src.core.billing.service import SettlementEngine, SettlementResult


class TripStore(Protocol):
    async def get(self, trip_id: str) -> Optional[Trip]: ...

    async def save(self, trip: Trip) -> Trip: ...


@dataclass
class TripStatusView:
    """Статус поездки с историей и допустимыми переходами."""
    trip_id: str
    status: TripStatus
    is_terminal: bool
    can_cancel: bool
    next_statuses: list[TripStatus] = field(default_factory=list)
    history: list[StatusHistoryEntry] = field(default_factory=list)


class TripLifecycleService:
    """
    Сервис поездок.

    Реализует:
    - Заказ, подтверждение (с удержанием стоимости), назначение водителя
    - Отмену с возвратом удержанного
    - Завершение с расчётом между водителем и платформой
    - Уведомления всех участников на каждом переходе
    """

    def __init__(
        self,
        store: TripStore,
        settlement: SettlementEngine,
        notifications: NotificationService,
        active_trips: ActiveTripRegistry,
        event_bus: Optional[EventBus] = None,
        currency: str = "NGN",
    ) -> None:
        """
        Args:
            store: Хранилище поездок
            settlement: Движок расчётов
            notifications: Сервис уведомлений
            active_trips: Реестр активных поездок пассажиров
            event_bus: Шина событий (необязательна)
            currency: Валюта новых поездок
        """
        self._store = store
        self._settlement = settlement
        self._notifications = notifications
        self._active = active_trips
        self._event_bus = event_bus
        self._currency = currency
        self._trip_locks = KeyedLock()
        self._rider_locks = KeyedLock()

    # =========================================================================
    # ВСПОМОГАТЕЛЬНЫЕ
    # =========================================================================

    async def _publish(self, event_type: str, trip: Trip, **extra: Any) -> None:
        if self._event_bus is None:
            return
        try:
            await self._event_bus.publish(DomainEvent(
                event_type=event_type,
                payload={
                    "trip_id": trip.id,
                    "rider_id": trip.rider_id,
                    "driver_id": trip.driver.id if trip.driver else None,
                    "status": trip.status.value,
                    "fare": trip.fare,
                    "currency": trip.currency,
                    **extra,
                },
            ))
        except Exception as pub_error:
            await log_error(f"Не удалось опубликовать {event_type}: {pub_error}")

    async def _notify(self, *sends: Awaitable[Any]) -> None:
        """Рассылки по переходу; их ошибки не влияют на результат перехода."""
        outcomes = await asyncio.gather(*sends, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, Exception):
                await log_error(f"Ошибка рассылки уведомлений: {outcome!r}")

    async def _save_or_revert(self, trip: Trip, applied: Optional[SettlementResult]) -> Trip:
        """
        Записывает поездку. Если запись не удалась, а средства уже двигались,
        применяет обратный пакет и поднимает SettlementError.
        """
        try:
            return await self._store.save(trip)
        except Exception as e:
            await log_error(f"Не удалось записать поездку {trip.id}: {e!r}", exc_info=True)
            if applied is not None:
                await self._settlement.revert(applied)
            raise SettlementError(f"Trip {trip.id} was not saved, funds movement reverted") from e

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get_trip(self, trip_id: str) -> Trip:
        trip = await self._store.get(trip_id)
        if trip is None:
            raise TripNotFoundError(trip_id)
        return trip

    async def get_active_trip(self, rider_id: str) -> Optional[Trip]:
        """Текущая поездка пассажира (в том числе только что завершённая, до удаления из реестра)."""
        trip_id = self._active.get(rider_id)
        if trip_id is None:
            return None
        return await self._store.get(trip_id)

    async def get_trip_status(self, trip_id: str) -> TripStatusView:
        trip = await self.get_trip(trip_id)
        return TripStatusView(
            trip_id=trip.id,
            status=trip.status,
            is_terminal=trip.is_terminal,
            can_cancel=self.can_cancel(trip),
            next_statuses=TripStateMachine.next_statuses(trip.status),
            history=list(trip.status_history),
        )

    @staticmethod
    def can_cancel(trip: Trip) -> bool:
        return TripStateMachine.can_cancel(trip.status)

    # =========================================================================
    # ПЕРЕХОДЫ
    # =========================================================================

    async def request_trip(
        self,
        rider_id: str,
        pickup: str,
        dropoff: str,
        fare: float,
        distance_km: float = 0.0,
        duration_min: float = 0.0,
        pickup_lat: Optional[float] = None,
        pickup_lng: Optional[float] = None,
        payment_method: PaymentMethod = PaymentMethod.WALLET,
    ) -> Trip:
        """
        Создаёт поездку в статусе REQUESTED. Средства не двигаются.

        Raises:
            ActiveTripExistsError: у пассажира уже есть незавершённая поездка
        """
        async with self._rider_locks.hold(rider_id):
            current = await self.get_active_trip(rider_id)
            if current is not None and current.is_active:
                raise ActiveTripExistsError(rider_id, current.id)

            trip = Trip(
                rider_id=rider_id,
                pickup=pickup,
                dropoff=dropoff,
                pickup_lat=pickup_lat,
                pickup_lng=pickup_lng,
                distance_km=distance_km,
                duration_min=duration_min,
                fare=round(fare, 2),
                currency=self._currency,
                payment_method=payment_method,
                payment=self._settlement.initial_payment(fare),
                status_history=[StatusHistoryEntry(status=TripStatus.REQUESTED, actor=ActorRole.RIDER)],
            )
            await self._store.save(trip)
            self._active.set_active(rider_id, trip.id)

        await log_info(f"Поездка {trip.id} заказана пассажиром {rider_id}, стоимость {trip.fare:.2f}", type_msg=TypeMsg.INFO)
        await self._publish(EventTypes.TRIP_REQUESTED, trip)
        await self._notify(self._notifications.notify_ride_requested(
            rider_id, trip.id, trip.pickup, trip.dropoff, trip.fare, trip.currency,
        ))
        return trip

    async def confirm_trip(self, trip_id: str, actor: ActorRole = ActorRole.RIDER) -> Trip:
        """
        REQUESTED -> CONFIRMED с удержанием стоимости в эскроу.

        Raises:
            InvalidTransitionError: поездка не в REQUESTED
            InsufficientFundsError: на балансе пассажира не хватает (поездка остаётся REQUESTED)
        """
        async with self._trip_locks.hold(trip_id):
            trip = await self.get_trip(trip_id)
            TripStateMachine.ensure_transition(trip.id, trip.status, TripStatus.CONFIRMED)
            TripStateMachine.ensure_role(TripStatus.CONFIRMED, actor)

            held = await self._settlement.hold_fare(trip)
            trip = trip.with_status(
                TripStatus.CONFIRMED,
                actor,
                payment=held.payment,
                confirmed_at=utc_now(),
            )
            trip = await self._save_or_revert(trip, held)

        await log_info(f"Поездка {trip.id} подтверждена", type_msg=TypeMsg.INFO)
        await self._publish(EventTypes.TRIP_CONFIRMED, trip)
        return trip

    async def assign_driver(
        self,
        trip_id: str,
        driver: DriverInfo,
        actor: ActorRole = ActorRole.DRIVER,
    ) -> Trip:
        """
        Назначает водителя и переводит поездку в IN_PROGRESS.
        Если поездка стартует из REQUESTED, стоимость удерживается здесь же.
        Повторное назначение на IN_PROGRESS заменяет водителя без смены статуса.

        Raises:
            InvalidTransitionError: поездка завершена или отменена
            InsufficientFundsError: удержать стоимость не удалось (поездка остаётся REQUESTED)
        """
        async with self._trip_locks.hold(trip_id):
            trip = await self.get_trip(trip_id)
            if not TripStateMachine.can_assign(trip.status):
                TripStateMachine.ensure_transition(trip.id, trip.status, TripStatus.IN_PROGRESS)
            TripStateMachine.ensure_role(TripStatus.IN_PROGRESS, actor)

            first_start = trip.status != TripStatus.IN_PROGRESS
            held: Optional[SettlementResult] = None
            if first_start:
                if not trip.payment.escrow_held:
                    held = await self._settlement.hold_fare(trip)
                trip = trip.with_status(
                    TripStatus.IN_PROGRESS,
                    actor,
                    driver=driver,
                    payment=held.payment if held else trip.payment,
                    started_at=utc_now(),
                )
            else:
                trip = trip.model_copy(update={"driver": driver})
            trip = await self._save_or_revert(trip, held)

        await log_info(f"Поездка {trip.id}: назначен водитель {driver.id}", type_msg=TypeMsg.INFO)
        await self._publish(EventTypes.TRIP_DRIVER_ASSIGNED, trip, reassigned=not first_start)

        sends = [self._notifications.notify_driver_assigned(
            trip.rider_id, trip.id, driver.name, driver.vehicle_plate,
        )]
        if first_start:
            sends.append(self._notifications.notify_trip_started(trip.rider_id, driver.id, trip.id))
        await self._notify(*sends)
        return trip

    async def cancel_trip(
        self,
        trip_id: str,
        reason: Optional[str] = None,
        actor: ActorRole = ActorRole.RIDER,
    ) -> Trip:
        """
        Отменяет поездку до её начала; удержанное возвращается пассажиру.

        Raises:
            InvalidTransitionError: поездка уже началась или завершена
        """
        async with self._trip_locks.hold(trip_id):
            trip = await self.get_trip(trip_id)
            TripStateMachine.ensure_transition(trip.id, trip.status, TripStatus.CANCELLED)
            TripStateMachine.ensure_role(TripStatus.CANCELLED, actor)

            refund = await self._settlement.refund_cancelled_trip(trip)
            trip = trip.with_status(
                TripStatus.CANCELLED,
                actor,
                payment=refund.payment if refund else trip.payment,
                cancellation_reason=reason,
                cancelled_at=utc_now(),
            )
            trip = await self._save_or_revert(trip, refund)

        self._active.schedule_eviction(trip.rider_id, trip.id)
        await log_info(f"Поездка {trip.id} отменена ({actor.value}): {reason}", type_msg=TypeMsg.INFO)
        await self._publish(EventTypes.TRIP_CANCELLED, trip, reason=reason, refunded=refund is not None)
        await self._notify(self._notifications.notify_trip_cancelled(
            trip.rider_id,
            trip.id,
            trip.pickup,
            trip.dropoff,
            driver_id=trip.driver.id if trip.driver else None,
            refunded_amount=refund.split.fare if refund else None,
            currency=trip.currency,
        ))
        return trip

    async def complete_trip(self, trip_id: str, actor: ActorRole = ActorRole.DRIVER) -> Trip:
        """
        IN_PROGRESS -> COMPLETED с расчётом.
        Поездка становится COMPLETED только если расчёт прошёл.

        Raises:
            InvalidTransitionError: поездка не в IN_PROGRESS (в том числе уже завершена)
            InsufficientFundsError: эскроу не было и пассажиру не хватает средств
            SettlementError: сбой расчёта или записи (средства не сдвинуты)
        """
        async with self._trip_locks.hold(trip_id):
            trip = await self.get_trip(trip_id)
            TripStateMachine.ensure_transition(trip.id, trip.status, TripStatus.COMPLETED)
            TripStateMachine.ensure_role(TripStatus.COMPLETED, actor)

            settled = await self._settlement.settle_completed_trip(trip)
            trip = trip.with_status(
                TripStatus.COMPLETED,
                actor,
                payment=settled.payment,
                completed_at=utc_now(),
            )
            trip = await self._save_or_revert(trip, settled)

        self._active.schedule_eviction(trip.rider_id, trip.id)
        await log_info(f"Поездка {trip.id} завершена", type_msg=TypeMsg.INFO)
        await self._publish(
            EventTypes.TRIP_COMPLETED,
            trip,
            driver_share=settled.split.driver_share,
            commission=settled.split.commission,
        )
        await self._notify(
            self._notifications.notify_trip_completed(
                trip.rider_id,
                trip.driver.id,
                trip.id,
                trip.fare,
                trip.currency,
                driver_earnings=settled.split.driver_share,
            ),
            self._notifications.notify_payment_released(
                trip.driver.id,
                trip.id,
                settled.split.driver_share,
                trip.currency,
            ),
        )
        return trip

# tests/core/test_trip_service.py
"""
Тесты жизненного цикла поездки: переходы, эскроу, уведомления.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.common.constants import ActorRole, OwnerType, TripStatus, UserRole
from src.common.exceptions import (
    ActiveTripExistsError,
    DuplicateReferenceError,
    InsufficientFundsError,
    InvalidTransitionError,
    SettlementError,
    TransitionNotPermittedError,
    TripNotFoundError,
)
from src.core.notifications.models import NotificationType
from src.core.notifications.repository import InMemoryNotificationRepository
from src.core.trips.models import DriverInfo, Trip
from src.core.trips.repository import InMemoryTripRepository
from src.core.trips.service import TripLifecycleService
from src.core.wallets.service import WalletLedger
from src.infra.event_bus import EventTypes


class FlakyTripRepository(InMemoryTripRepository):
    """Хранилище, которое отказывает при записи по запросу."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_on_save = False

    async def save(self, trip: Trip) -> Trip:
        if self.fail_on_save:
            raise ConnectionError("database unavailable")
        return await super().save(trip)


async def request(service: TripLifecycleService, rider_id: str = "rider-1", fare: float = 1000.0) -> Trip:
    return await service.request_trip(
        rider_id=rider_id,
        pickup="Lekki Phase 1",
        dropoff="Victoria Island",
        fare=fare,
        distance_km=8.2,
        duration_min=21.0,
    )


def types_for(store: InMemoryNotificationRepository, user_id: str) -> list[NotificationType]:
    return [n.type for n in store._items if n.user_id == user_id]


class TestRequestTrip:
    """Тесты заказа поездки."""

    @pytest.mark.asyncio
    async def test_request_creates_trip_without_moving_funds(
        self,
        trip_service: TripLifecycleService,
        ledger: WalletLedger,
        funded_rider: str,
        notification_store: InMemoryNotificationRepository,
    ) -> None:
        trip = await request(trip_service, funded_rider)

        assert trip.status == TripStatus.REQUESTED
        assert trip.payment.fare == 1000.0
        assert trip.payment.platform_commission == 100.0
        assert trip.payment.escrow_held is False
        assert [h.status for h in trip.status_history] == [TripStatus.REQUESTED]
        assert (await ledger.get_wallet(funded_rider, OwnerType.RIDER)).balance == 5000.0
        assert types_for(notification_store, funded_rider) == [NotificationType.RIDE_REQUESTED]

    @pytest.mark.asyncio
    async def test_second_active_trip_rejected(self, trip_service: TripLifecycleService) -> None:
        first = await request(trip_service)

        with pytest.raises(ActiveTripExistsError) as exc_info:
            await request(trip_service)

        assert exc_info.value.trip_id == first.id

    @pytest.mark.asyncio
    async def test_concurrent_requests_create_one_trip(self, trip_service: TripLifecycleService) -> None:
        outcomes = await asyncio.gather(
            request(trip_service),
            request(trip_service),
            return_exceptions=True,
        )

        assert sum(isinstance(o, Trip) for o in outcomes) == 1
        assert sum(isinstance(o, ActiveTripExistsError) for o in outcomes) == 1

    @pytest.mark.asyncio
    async def test_get_unknown_trip(self, trip_service: TripLifecycleService) -> None:
        with pytest.raises(TripNotFoundError):
            await trip_service.get_trip("missing")


class TestConfirmTrip:
    """Тесты подтверждения с удержанием."""

    @pytest.mark.asyncio
    async def test_confirm_holds_fare(
        self,
        trip_service: TripLifecycleService,
        ledger: WalletLedger,
        funded_rider: str,
        mock_event_bus: AsyncMock,
    ) -> None:
        trip = await request(trip_service, funded_rider)

        confirmed = await trip_service.confirm_trip(trip.id)

        wallet = await ledger.get_wallet(funded_rider, OwnerType.RIDER)
        assert confirmed.status == TripStatus.CONFIRMED
        assert confirmed.payment.escrow_held is True
        assert confirmed.confirmed_at is not None
        assert wallet.balance == 4000.0
        assert wallet.held_balance == 1000.0
        published = [c.args[0].event_type for c in mock_event_bus.publish.call_args_list]
        assert EventTypes.PAYMENT_HELD in published
        assert EventTypes.TRIP_CONFIRMED in published

    @pytest.mark.asyncio
    async def test_confirm_without_funds_keeps_requested(
        self,
        trip_service: TripLifecycleService,
        ledger: WalletLedger,
    ) -> None:
        trip = await request(trip_service, "poor-rider")

        with pytest.raises(InsufficientFundsError):
            await trip_service.confirm_trip(trip.id)

        assert (await trip_service.get_trip(trip.id)).status == TripStatus.REQUESTED
        wallet = await ledger.get_wallet("poor-rider", OwnerType.RIDER)
        assert wallet.held_balance == 0.0

    @pytest.mark.asyncio
    async def test_driver_cannot_confirm(self, trip_service: TripLifecycleService, funded_rider: str) -> None:
        trip = await request(trip_service, funded_rider)

        with pytest.raises(TransitionNotPermittedError):
            await trip_service.confirm_trip(trip.id, actor=ActorRole.DRIVER)

    @pytest.mark.asyncio
    async def test_confirm_twice_rejected(self, trip_service: TripLifecycleService, funded_rider: str) -> None:
        trip = await request(trip_service, funded_rider)
        await trip_service.confirm_trip(trip.id)

        with pytest.raises(InvalidTransitionError):
            await trip_service.confirm_trip(trip.id)


class TestAssignDriver:
    """Тесты назначения водителя."""

    @pytest.mark.asyncio
    async def test_assign_starts_trip_and_notifies(
        self,
        trip_service: TripLifecycleService,
        funded_rider: str,
        driver: DriverInfo,
        notification_store: InMemoryNotificationRepository,
    ) -> None:
        trip = await request(trip_service, funded_rider)
        await trip_service.confirm_trip(trip.id)

        started = await trip_service.assign_driver(trip.id, driver)

        assert started.status == TripStatus.IN_PROGRESS
        assert started.driver.id == driver.id
        assert started.started_at is not None
        rider_types = types_for(notification_store, funded_rider)
        assert NotificationType.DRIVER_ASSIGNED in rider_types
        assert NotificationType.TRIP_STARTED in rider_types
        assert types_for(notification_store, driver.id) == [NotificationType.TRIP_STARTED]

    @pytest.mark.asyncio
    async def test_reassign_keeps_status(
        self,
        trip_service: TripLifecycleService,
        funded_rider: str,
        driver: DriverInfo,
    ) -> None:
        trip = await request(trip_service, funded_rider)
        await trip_service.assign_driver(trip.id, driver)
        other = driver.model_copy(update={"id": "driver-2", "name": "Ada"})

        reassigned = await trip_service.assign_driver(trip.id, other)

        assert reassigned.status == TripStatus.IN_PROGRESS
        assert reassigned.driver.id == "driver-2"
        assert [h.status for h in reassigned.status_history].count(TripStatus.IN_PROGRESS) == 1

    @pytest.mark.asyncio
    async def test_direct_start_without_funds_keeps_requested(
        self,
        trip_service: TripLifecycleService,
        ledger: WalletLedger,
        driver: DriverInfo,
    ) -> None:
        trip = await request(trip_service, "poor-rider")

        with pytest.raises(InsufficientFundsError):
            await trip_service.assign_driver(trip.id, driver)

        stored = await trip_service.get_trip(trip.id)
        assert stored.status == TripStatus.REQUESTED
        assert stored.driver is None
        assert (await ledger.get_wallet("poor-rider", OwnerType.RIDER)).held_balance == 0.0

        cancelled = await trip_service.cancel_trip(trip.id, reason="no funds")
        assert cancelled.status == TripStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cannot_assign_after_cancel(
        self,
        trip_service: TripLifecycleService,
        driver: DriverInfo,
    ) -> None:
        trip = await request(trip_service)
        await trip_service.cancel_trip(trip.id, reason="changed plans")

        with pytest.raises(InvalidTransitionError):
            await trip_service.assign_driver(trip.id, driver)


class TestCancelTrip:
    """Тесты отмены."""

    @pytest.mark.asyncio
    async def test_cancel_confirmed_refunds_in_full(
        self,
        trip_service: TripLifecycleService,
        ledger: WalletLedger,
        funded_rider: str,
        notification_store: InMemoryNotificationRepository,
    ) -> None:
        trip = await request(trip_service, funded_rider)
        await trip_service.confirm_trip(trip.id)

        cancelled = await trip_service.cancel_trip(trip.id, reason="driver too far")

        wallet = await ledger.get_wallet(funded_rider, OwnerType.RIDER)
        platform = await ledger.get_platform_wallet()
        assert cancelled.status == TripStatus.CANCELLED
        assert cancelled.cancellation_reason == "driver too far"
        assert cancelled.payment.escrow_held is False
        assert wallet.balance == 5000.0
        assert wallet.held_balance == 0.0
        assert platform.balance == 0.0
        assert NotificationType.TRIP_CANCELLED in types_for(notification_store, funded_rider)

    @pytest.mark.asyncio
    async def test_cancel_requested_moves_no_funds(
        self,
        trip_service: TripLifecycleService,
        ledger: WalletLedger,
        funded_rider: str,
    ) -> None:
        trip = await request(trip_service, funded_rider)

        await trip_service.cancel_trip(trip.id)

        assert await ledger.has_reference(f"REFUND-{trip.id}") is False

    @pytest.mark.asyncio
    async def test_cannot_cancel_in_progress(
        self,
        trip_service: TripLifecycleService,
        funded_rider: str,
        driver: DriverInfo,
    ) -> None:
        trip = await request(trip_service, funded_rider)
        await trip_service.assign_driver(trip.id, driver)

        with pytest.raises(InvalidTransitionError):
            await trip_service.cancel_trip(trip.id)

        assert trip_service.can_cancel(await trip_service.get_trip(trip.id)) is False


class TestCompleteTrip:
    """Тесты завершения и расчёта."""

    @pytest.mark.asyncio
    async def test_full_lifecycle_splits_fare(
        self,
        trip_service: TripLifecycleService,
        ledger: WalletLedger,
        funded_rider: str,
        driver: DriverInfo,
        notification_store: InMemoryNotificationRepository,
    ) -> None:
        trip = await request(trip_service, funded_rider)
        await trip_service.confirm_trip(trip.id)
        await trip_service.assign_driver(trip.id, driver)

        completed = await trip_service.complete_trip(trip.id)

        rider = await ledger.get_wallet(funded_rider, OwnerType.RIDER)
        driver_wallet = await ledger.get_wallet(driver.id, OwnerType.DRIVER)
        platform = await ledger.get_platform_wallet()
        assert completed.status == TripStatus.COMPLETED
        assert completed.payment.rider_paid is True
        assert completed.payment.driver_paid is True
        assert completed.payment.escrow_held is False
        assert rider.balance == 4000.0
        assert rider.held_balance == 0.0
        assert driver_wallet.balance == 900.0
        assert platform.balance == 100.0
        assert [h.status for h in completed.status_history] == [
            TripStatus.REQUESTED,
            TripStatus.CONFIRMED,
            TripStatus.IN_PROGRESS,
            TripStatus.COMPLETED,
        ]
        driver_types = types_for(notification_store, driver.id)
        assert NotificationType.TRIP_COMPLETED in driver_types
        assert NotificationType.PAYMENT_RELEASED in driver_types

    @pytest.mark.asyncio
    async def test_direct_start_settles_from_escrow(
        self,
        trip_service: TripLifecycleService,
        ledger: WalletLedger,
        funded_rider: str,
        driver: DriverInfo,
    ) -> None:
        trip = await request(trip_service, funded_rider)
        started = await trip_service.assign_driver(trip.id, driver)

        rider = await ledger.get_wallet(funded_rider, OwnerType.RIDER)
        assert started.payment.escrow_held is True
        assert (rider.balance, rider.held_balance) == (4000.0, 1000.0)

        await trip_service.complete_trip(trip.id)

        rider = await ledger.get_wallet(funded_rider, OwnerType.RIDER)
        assert (rider.balance, rider.held_balance) == (4000.0, 0.0)
        assert (await ledger.get_wallet(driver.id, OwnerType.DRIVER)).balance == 900.0

    @pytest.mark.asyncio
    async def test_trip_locks_released_after_lifecycle(
        self,
        trip_service: TripLifecycleService,
        ledger: WalletLedger,
        funded_rider: str,
        driver: DriverInfo,
    ) -> None:
        trip = await request(trip_service, funded_rider)
        await trip_service.confirm_trip(trip.id)
        await trip_service.assign_driver(trip.id, driver)
        await trip_service.complete_trip(trip.id)

        assert len(trip_service._trip_locks) == 0
        assert len(trip_service._rider_locks) == 0
        assert len(ledger._locks) == 0

    @pytest.mark.asyncio
    async def test_concurrent_completion_settles_once(
        self,
        trip_service: TripLifecycleService,
        ledger: WalletLedger,
        funded_rider: str,
        driver: DriverInfo,
    ) -> None:
        trip = await request(trip_service, funded_rider)
        await trip_service.confirm_trip(trip.id)
        await trip_service.assign_driver(trip.id, driver)

        outcomes = await asyncio.gather(
            trip_service.complete_trip(trip.id),
            trip_service.complete_trip(trip.id),
            return_exceptions=True,
        )

        assert sum(isinstance(o, Trip) for o in outcomes) == 1
        assert sum(isinstance(o, InvalidTransitionError) for o in outcomes) == 1
        assert (await ledger.get_wallet(driver.id, OwnerType.DRIVER)).balance == 900.0
        assert (await ledger.get_platform_wallet()).balance == 100.0

    @pytest.mark.asyncio
    async def test_rider_cannot_complete(
        self,
        trip_service: TripLifecycleService,
        funded_rider: str,
        driver: DriverInfo,
    ) -> None:
        trip = await request(trip_service, funded_rider)
        await trip_service.assign_driver(trip.id, driver)

        with pytest.raises(TransitionNotPermittedError):
            await trip_service.complete_trip(trip.id, actor=ActorRole.RIDER)

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_block_completion(
        self,
        trip_service: TripLifecycleService,
        notification_store: InMemoryNotificationRepository,
        funded_rider: str,
        driver: DriverInfo,
    ) -> None:
        trip = await request(trip_service, funded_rider)
        await trip_service.assign_driver(trip.id, driver)
        notification_store.add = AsyncMock(side_effect=RuntimeError("push provider down"))

        completed = await trip_service.complete_trip(trip.id)

        assert completed.status == TripStatus.COMPLETED


class TestSaveFailure:
    """Сбой записи поездки после движения средств."""

    @pytest.fixture
    def flaky_store(self) -> FlakyTripRepository:
        return FlakyTripRepository()

    @pytest.fixture
    def service(
        self,
        flaky_store: FlakyTripRepository,
        settlement,
        notifications,
        active_trips,
    ) -> TripLifecycleService:
        return TripLifecycleService(flaky_store, settlement, notifications, active_trips)

    @pytest.mark.asyncio
    async def test_failed_save_reverts_settlement(
        self,
        service: TripLifecycleService,
        flaky_store: FlakyTripRepository,
        ledger: WalletLedger,
        funded_rider: str,
        driver: DriverInfo,
    ) -> None:
        trip = await request(service, funded_rider)
        await service.confirm_trip(trip.id)
        await service.assign_driver(trip.id, driver)
        flaky_store.fail_on_save = True

        with pytest.raises(SettlementError):
            await service.complete_trip(trip.id)

        rider = await ledger.get_wallet(funded_rider, OwnerType.RIDER)
        assert rider.balance == 4000.0
        assert rider.held_balance == 1000.0
        assert (await ledger.get_wallet(driver.id, OwnerType.DRIVER)).balance == 0.0
        assert (await ledger.get_platform_wallet()).balance == 0.0
        assert (await service.get_trip(trip.id)).status == TripStatus.IN_PROGRESS
        assert await ledger.has_reference(f"SETTLE-{trip.id}-REVERSAL") is True

    @pytest.mark.asyncio
    async def test_retry_after_reversal_needs_review(
        self,
        service: TripLifecycleService,
        flaky_store: FlakyTripRepository,
        funded_rider: str,
        driver: DriverInfo,
    ) -> None:
        trip = await request(service, funded_rider)
        await service.assign_driver(trip.id, driver)
        flaky_store.fail_on_save = True
        with pytest.raises(SettlementError):
            await service.complete_trip(trip.id)
        flaky_store.fail_on_save = False

        with pytest.raises(DuplicateReferenceError):
            await service.complete_trip(trip.id)

    @pytest.mark.asyncio
    async def test_failed_confirm_save_releases_hold(
        self,
        service: TripLifecycleService,
        flaky_store: FlakyTripRepository,
        ledger: WalletLedger,
        funded_rider: str,
    ) -> None:
        trip = await request(service, funded_rider)
        flaky_store.fail_on_save = True

        with pytest.raises(SettlementError):
            await service.confirm_trip(trip.id)

        wallet = await ledger.get_wallet(funded_rider, OwnerType.RIDER)
        assert wallet.balance == 5000.0
        assert wallet.held_balance == 0.0

    @pytest.mark.asyncio
    async def test_failed_direct_start_save_releases_hold(
        self,
        service: TripLifecycleService,
        flaky_store: FlakyTripRepository,
        ledger: WalletLedger,
        funded_rider: str,
        driver: DriverInfo,
    ) -> None:
        trip = await request(service, funded_rider)
        flaky_store.fail_on_save = True

        with pytest.raises(SettlementError):
            await service.assign_driver(trip.id, driver)

        wallet = await ledger.get_wallet(funded_rider, OwnerType.RIDER)
        assert (wallet.balance, wallet.held_balance) == (5000.0, 0.0)
        assert (await service.get_trip(trip.id)).status == TripStatus.REQUESTED


class TestActiveTrip:
    """Ссылка на активную поездку пассажира."""

    @pytest.mark.asyncio
    async def test_completed_trip_visible_until_eviction(
        self,
        trip_service: TripLifecycleService,
        funded_rider: str,
        driver: DriverInfo,
    ) -> None:
        trip = await request(trip_service, funded_rider)
        await trip_service.assign_driver(trip.id, driver)
        await trip_service.complete_trip(trip.id)

        current = await trip_service.get_active_trip(funded_rider)
        assert current is not None and current.status == TripStatus.COMPLETED

        await asyncio.sleep(0.1)
        assert await trip_service.get_active_trip(funded_rider) is None

    @pytest.mark.asyncio
    async def test_new_trip_allowed_right_after_completion(
        self,
        trip_service: TripLifecycleService,
        funded_rider: str,
        driver: DriverInfo,
    ) -> None:
        trip = await request(trip_service, funded_rider)
        await trip_service.assign_driver(trip.id, driver)
        await trip_service.complete_trip(trip.id)

        second = await request(trip_service, funded_rider, fare=500.0)
        await asyncio.sleep(0.1)

        current = await trip_service.get_active_trip(funded_rider)
        assert current is not None and current.id == second.id

    @pytest.mark.asyncio
    async def test_trip_status_view(self, trip_service: TripLifecycleService, funded_rider: str) -> None:
        trip = await request(trip_service, funded_rider)

        view = await trip_service.get_trip_status(trip.id)

        assert view.status == TripStatus.REQUESTED
        assert view.is_terminal is False
        assert view.can_cancel is True
        assert TripStatus.CONFIRMED in view.next_statuses
        assert view.history[0].actor == ActorRole.RIDER


class TestNotificationRoles:
    @pytest.mark.asyncio
    async def test_cancel_notifies_assigned_driver(
        self,
        trip_service: TripLifecycleService,
        funded_rider: str,
        driver: DriverInfo,
        notification_store: InMemoryNotificationRepository,
        trip_store: InMemoryTripRepository,
    ) -> None:
        trip = await request(trip_service, funded_rider)
        # Водитель назначен, но поездка ещё не началась
        await trip_store.save(trip.model_copy(update={"driver": driver}))

        await trip_service.cancel_trip(trip.id, actor=ActorRole.DRIVER)

        notified = [n for n in notification_store._items if n.type == NotificationType.TRIP_CANCELLED]
        assert {n.role for n in notified} == {UserRole.RIDER, UserRole.DRIVER}

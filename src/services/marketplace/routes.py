# src/services/marketplace/routes.py
"""
HTTP endpoints маркетплейса.

Доменные исключения не перехватываются здесь: их сопоставляет
с кодами ответа обработчик в app.py.
"""

from __future__ import annotations

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, status

from src.common.constants import ActorRole, OwnerType, UserRole
from src.common.exceptions import NotificationNotStoredError, TripNotFoundError
from src.core.billing.models import Payout
from src.core.billing.payouts import PayoutService
from src.core.notifications.models import Notification
from src.core.notifications.repository import InMemoryUserDirectory, UserDirectoryRepository
from src.core.notifications.service import NotificationService
from src.core.trips.models import Trip
from src.core.trips.service import TripLifecycleService
from src.core.wallets.models import LedgerEntry, Wallet
from src.core.wallets.service import WalletLedger
from src.services.marketplace.dependencies import (
    get_ledger,
    get_notification_service,
    get_payout_service,
    get_trip_service,
    get_user_directory,
)
from src.services.marketplace.schemas import (
    ActorRequest,
    AdjustBalanceRequest,
    AdjustBalanceResponse,
    AffordabilityResponse,
    AnnouncementRequest,
    AnnouncementResponse,
    AssignDriverRequest,
    CancelTripRequest,
    NotificationCreateRequest,
    PayoutCreateRequest,
    PayoutRejectRequest,
    TripCreateRequest,
    TripStatusResponse,
    UserRegistrationRequest,
)

TripsDep = Annotated[TripLifecycleService, Depends(get_trip_service)]
LedgerDep = Annotated[WalletLedger, Depends(get_ledger)]
PayoutsDep = Annotated[PayoutService, Depends(get_payout_service)]
NotificationsDep = Annotated[NotificationService, Depends(get_notification_service)]
DirectoryDep = Annotated[InMemoryUserDirectory | UserDirectoryRepository, Depends(get_user_directory)]

OWNER_ROLES = {OwnerType.RIDER: UserRole.RIDER, OwnerType.DRIVER: UserRole.DRIVER}


# =============================================================================
# ПОЕЗДКИ
# =============================================================================

trips_router = APIRouter(prefix="/trips", tags=["Trips"])


@trips_router.post("", response_model=Trip, status_code=status.HTTP_201_CREATED, summary="Заказать поездку")
async def request_trip(request: TripCreateRequest, service: TripsDep) -> Trip:
    return await service.request_trip(
        rider_id=request.rider_id,
        pickup=request.pickup,
        dropoff=request.dropoff,
        fare=request.fare,
        distance_km=request.distance_km,
        duration_min=request.duration_min,
        pickup_lat=request.pickup_lat,
        pickup_lng=request.pickup_lng,
        payment_method=request.payment_method,
    )


@trips_router.get("/active/{rider_id}", response_model=Trip, summary="Активная поездка пассажира")
async def get_active_trip(rider_id: str, service: TripsDep) -> Trip:
    trip = await service.get_active_trip(rider_id)
    if trip is None:
        raise TripNotFoundError(f"active:{rider_id}")
    return trip


@trips_router.get("/{trip_id}", response_model=Trip)
async def get_trip(trip_id: str, service: TripsDep) -> Trip:
    return await service.get_trip(trip_id)


@trips_router.get("/{trip_id}/status", response_model=TripStatusResponse)
async def get_trip_status(trip_id: str, service: TripsDep) -> TripStatusResponse:
    view = await service.get_trip_status(trip_id)
    return TripStatusResponse(
        trip_id=view.trip_id,
        status=view.status,
        is_terminal=view.is_terminal,
        can_cancel=view.can_cancel,
        next_statuses=view.next_statuses,
        history=view.history,
    )


@trips_router.post("/{trip_id}/confirm", response_model=Trip, summary="Подтвердить и удержать стоимость")
async def confirm_trip(trip_id: str, service: TripsDep, request: Optional[ActorRequest] = None) -> Trip:
    actor = request.actor if request and request.actor else ActorRole.RIDER
    return await service.confirm_trip(trip_id, actor=actor)


@trips_router.post("/{trip_id}/assign", response_model=Trip, summary="Назначить водителя")
async def assign_driver(trip_id: str, request: AssignDriverRequest, service: TripsDep) -> Trip:
    return await service.assign_driver(trip_id, request.driver, actor=request.actor or ActorRole.DRIVER)


@trips_router.post("/{trip_id}/cancel", response_model=Trip, summary="Отменить поездку")
async def cancel_trip(trip_id: str, service: TripsDep, request: Optional[CancelTripRequest] = None) -> Trip:
    request = request or CancelTripRequest()
    return await service.cancel_trip(trip_id, reason=request.reason, actor=request.actor or ActorRole.RIDER)


@trips_router.post("/{trip_id}/complete", response_model=Trip, summary="Завершить и рассчитать")
async def complete_trip(trip_id: str, service: TripsDep, request: Optional[ActorRequest] = None) -> Trip:
    actor = request.actor if request and request.actor else ActorRole.DRIVER
    return await service.complete_trip(trip_id, actor=actor)


# =============================================================================
# КОШЕЛЬКИ
# =============================================================================

wallets_router = APIRouter(prefix="/wallets", tags=["Wallets"])


@wallets_router.get("/riders/{rider_id}/can-afford", response_model=AffordabilityResponse)
async def can_afford(
    rider_id: str,
    ledger: LedgerDep,
    amount: float = Query(..., ge=0),
) -> AffordabilityResponse:
    return AffordabilityResponse(
        rider_id=rider_id,
        amount=amount,
        can_afford=await ledger.can_afford(rider_id, amount),
    )


@wallets_router.get("/{owner_type}/{owner_id}", response_model=Wallet)
async def get_wallet(owner_type: OwnerType, owner_id: str, ledger: LedgerDep) -> Wallet:
    return await ledger.get_wallet(owner_id, owner_type)


@wallets_router.get("/{owner_type}/{owner_id}/entries", response_model=list[LedgerEntry])
async def get_entries(
    owner_type: OwnerType,
    owner_id: str,
    ledger: LedgerDep,
    limit: int = Query(50, ge=1, le=500),
) -> list[LedgerEntry]:
    return await ledger.get_entries(owner_id, owner_type, limit)


@wallets_router.post("/{owner_type}/{owner_id}/adjust", response_model=AdjustBalanceResponse)
async def adjust_balance(
    owner_type: OwnerType,
    owner_id: str,
    request: AdjustBalanceRequest,
    ledger: LedgerDep,
    notifications: NotificationsDep,
) -> AdjustBalanceResponse:
    """Пополнение или списание администратором; уведомляет владельца."""
    balance = await ledger.adjust_balance(owner_id, owner_type, request.delta, request.description)

    role = OWNER_ROLES.get(owner_type)
    if request.notify and role is not None and request.delta != 0:
        await notifications.notify_wallet_update(
            owner_id,
            role,
            abs(request.delta),
            is_credit=request.delta > 0,
            description=request.description,
        )
    return AdjustBalanceResponse(owner_id=owner_id, balance=balance)


# =============================================================================
# ВЫПЛАТЫ
# =============================================================================

payouts_router = APIRouter(prefix="/payouts", tags=["Payouts"])


@payouts_router.post("", response_model=Payout, status_code=status.HTTP_201_CREATED, summary="Запросить выплату")
async def request_payout(request: PayoutCreateRequest, service: PayoutsDep) -> Payout:
    return await service.request_payout(
        request.driver_id,
        request.amount,
        hold_for_review=request.hold_for_review,
        reason=request.reason,
    )


@payouts_router.get("/driver/{driver_id}", response_model=list[Payout])
async def list_payouts(driver_id: str, service: PayoutsDep) -> list[Payout]:
    return await service.list_payouts(driver_id)


@payouts_router.get("/{payout_id}", response_model=Payout)
async def get_payout(payout_id: str, service: PayoutsDep) -> Payout:
    return await service.get_payout(payout_id)


@payouts_router.post("/{payout_id}/release", response_model=Payout, summary="Отправить удержанную выплату")
async def release_payout(payout_id: str, service: PayoutsDep) -> Payout:
    return await service.release_payout(payout_id)


@payouts_router.post("/{payout_id}/reject", response_model=Payout, summary="Отклонить удержанную выплату")
async def reject_payout(
    payout_id: str,
    service: PayoutsDep,
    request: Optional[PayoutRejectRequest] = None,
) -> Payout:
    return await service.reject_payout(payout_id, reason=request.reason if request else None)


# =============================================================================
# УВЕДОМЛЕНИЯ И ПОЛЬЗОВАТЕЛИ
# =============================================================================

notifications_router = APIRouter(prefix="/notifications", tags=["Notifications"])


@notifications_router.post("", response_model=Notification, status_code=status.HTTP_201_CREATED)
async def create_notification(request: NotificationCreateRequest, service: NotificationsDep) -> Notification:
    notification = await service.create_notification(
        request.user_id,
        request.role,
        request.title,
        request.message,
        request.type,
        request.metadata,
    )
    if notification is None:
        raise NotificationNotStoredError(request.user_id)
    return notification


@notifications_router.post("/announcements", response_model=AnnouncementResponse, summary="Объявление администратора")
async def send_announcement(request: AnnouncementRequest, service: NotificationsDep) -> AnnouncementResponse:
    result = await service.send_admin_announcement(
        request.title,
        request.message,
        request.target_audience,
        request.admin_id,
    )
    return AnnouncementResponse(count=result.delivered_count, failed=result.failed_count)


@notifications_router.get("/{user_id}", response_model=list[Notification])
async def list_notifications(
    user_id: str,
    service: NotificationsDep,
    limit: int = Query(50, ge=1, le=200),
) -> list[Notification]:
    return await service.list_notifications(user_id, limit)


users_router = APIRouter(prefix="/users", tags=["Users"])


@users_router.post("", status_code=status.HTTP_204_NO_CONTENT, summary="Зарегистрировать адресата объявлений")
async def register_user(request: UserRegistrationRequest, directory: DirectoryDep) -> None:
    await directory.register(request.user_id, request.role, request.active)


ROUTERS = [trips_router, wallets_router, payouts_router, notifications_router, users_router]

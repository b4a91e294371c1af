# tests/core/test_repositories.py
"""
Тесты PostgreSQL-репозиториев (с моком DatabaseManager).
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock

import pytest

from src.common.constants import OwnerType, PayoutStatus, TripStatus, UserRole
from src.common.exceptions import DuplicateReferenceError, InsufficientFundsError
from src.core.billing.models import Payout
from src.core.billing.repository import PayoutRepository
from src.core.notifications.models import Notification, NotificationType
from src.core.notifications.repository import NotificationRepository, UserDirectoryRepository
from src.core.trips.models import PaymentInfo, StatusHistoryEntry, Trip
from src.core.trips.repository import TripRepository
from src.core.wallets.models import LedgerEntryType, LedgerMove, WalletKey
from src.core.wallets.repository import WalletRepository

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def wallet_row(owner_id: str, owner_type: str, balance: str, held: str = "0") -> dict[str, Any]:
    return {
        "owner_id": owner_id,
        "owner_type": owner_type,
        "balance": Decimal(balance),
        "held_balance": Decimal(held),
        "currency": "NGN",
        "updated_at": NOW,
    }


@pytest.fixture
def conn() -> AsyncMock:
    """Мок соединения внутри транзакции."""
    connection = AsyncMock()
    connection.fetchval = AsyncMock(return_value="REF-1")
    connection.execute = AsyncMock(return_value="UPDATE 1")
    connection.executemany = AsyncMock(return_value=None)
    return connection


@pytest.fixture
def tx_db(mock_db: AsyncMock, conn: AsyncMock) -> AsyncMock:
    @asynccontextmanager
    async def transaction():
        yield conn

    mock_db.transaction = transaction
    return mock_db


class TestWalletRepository:
    """Тесты WalletRepository."""

    @pytest.mark.asyncio
    async def test_get_missing_wallet(self, mock_db: AsyncMock) -> None:
        repo = WalletRepository(mock_db)

        assert await repo.get(WalletKey(owner_id="r1", owner_type=OwnerType.RIDER)) is None

    @pytest.mark.asyncio
    async def test_get_converts_numeric(self, mock_db: AsyncMock) -> None:
        mock_db.fetchrow.return_value = wallet_row("r1", "rider", "150.50", "20.00")
        repo = WalletRepository(mock_db)

        wallet = await repo.get(WalletKey(owner_id="r1", owner_type=OwnerType.RIDER))

        assert wallet.balance == 150.5
        assert wallet.held_balance == 20.0

    @pytest.mark.asyncio
    async def test_apply_moves_updates_and_records(self, tx_db: AsyncMock, conn: AsyncMock) -> None:
        conn.fetchrow = AsyncMock(return_value=wallet_row("r1", "rider", "1000"))
        repo = WalletRepository(tx_db)
        move = LedgerMove(
            owner_id="r1",
            owner_type=OwnerType.RIDER,
            entry_type=LedgerEntryType.HOLD,
            balance_delta=-400.0,
            held_delta=400.0,
        )

        wallets = await repo.apply_moves([move], "REF-1", trip_id="trip-1")

        wallet = wallets[move.key]
        assert (wallet.balance, wallet.held_balance) == (600.0, 400.0)
        update_call = next(c for c in conn.execute.call_args_list if "UPDATE wallets" in c.args[0])
        assert update_call.args[3] == Decimal("600.0")
        rows = conn.executemany.call_args.args[1]
        assert rows[0][3] == "HOLD"
        assert rows[0][5] == "REF-1"

    @pytest.mark.asyncio
    async def test_duplicate_reference(self, tx_db: AsyncMock, conn: AsyncMock) -> None:
        conn.fetchval.return_value = None
        repo = WalletRepository(tx_db)
        move = LedgerMove(owner_id="r1", owner_type=OwnerType.RIDER, entry_type=LedgerEntryType.DEBIT, balance_delta=-1.0)

        with pytest.raises(DuplicateReferenceError):
            await repo.apply_moves([move], "REF-1")

        conn.executemany.assert_not_called()

    @pytest.mark.asyncio
    async def test_insufficient_funds_writes_nothing(self, tx_db: AsyncMock, conn: AsyncMock) -> None:
        conn.fetchrow = AsyncMock(return_value=wallet_row("r1", "rider", "10"))
        repo = WalletRepository(tx_db)
        move = LedgerMove(owner_id="r1", owner_type=OwnerType.RIDER, entry_type=LedgerEntryType.DEBIT, balance_delta=-50.0)

        with pytest.raises(InsufficientFundsError):
            await repo.apply_moves([move], "REF-1")

        conn.executemany.assert_not_called()

    @pytest.mark.asyncio
    async def test_has_reference(self, mock_db: AsyncMock) -> None:
        mock_db.fetchval.return_value = 1
        repo = WalletRepository(mock_db)

        assert await repo.has_reference("REF-1") is True


class TestTripRepository:
    """Тесты TripRepository."""

    @pytest.mark.asyncio
    async def test_save_serializes_json_columns(self, mock_db: AsyncMock) -> None:
        repo = TripRepository(mock_db)
        trip = Trip(
            rider_id="r1",
            pickup="A",
            dropoff="B",
            fare=1000.0,
            payment=PaymentInfo(fare=1000.0, escrow_held=True),
            status_history=[StatusHistoryEntry(status=TripStatus.REQUESTED)],
        )

        await repo.save(trip)

        args = mock_db.execute.call_args.args
        assert json.loads(args[12])["escrow_held"] is True
        assert args[14] is None
        assert json.loads(args[15])[0]["status"] == "REQUESTED"

    @pytest.mark.asyncio
    async def test_row_to_trip(self, mock_db: AsyncMock) -> None:
        mock_db.fetchrow.return_value = {
            "id": "trip-1",
            "rider_id": "r1",
            "pickup": "A",
            "dropoff": "B",
            "pickup_lat": None,
            "pickup_lng": None,
            "distance_km": 3.5,
            "duration_min": 10.0,
            "fare": Decimal("1000.00"),
            "currency": "NGN",
            "payment_method": "wallet",
            "payment": json.dumps({"fare": 1000.0, "escrow_held": True}),
            "status": "CONFIRMED",
            "driver": None,
            "status_history": [{"status": "REQUESTED", "timestamp": NOW.isoformat(), "actor": "rider"}],
            "cancellation_reason": None,
            "created_at": NOW,
            "confirmed_at": NOW,
            "started_at": None,
            "completed_at": None,
            "cancelled_at": None,
        }
        repo = TripRepository(mock_db)

        trip = await repo.get("trip-1")

        assert trip.status == TripStatus.CONFIRMED
        assert trip.fare == 1000.0
        assert trip.payment.escrow_held is True
        assert trip.status_history[0].status == TripStatus.REQUESTED


class TestNotificationRepository:
    @pytest.mark.asyncio
    async def test_add_serializes_metadata(self, mock_db: AsyncMock) -> None:
        repo = NotificationRepository(mock_db)
        notification = Notification(
            user_id="d1",
            role=UserRole.DRIVER,
            title="T",
            message="M",
            type=NotificationType.PAYOUT_SENT,
            metadata={"payoutId": "p1"},
        )

        await repo.add(notification)

        args = mock_db.execute.call_args.args
        assert json.loads(args[7]) == {"payoutId": "p1"}

    @pytest.mark.asyncio
    async def test_add_without_metadata_stores_null(self, mock_db: AsyncMock) -> None:
        repo = NotificationRepository(mock_db)

        await repo.add(Notification(user_id="d1", role=UserRole.DRIVER, title="T", message="M", type=NotificationType.SYSTEM))

        assert mock_db.execute.call_args.args[7] is None


class TestUserDirectoryRepository:
    @pytest.mark.asyncio
    async def test_active_drivers_from_drivers_table(self, mock_db: AsyncMock) -> None:
        mock_db.fetch.return_value = [{"id": "d1"}, {"id": "d2"}]
        repo = UserDirectoryRepository(mock_db)

        assert await repo.list_active_user_ids(UserRole.DRIVER) == ["d1", "d2"]
        assert "FROM drivers" in mock_db.fetch.call_args.args[0]

    @pytest.mark.asyncio
    async def test_admin_role_not_stored(self, mock_db: AsyncMock) -> None:
        repo = UserDirectoryRepository(mock_db)

        with pytest.raises(ValueError):
            await repo.list_active_user_ids(UserRole.ADMIN)


class TestPayoutRepository:
    @pytest.mark.asyncio
    async def test_round_trip_row(self, mock_db: AsyncMock) -> None:
        mock_db.fetchrow.return_value = {
            "id": "p1",
            "driver_id": "d1",
            "amount": Decimal("60000.00"),
            "currency": "NGN",
            "status": "HELD",
            "reason": None,
            "created_at": NOW,
            "resolved_at": None,
        }
        repo = PayoutRepository(mock_db)

        payout = await repo.get("p1")

        assert payout.amount == 60000.0
        assert payout.status == PayoutStatus.HELD

    @pytest.mark.asyncio
    async def test_save_passes_decimal_amount(self, mock_db: AsyncMock) -> None:
        repo = PayoutRepository(mock_db)

        await repo.save(Payout(driver_id="d1", amount=123.456))

        assert mock_db.execute.call_args.args[3] == Decimal("123.46")

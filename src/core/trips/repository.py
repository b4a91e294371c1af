# src/core/trips/repository.py
"""
Хранилища поездок.
"""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Optional

from asyncpg import Record

from src.common.constants import TripStatus
from src.core.trips.models import DriverInfo, PaymentInfo, StatusHistoryEntry, Trip
from src.infra.database import DatabaseManager


class InMemoryTripRepository:
    """Поездки в памяти процесса."""

    def __init__(self) -> None:
        self._trips: dict[str, Trip] = {}

    async def get(self, trip_id: str) -> Optional[Trip]:
        trip = self._trips.get(trip_id)
        return trip.model_copy(deep=True) if trip else None

    async def save(self, trip: Trip) -> Trip:
        self._trips[trip.id] = trip.model_copy(deep=True)
        return trip

    async def list_by_rider(self, rider_id: str, limit: int = 20) -> list[Trip]:
        trips = [t for t in self._trips.values() if t.rider_id == rider_id]
        trips.sort(key=lambda t: t.created_at, reverse=True)
        return [t.model_copy(deep=True) for t in trips[:limit]]


class TripRepository:
    """Поездки в PostgreSQL. Водитель, оплата и история хранятся в JSONB."""

    _COLUMNS = """
        id, rider_id, pickup, dropoff, pickup_lat, pickup_lng, distance_km, duration_min,
        fare, currency, payment_method, payment, status, driver, status_history,
        cancellation_reason, created_at, confirmed_at, started_at, completed_at, cancelled_at
    """

    def __init__(self, db: DatabaseManager) -> None:
        """
        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    async def get(self, trip_id: str) -> Optional[Trip]:
        row = await self._db.fetchrow(
            f"SELECT {self._COLUMNS} FROM trips WHERE id = $1",
            trip_id,
        )
        return self._row_to_trip(row) if row else None

    async def save(self, trip: Trip) -> Trip:
        """Вставляет поездку или обновляет изменяемые поля."""
        await self._db.execute(
            """
            INSERT INTO trips (
                id, rider_id, pickup, dropoff, pickup_lat, pickup_lng, distance_km, duration_min,
                fare, currency, payment_method, payment, status, driver, status_history,
                cancellation_reason, created_at, confirmed_at, started_at, completed_at, cancelled_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12::jsonb, $13, $14::jsonb,
                    $15::jsonb, $16, $17, $18, $19, $20, $21)
            ON CONFLICT (id) DO UPDATE SET
                payment = EXCLUDED.payment,
                status = EXCLUDED.status,
                driver = EXCLUDED.driver,
                status_history = EXCLUDED.status_history,
                cancellation_reason = EXCLUDED.cancellation_reason,
                confirmed_at = EXCLUDED.confirmed_at,
                started_at = EXCLUDED.started_at,
                completed_at = EXCLUDED.completed_at,
                cancelled_at = EXCLUDED.cancelled_at
            """,
            trip.id,
            trip.rider_id,
            trip.pickup,
            trip.dropoff,
            trip.pickup_lat,
            trip.pickup_lng,
            trip.distance_km,
            trip.duration_min,
            Decimal(str(round(trip.fare, 2))),
            trip.currency,
            trip.payment_method.value,
            trip.payment.model_dump_json(),
            trip.status.value,
            trip.driver.model_dump_json() if trip.driver else None,
            json.dumps([entry.model_dump(mode="json") for entry in trip.status_history]),
            trip.cancellation_reason,
            trip.created_at,
            trip.confirmed_at,
            trip.started_at,
            trip.completed_at,
            trip.cancelled_at,
        )
        return trip

    async def list_by_rider(self, rider_id: str, limit: int = 20) -> list[Trip]:
        rows = await self._db.fetch(
            f"SELECT {self._COLUMNS} FROM trips WHERE rider_id = $1 ORDER BY created_at DESC LIMIT $2",
            rider_id,
            limit,
        )
        return [self._row_to_trip(row) for row in rows]

    @staticmethod
    def _load_json(value):
        if value is None or isinstance(value, (dict, list)):
            return value
        return json.loads(value)

    def _row_to_trip(self, row: Record) -> Trip:
        driver = self._load_json(row["driver"])
        return Trip(
            id=str(row["id"]),
            rider_id=row["rider_id"],
            pickup=row["pickup"],
            dropoff=row["dropoff"],
            pickup_lat=row["pickup_lat"],
            pickup_lng=row["pickup_lng"],
            distance_km=float(row["distance_km"]),
            duration_min=float(row["duration_min"]),
            fare=float(row["fare"]),
            currency=row["currency"],
            payment_method=row["payment_method"],
            payment=PaymentInfo(**self._load_json(row["payment"])),
            status=TripStatus(row["status"]),
            driver=DriverInfo(**driver) if driver else None,
            status_history=[StatusHistoryEntry(**e) for e in self._load_json(row["status_history"]) or []],
            cancellation_reason=row["cancellation_reason"],
            created_at=row["created_at"],
            confirmed_at=row["confirmed_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            cancelled_at=row["cancelled_at"],
        )

# src/core/billing/repository.py
"""
Хранилища выплат.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from asyncpg import Record

from src.common.constants import PayoutStatus
from src.core.billing.models import Payout
from src.infra.database import DatabaseManager


class InMemoryPayoutRepository:
    """Выплаты в памяти процесса."""

    def __init__(self) -> None:
        self._payouts: dict[str, Payout] = {}

    async def get(self, payout_id: str) -> Optional[Payout]:
        payout = self._payouts.get(payout_id)
        return payout.model_copy() if payout else None

    async def save(self, payout: Payout) -> Payout:
        self._payouts[payout.id] = payout.model_copy()
        return payout

    async def list_by_driver(self, driver_id: str) -> list[Payout]:
        payouts = [p for p in self._payouts.values() if p.driver_id == driver_id]
        return sorted(payouts, key=lambda p: p.created_at, reverse=True)


class PayoutRepository:
    """Выплаты в PostgreSQL."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def get(self, payout_id: str) -> Optional[Payout]:
        row = await self._db.fetchrow(
            """
            SELECT id, driver_id, amount, currency, status, reason, created_at, resolved_at
            FROM payouts
            WHERE id = $1
            """,
            payout_id,
        )
        return self._row_to_payout(row) if row else None

    async def save(self, payout: Payout) -> Payout:
        await self._db.execute(
            """
            INSERT INTO payouts (id, driver_id, amount, currency, status, reason, created_at, resolved_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            ON CONFLICT (id) DO UPDATE SET
                status = EXCLUDED.status,
                reason = EXCLUDED.reason,
                resolved_at = EXCLUDED.resolved_at
            """,
            payout.id,
            payout.driver_id,
            Decimal(str(round(payout.amount, 2))),
            payout.currency,
            payout.status.value,
            payout.reason,
            payout.created_at,
            payout.resolved_at,
        )
        return payout

    async def list_by_driver(self, driver_id: str) -> list[Payout]:
        rows = await self._db.fetch(
            """
            SELECT id, driver_id, amount, currency, status, reason, created_at, resolved_at
            FROM payouts
            WHERE driver_id = $1
            ORDER BY created_at DESC
            """,
            driver_id,
        )
        return [self._row_to_payout(row) for row in rows]

    @staticmethod
    def _row_to_payout(row: Record) -> Payout:
        return Payout(
            id=str(row["id"]),
            driver_id=row["driver_id"],
            amount=float(row["amount"]),
            currency=row["currency"],
            status=PayoutStatus(row["status"]),
            reason=row["reason"],
            created_at=row["created_at"],
            resolved_at=row["resolved_at"],
        )

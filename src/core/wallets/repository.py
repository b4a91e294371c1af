# src/core/wallets/repository.py
"""
Хранилища кошельков и журнала проводок.

InMemoryWalletRepository - процессное хранилище (по умолчанию).
WalletRepository - PostgreSQL: пакет применяется в одной транзакции
с блокировкой строк кошельков (SELECT ... FOR UPDATE).
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from asyncpg import Record

from src.common.constants import OwnerType, TypeMsg
from src.common.exceptions import DuplicateReferenceError
from src.common.logger import log_info
from src.core.wallets.models import (
    LedgerEntry,
    LedgerEntryType,
    LedgerMove,
    Wallet,
    WalletKey,
    plan_batch,
)
from src.infra.database import DatabaseManager


def _unique_keys(moves: list[LedgerMove]) -> list[WalletKey]:
    """Ключи кошельков пакета в порядке блокировки."""
    return sorted({move.key for move in moves}, key=str)


class InMemoryWalletRepository:
    """Кошельки и проводки в памяти процесса."""

    def __init__(self, currency: str = "NGN") -> None:
        self._currency = currency
        self._wallets: dict[WalletKey, Wallet] = {}
        self._entries: list[LedgerEntry] = []
        self._references: set[str] = set()

    async def get(self, key: WalletKey) -> Optional[Wallet]:
        wallet = self._wallets.get(key)
        return wallet.model_copy() if wallet else None

    async def create(self, key: WalletKey) -> Wallet:
        """Создаёт нулевой кошелёк, если его ещё нет, и возвращает его."""
        wallet = self._wallets.setdefault(
            key,
            Wallet(owner_id=key.owner_id, owner_type=key.owner_type, currency=self._currency),
        )
        return wallet.model_copy()

    async def apply_moves(
        self,
        moves: list[LedgerMove],
        reference: str,
        trip_id: Optional[str] = None,
    ) -> dict[WalletKey, Wallet]:
        """
        Применяет пакет целиком или не применяет вовсе.

        Raises:
            DuplicateReferenceError: пакет с такой ссылкой уже применён
            InsufficientFundsError: строгое движение невозможно
        """
        if reference in self._references:
            raise DuplicateReferenceError(reference)

        current = {key: await self.create(key) for key in _unique_keys(moves)}
        plan = plan_batch(current, moves, reference, trip_id)

        # Между расчётом и записью нет await: запись атомарна для event loop
        self._wallets.update(plan.wallets)
        self._entries.extend(plan.entries)
        self._references.add(reference)
        return {key: wallet.model_copy() for key, wallet in plan.wallets.items()}

    async def has_reference(self, reference: str) -> bool:
        return reference in self._references

    async def list_entries(self, key: WalletKey, limit: int = 50) -> list[LedgerEntry]:
        """Проводки кошелька, новые первыми."""
        entries = [
            entry for entry in reversed(self._entries)
            if entry.owner_id == key.owner_id and entry.owner_type == key.owner_type
        ]
        return entries[:limit]


class WalletRepository:
    """Кошельки и проводки в PostgreSQL."""

    def __init__(self, db: DatabaseManager, currency: str = "NGN") -> None:
        """
        Args:
            db: Менеджер базы данных (Dependency Injection)
            currency: Валюта новых кошельков
        """
        self._db = db
        self._currency = currency

    async def get(self, key: WalletKey) -> Optional[Wallet]:
        row = await self._db.fetchrow(
            """
            SELECT owner_id, owner_type, balance, held_balance, currency, updated_at
            FROM wallets
            WHERE owner_id = $1 AND owner_type = $2
            """,
            key.owner_id,
            key.owner_type.value,
        )
        return self._row_to_wallet(row) if row else None

    async def create(self, key: WalletKey) -> Wallet:
        row = await self._db.fetchrow(
            """
            INSERT INTO wallets (owner_id, owner_type, currency)
            VALUES ($1, $2, $3)
            ON CONFLICT (owner_id, owner_type) DO UPDATE SET owner_id = EXCLUDED.owner_id
            RETURNING owner_id, owner_type, balance, held_balance, currency, updated_at
            """,
            key.owner_id,
            key.owner_type.value,
            self._currency,
        )
        return self._row_to_wallet(row)

    async def apply_moves(
        self,
        moves: list[LedgerMove],
        reference: str,
        trip_id: Optional[str] = None,
    ) -> dict[WalletKey, Wallet]:
        """
        Применяет пакет в одной транзакции.
        Исключение внутри блока откатывает и ссылку, и балансы.
        """
        async with self._db.transaction() as conn:
            claimed = await conn.fetchval(
                """
                INSERT INTO ledger_batches (reference, trip_id)
                VALUES ($1, $2)
                ON CONFLICT (reference) DO NOTHING
                RETURNING reference
                """,
                reference,
                trip_id,
            )
            if claimed is None:
                raise DuplicateReferenceError(reference)

            current: dict[WalletKey, Wallet] = {}
            for key in _unique_keys(moves):
                await conn.execute(
                    """
                    INSERT INTO wallets (owner_id, owner_type, currency)
                    VALUES ($1, $2, $3)
                    ON CONFLICT (owner_id, owner_type) DO NOTHING
                    """,
                    key.owner_id,
                    key.owner_type.value,
                    self._currency,
                )
                row = await conn.fetchrow(
                    """
                    SELECT owner_id, owner_type, balance, held_balance, currency, updated_at
                    FROM wallets
                    WHERE owner_id = $1 AND owner_type = $2
                    FOR UPDATE
                    """,
                    key.owner_id,
                    key.owner_type.value,
                )
                current[key] = self._row_to_wallet(row)

            plan = plan_batch(current, moves, reference, trip_id)

            for wallet in plan.wallets.values():
                await conn.execute(
                    """
                    UPDATE wallets
                    SET balance = $3, held_balance = $4, updated_at = $5
                    WHERE owner_id = $1 AND owner_type = $2
                    """,
                    wallet.owner_id,
                    wallet.owner_type.value,
                    _money(wallet.balance),
                    _money(wallet.held_balance),
                    wallet.updated_at,
                )

            await conn.executemany(
                """
                INSERT INTO ledger_entries
                    (id, owner_id, owner_type, entry_type, amount, reference, trip_id, description, created_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                """,
                [
                    (
                        entry.id,
                        entry.owner_id,
                        entry.owner_type.value,
                        entry.entry_type.value,
                        _money(entry.amount),
                        entry.reference,
                        entry.trip_id,
                        entry.description,
                        entry.created_at,
                    )
                    for entry in plan.entries
                ],
            )

        await log_info(f"Пакет {reference} записан в БД ({len(plan.entries)} проводок)", type_msg=TypeMsg.DEBUG)
        return plan.wallets

    async def has_reference(self, reference: str) -> bool:
        found = await self._db.fetchval(
            "SELECT 1 FROM ledger_batches WHERE reference = $1",
            reference,
        )
        return found is not None

    async def list_entries(self, key: WalletKey, limit: int = 50) -> list[LedgerEntry]:
        rows = await self._db.fetch(
            """
            SELECT id, owner_id, owner_type, entry_type, amount, reference, trip_id, description, created_at
            FROM ledger_entries
            WHERE owner_id = $1 AND owner_type = $2
            ORDER BY created_at DESC
            LIMIT $3
            """,
            key.owner_id,
            key.owner_type.value,
            limit,
        )
        return [self._row_to_entry(row) for row in rows]

    @staticmethod
    def _row_to_wallet(row: Record) -> Wallet:
        return Wallet(
            owner_id=row["owner_id"],
            owner_type=OwnerType(row["owner_type"]),
            balance=float(row["balance"]),
            held_balance=float(row["held_balance"]),
            currency=row["currency"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_entry(row: Record) -> LedgerEntry:
        return LedgerEntry(
            id=str(row["id"]),
            owner_id=row["owner_id"],
            owner_type=OwnerType(row["owner_type"]),
            entry_type=LedgerEntryType(row["entry_type"]),
            amount=float(row["amount"]),
            reference=row["reference"],
            trip_id=row["trip_id"],
            description=row["description"],
            created_at=row["created_at"],
        )


def _money(value: float) -> Decimal:
    """float -> NUMERIC с двумя знаками."""
    return Decimal(str(round(value, 2)))

# src/core/wallets/service.py
"""
Реестр кошельков (WalletLedger).

Единственная точка изменения балансов. Все изменения проходят через
атомарные пакеты движений (LedgerMove) с ключом идемпотентности.
Операции над одним кошельком сериализуются локом этого кошелька;
пакет берёт локи всех своих кошельков в отсортированном порядке.
"""

from __future__ import annotations

from typing import Optional, Protocol
from uuid import uuid4

from src.common.constants import OwnerType, TypeMsg
from src.common.locks import KeyedLock
from src.common.logger import log_info, log_warning
from src.core.wallets.models import LedgerEntry, LedgerEntryType, LedgerMove, Wallet, WalletKey


class WalletStore(Protocol):
    """Контракт хранилища кошельков."""

    async def get(self, key: WalletKey) -> Optional[Wallet]: ...

    async def create(self, key: WalletKey) -> Wallet: ...

    async def apply_moves(
        self,
        moves: list[LedgerMove],
        reference: str,
        trip_id: Optional[str] = None,
    ) -> dict[WalletKey, Wallet]: ...

    async def has_reference(self, reference: str) -> bool: ...

    async def list_entries(self, key: WalletKey, limit: int = 50) -> list[LedgerEntry]: ...


class WalletLedger:
    """Сервис кошельков: чтение, корректировки и атомарные пакеты движений."""

    def __init__(
        self,
        store: WalletStore,
        platform_wallet_id: str = "PLATFORM",
    ) -> None:
        """
        Args:
            store: Хранилище кошельков (Dependency Injection)
            platform_wallet_id: ID единственного кошелька платформы
        """
        self._store = store
        self._platform_wallet_id = platform_wallet_id
        self._locks = KeyedLock()

    @property
    def platform_wallet_id(self) -> str:
        return self._platform_wallet_id

    def key_for(self, owner_id: str, owner_type: OwnerType) -> WalletKey:
        """Ключ кошелька; для платформы ID всегда один и тот же."""
        if owner_type == OwnerType.PLATFORM:
            owner_id = self._platform_wallet_id
        return WalletKey(owner_id=owner_id, owner_type=owner_type)

    def platform_move(self, balance_delta: float, entry_type: LedgerEntryType, description: str) -> LedgerMove:
        """Движение по кошельку платформы."""
        return LedgerMove(
            owner_id=self._platform_wallet_id,
            owner_type=OwnerType.PLATFORM,
            entry_type=entry_type,
            balance_delta=balance_delta,
            description=description,
        )

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def ensure_platform_wallet(self) -> Wallet:
        """Создаёт кошелёк платформы при старте, если его нет."""
        return await self._store.create(self.key_for(self._platform_wallet_id, OwnerType.PLATFORM))

    async def get_wallet(self, owner_id: str, owner_type: OwnerType) -> Wallet:
        """
        Возвращает кошелёк; при первом обращении создаёт нулевой.

        Args:
            owner_id: ID владельца (для платформы игнорируется)
            owner_type: Тип владельца

        Returns:
            Кошелёк
        """
        key = self.key_for(owner_id, owner_type)
        wallet = await self._store.get(key)
        if wallet is None:
            wallet = await self._store.create(key)
            await log_info(f"Создан кошелёк {key}", type_msg=TypeMsg.DEBUG)
        return wallet

    async def get_platform_wallet(self) -> Wallet:
        return await self.get_wallet(self._platform_wallet_id, OwnerType.PLATFORM)

    async def can_afford(self, rider_id: str, amount: float) -> bool:
        """Хватает ли доступного баланса пассажира на сумму."""
        wallet = await self.get_wallet(rider_id, OwnerType.RIDER)
        return wallet.balance >= round(amount, 2)

    async def get_entries(self, owner_id: str, owner_type: OwnerType, limit: int = 50) -> list[LedgerEntry]:
        """Проводки кошелька, новые первыми."""
        return await self._store.list_entries(self.key_for(owner_id, owner_type), limit)

    async def has_reference(self, reference: str) -> bool:
        return await self._store.has_reference(reference)

    # =========================================================================
    # ИЗМЕНЕНИЕ
    # =========================================================================

    async def adjust_balance(
        self,
        owner_id: str,
        owner_type: OwnerType,
        delta: float,
        description: Optional[str] = None,
    ) -> float:
        """
        Относительная корректировка баланса.
        Списание сверх остатка не ошибка: баланс обрезается нулём.

        Args:
            owner_id: ID владельца
            owner_type: Тип владельца
            delta: Изменение (отрицательное - списание)
            description: Комментарий к проводке

        Returns:
            Новый баланс
        """
        key = self.key_for(owner_id, owner_type)
        move = LedgerMove(
            owner_id=key.owner_id,
            owner_type=key.owner_type,
            entry_type=LedgerEntryType.ADJUSTMENT,
            balance_delta=round(delta, 2),
            strict=False,
            description=description,
        )

        async with self._locks.hold(key):
            before = await self.get_wallet(key.owner_id, key.owner_type)
            if before.balance + move.balance_delta < 0:
                await log_warning(
                    f"Списание {abs(delta):.2f} с {key} превышает баланс {before.balance:.2f}, баланс обнулён"
                )
            wallets = await self._store.apply_moves([move], f"ADJ-{uuid4()}")

        balance = wallets[key].balance
        await log_info(f"Баланс {key} скорректирован на {delta:+.2f}, теперь {balance:.2f}", type_msg=TypeMsg.INFO)
        return balance

    async def apply_moves(
        self,
        moves: list[LedgerMove],
        reference: str,
        trip_id: Optional[str] = None,
    ) -> dict[WalletKey, Wallet]:
        """
        Атомарно применяет пакет движений.

        Args:
            moves: Движения (ключи платформы нормализуются)
            reference: Ключ идемпотентности; повтор отклоняется
            trip_id: Поездка, к которой относится пакет

        Returns:
            Новые состояния затронутых кошельков

        Raises:
            DuplicateReferenceError: пакет уже применён
            InsufficientFundsError: строгое движение невозможно (ничего не изменено)
        """
        normalized = [
            move.model_copy(update={"owner_id": self._platform_wallet_id})
            if move.owner_type == OwnerType.PLATFORM else move
            for move in moves
        ]

        async with self._locks.hold_many(move.key for move in normalized):
            wallets = await self._store.apply_moves(normalized, reference, trip_id)

        await log_info(f"Пакет {reference} применён: {len(normalized)} движений", type_msg=TypeMsg.INFO)
        return wallets

# src/core/wallets/models.py
"""
Модели кошельков и проводок.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from src.common.constants import OwnerType
from src.common.exceptions import InsufficientFundsError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LedgerEntryType(str, Enum):
    """Типы проводок."""
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"
    HOLD = "HOLD"
    RELEASE = "RELEASE"
    REFUND = "REFUND"
    COMMISSION = "COMMISSION"
    PAYOUT = "PAYOUT"
    ADJUSTMENT = "ADJUSTMENT"


class WalletKey(BaseModel):
    """Ключ кошелька: владелец и его тип."""
    model_config = ConfigDict(frozen=True)

    owner_id: str
    owner_type: OwnerType

    def __str__(self) -> str:
        return f"{self.owner_type.value}:{self.owner_id}"


class Wallet(BaseModel):
    """Кошелёк участника."""
    model_config = ConfigDict(from_attributes=True)

    owner_id: str = Field(..., description="ID владельца")
    owner_type: OwnerType = Field(..., description="Тип владельца")
    balance: float = Field(0.0, ge=0.0, description="Доступный баланс")
    held_balance: float = Field(0.0, ge=0.0, description="Зарезервированные средства")
    currency: str = Field("NGN", description="Валюта")
    updated_at: datetime = Field(default_factory=utc_now, description="Время изменения")

    @property
    def key(self) -> WalletKey:
        return WalletKey(owner_id=self.owner_id, owner_type=self.owner_type)

    @property
    def total(self) -> float:
        """Баланс вместе с зарезервированными средствами."""
        return round(self.balance + self.held_balance, 2)


class LedgerEntry(BaseModel):
    """Проводка журнала (только добавляется, не изменяется)."""
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    owner_id: str
    owner_type: OwnerType
    entry_type: LedgerEntryType
    amount: float = Field(..., ge=0.0)
    reference: str = Field(..., description="Ключ идемпотентности пакета")
    trip_id: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


class LedgerMove(BaseModel):
    """
    Одно изменение кошелька в составе атомарного пакета.

    balance_delta и held_delta применяются вместе. Строгое движение
    (strict=True) не может увести баланс ниже нуля; нестрогое обрезается нулём.
    Резерв никогда не уходит в минус.
    """
    owner_id: str
    owner_type: OwnerType
    entry_type: LedgerEntryType
    balance_delta: float = 0.0
    held_delta: float = 0.0
    strict: bool = True
    description: Optional[str] = None

    @property
    def key(self) -> WalletKey:
        return WalletKey(owner_id=self.owner_id, owner_type=self.owner_type)

    @property
    def amount(self) -> float:
        """Сумма проводки: модуль наибольшего изменения."""
        return round(max(abs(self.balance_delta), abs(self.held_delta)), 2)

    def inverted(self) -> LedgerMove:
        """Обратное движение (для компенсации)."""
        return self.model_copy(update={
            "balance_delta": -self.balance_delta,
            "held_delta": -self.held_delta,
            "strict": False,
            "description": f"Reversal: {self.description or self.entry_type.value}",
        })


@dataclass
class BatchPlan:
    """Результат расчёта пакета: новые состояния кошельков и проводки."""
    wallets: dict[WalletKey, Wallet]
    entries: list[LedgerEntry]


def plan_batch(
    current: dict[WalletKey, Wallet],
    moves: list[LedgerMove],
    reference: str,
    trip_id: Optional[str] = None,
) -> BatchPlan:
    """
    Применяет движения к копиям кошельков по порядку.

    Ничего не изменяет: при нарушении строгого движения исключение
    поднимается до того, как кто-либо увидит новые балансы.

    Args:
        current: Текущие кошельки по ключам (все ключи из moves должны быть)
        moves: Движения пакета
        reference: Ключ идемпотентности пакета
        trip_id: Поездка, к которой относится пакет

    Returns:
        BatchPlan

    Raises:
        InsufficientFundsError: строгое движение уводит баланс или резерв ниже нуля
    """
    now = utc_now()
    wallets = {key: wallet.model_copy() for key, wallet in current.items()}
    entries: list[LedgerEntry] = []

    for move in moves:
        wallet = wallets[move.key]

        new_balance = round(wallet.balance + move.balance_delta, 2)
        if new_balance < 0:
            if move.strict:
                raise InsufficientFundsError(move.owner_id, abs(move.balance_delta), wallet.balance)
            new_balance = 0.0

        new_held = round(wallet.held_balance + move.held_delta, 2)
        if new_held < 0:
            if move.strict:
                raise InsufficientFundsError(move.owner_id, abs(move.held_delta), wallet.held_balance)
            new_held = 0.0

        wallets[move.key] = wallet.model_copy(update={
            "balance": new_balance,
            "held_balance": new_held,
            "updated_at": now,
        })
        entries.append(LedgerEntry(
            owner_id=move.owner_id,
            owner_type=move.owner_type,
            entry_type=move.entry_type,
            amount=move.amount,
            reference=reference,
            trip_id=trip_id,
            description=move.description,
            created_at=now,
        ))

    return BatchPlan(wallets=wallets, entries=entries)

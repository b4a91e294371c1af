# src/core/wallets/__init__.py
"""
Домен кошельков: балансы участников и журнал проводок.
"""

from src.core.wallets.models import LedgerEntry, LedgerEntryType, LedgerMove, Wallet, WalletKey
from src.core.wallets.repository import InMemoryWalletRepository, WalletRepository
from src.core.wallets.service import WalletLedger

__all__ = [
    "LedgerEntry",
    "LedgerEntryType",
    "LedgerMove",
    "Wallet",
    "WalletKey",
    "InMemoryWalletRepository",
    "WalletRepository",
    "WalletLedger",
]

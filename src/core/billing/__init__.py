# src/core/billing/__init__.py
"""
Домен расчётов: эскроу поездок и выплаты водителям.
"""

from src.core.billing.models import Payout
from src.core.billing.payouts import PayoutService
from src.core.billing.repository import InMemoryPayoutRepository, PayoutRepository
from src.core.billing.service import FareSplit, SettlementEngine, SettlementResult

__all__ = [
    "Payout",
    "PayoutService",
    "InMemoryPayoutRepository",
    "PayoutRepository",
    "FareSplit",
    "SettlementEngine",
    "SettlementResult",
]

# src/core/billing/models.py
"""
Модели выплат водителям.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from src.common.constants import PayoutStatus


class Payout(BaseModel):
    """Выплата водителю на банковский счёт."""
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    driver_id: str
    amount: float = Field(..., gt=0)
    currency: str = "NGN"
    status: PayoutStatus = PayoutStatus.HELD
    reason: Optional[str] = Field(None, description="Причина удержания или отказа")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    resolved_at: Optional[datetime] = None

    @property
    def is_resolved(self) -> bool:
        return self.status != PayoutStatus.HELD

# src/core/trips/active.py
"""
Реестр активных поездок пассажиров.

После завершения или отмены ссылка на поездку остаётся в реестре
ещё некоторое время (экран итогов), затем удаляется таймером.
Таймер отменяется, если пассажир начинает новую поездку,
и все таймеры снимаются при остановке сервиса.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from src.common.constants import TypeMsg
from src.common.logger import log_info


class ActiveTripRegistry:
    """Пассажир -> ID текущей поездки, с отложенным удалением."""

    def __init__(self, eviction_delay: float = 3.0) -> None:
        self._eviction_delay = eviction_delay
        self._active: dict[str, str] = {}
        self._timers: dict[str, asyncio.Task] = {}

    def get(self, rider_id: str) -> Optional[str]:
        return self._active.get(rider_id)

    def set_active(self, rider_id: str, trip_id: str) -> None:
        """Запоминает поездку пассажира и снимает ожидающее удаление."""
        self.cancel_eviction(rider_id)
        self._active[rider_id] = trip_id

    def schedule_eviction(self, rider_id: str, trip_id: str) -> asyncio.Task:
        """
        Запускает таймер удаления ссылки.
        Удаляется только если к тому моменту ссылка всё ещё указывает на trip_id.
        """
        self.cancel_eviction(rider_id)
        task = asyncio.create_task(self._evict_later(rider_id, trip_id))
        self._timers[rider_id] = task
        return task

    def cancel_eviction(self, rider_id: str) -> bool:
        task = self._timers.pop(rider_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def has_pending_eviction(self, rider_id: str) -> bool:
        task = self._timers.get(rider_id)
        return task is not None and not task.done()

    async def _evict_later(self, rider_id: str, trip_id: str) -> None:
        await asyncio.sleep(self._eviction_delay)
        if self._active.get(rider_id) == trip_id:
            del self._active[rider_id]
            await log_info(f"Поездка {trip_id} убрана из активных пассажира {rider_id}", type_msg=TypeMsg.DEBUG)
        self._timers.pop(rider_id, None)

    async def shutdown(self) -> None:
        """Отменяет все таймеры и дожидается их остановки."""
        tasks = list(self._timers.values())
        self._timers.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

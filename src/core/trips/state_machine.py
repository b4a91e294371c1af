# src/core/trips/state_machine.py
"""
Граф допустимых переходов поездки и правила по ролям.
"""

from __future__ import annotations

from src.common.constants import ActorRole, TripStatus
from src.common.exceptions import InvalidTransitionError, TransitionNotPermittedError


class TripStateMachine:
    """Чистые правила переходов; состояние хранит сервис поездок."""

    ALLOWED_TRANSITIONS: dict[TripStatus, frozenset[TripStatus]] = {
        TripStatus.REQUESTED: frozenset({TripStatus.CONFIRMED, TripStatus.IN_PROGRESS, TripStatus.CANCELLED}),
        TripStatus.CONFIRMED: frozenset({TripStatus.IN_PROGRESS, TripStatus.CANCELLED}),
        TripStatus.IN_PROGRESS: frozenset({TripStatus.COMPLETED}),
        TripStatus.COMPLETED: frozenset(),
        TripStatus.CANCELLED: frozenset(),
    }

    ROLE_PERMISSIONS: dict[TripStatus, frozenset[ActorRole]] = {
        TripStatus.CONFIRMED: frozenset({ActorRole.RIDER, ActorRole.ADMIN, ActorRole.SYSTEM}),
        TripStatus.IN_PROGRESS: frozenset({ActorRole.DRIVER, ActorRole.ADMIN, ActorRole.SYSTEM}),
        TripStatus.COMPLETED: frozenset({ActorRole.DRIVER, ActorRole.ADMIN, ActorRole.SYSTEM}),
        TripStatus.CANCELLED: frozenset({ActorRole.RIDER, ActorRole.DRIVER, ActorRole.ADMIN, ActorRole.SYSTEM}),
    }

    # Назначение водителя повторяемо, пока поездка не завершена
    ASSIGNABLE: frozenset[TripStatus] = frozenset({
        TripStatus.REQUESTED,
        TripStatus.CONFIRMED,
        TripStatus.IN_PROGRESS,
    })

    @staticmethod
    def can_transition(current: TripStatus, target: TripStatus) -> bool:
        return target in TripStateMachine.ALLOWED_TRANSITIONS.get(current, frozenset())

    @staticmethod
    def next_statuses(current: TripStatus) -> list[TripStatus]:
        """Допустимые следующие статусы (в порядке объявления)."""
        allowed = TripStateMachine.ALLOWED_TRANSITIONS.get(current, frozenset())
        return [status for status in TripStatus if status in allowed]

    @staticmethod
    def is_terminal(status: TripStatus) -> bool:
        return not TripStateMachine.ALLOWED_TRANSITIONS.get(status)

    @staticmethod
    def can_cancel(status: TripStatus) -> bool:
        """Отмена возможна только до начала поездки."""
        return status in (TripStatus.REQUESTED, TripStatus.CONFIRMED)

    @staticmethod
    def can_assign(status: TripStatus) -> bool:
        return status in TripStateMachine.ASSIGNABLE

    @staticmethod
    def ensure_transition(trip_id: str, current: TripStatus, target: TripStatus) -> None:
        """
        Raises:
            InvalidTransitionError: перехода нет в графе
        """
        if not TripStateMachine.can_transition(current, target):
            raise InvalidTransitionError(trip_id, current.value, target.value)

    @staticmethod
    def ensure_role(target: TripStatus, role: ActorRole) -> None:
        """
        Raises:
            TransitionNotPermittedError: роль не может выполнить переход
        """
        if role not in TripStateMachine.ROLE_PERMISSIONS.get(target, frozenset()):
            raise TransitionNotPermittedError(role.value, target.value)

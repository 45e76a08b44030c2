"""Request Lifecycle — машина состояний pending запроса.

- PENDING → EXECUTED / CANCELLED / REJECTED (терминальные)
- PENDING → PENDING (лимитная цена не достигнута, повтор на следующем тике)
- Из терминальных состояний переходов нет
- NOT_FOUND: запроса нет, переход не выполняется
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet

from src.core.domain.request import RequestStatus
from src.core.errors import InvalidInput


ALLOWED_TRANSITIONS: Dict[RequestStatus, FrozenSet[RequestStatus]] = {
    RequestStatus.PENDING: frozenset(
        {
            RequestStatus.PENDING,
            RequestStatus.EXECUTED,
            RequestStatus.CANCELLED,
            RequestStatus.REJECTED,
        }
    ),
    RequestStatus.EXECUTED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
    RequestStatus.REJECTED: frozenset(),
    RequestStatus.NOT_FOUND: frozenset(),
}


@dataclass(frozen=True)
class RequestTransitionResult:
    """Результат перехода состояния запроса."""

    new_status: RequestStatus
    previous_status: RequestStatus

    # Диагностика
    transition_occurred: bool
    transition_reason: str

    # Для отладки
    details: str


class RequestLifecycle:
    """Машина состояний запроса.

    Не хранит состояние между вызовами: текущий статус передаётся
    вызывающим кодом, результат описывает новый статус.
    """

    def evaluate_transition(
        self,
        current_status: RequestStatus,
        target_status: RequestStatus,
        reason: str,
        details: str = "",
    ) -> RequestTransitionResult:
        """Оценка и выполнение перехода.

        Args:
            current_status: текущий статус запроса
            target_status: целевой статус
            reason: машинно-читаемая причина перехода
            details: человеко-читаемые детали

        Returns:
            RequestTransitionResult с новым статусом

        Raises:
            InvalidInput: если переход не разрешён (выход из терминального статуса)
        """
        if target_status not in ALLOWED_TRANSITIONS[current_status]:
            raise InvalidInput(
                f"illegal request transition {current_status.value} → {target_status.value}"
            )

        return RequestTransitionResult(
            new_status=target_status,
            previous_status=current_status,
            transition_occurred=target_status != current_status,
            transition_reason=reason,
            details=details or f"{current_status.value} → {target_status.value}",
        )

    def request_not_found(self, details: str = "") -> RequestTransitionResult:
        """Исход для несуществующего запроса: статус NOT_FOUND, перехода нет."""
        return RequestTransitionResult(
            new_status=RequestStatus.NOT_FOUND,
            previous_status=RequestStatus.NOT_FOUND,
            transition_occurred=False,
            transition_reason="request_not_found",
            details=details,
        )

"""
PositionRequest — Модель pending запроса на изменение позиции

Immutable Pydantic модель. Запрос создаётся внешней стороной; оркестратор
только читает его и аннотирует price_impact во время исполнения. Запрос не
сохраняется дальше одной попытки исполнения.
"""

from enum import Enum
from typing import Final

from pydantic import BaseModel, Field

# Нулевой адрес: эквивалент "пустой" идентичности
ZERO_ADDRESS: Final[str] = "0x" + "0" * 40


# =============================================================================
# ENUMS
# =============================================================================


class RequestStatus(str, Enum):
    """
    Статус запроса.

    PENDING → {EXECUTED, CANCELLED, REJECTED} (терминальные)

    NOT_FOUND: исход попытки исполнить несуществующий запрос. Не состояние
    жизненного цикла: в него нет переходов и из него нет переходов.
    """

    PENDING = "PENDING"
    EXECUTED = "EXECUTED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"
    NOT_FOUND = "NOT_FOUND"

    @property
    def is_terminal(self) -> bool:
        return self is not RequestStatus.PENDING


# =============================================================================
# POSITION REQUEST MODEL
# =============================================================================


class PositionRequest(BaseModel):
    """
    Запрос на увеличение / уменьшение позиции.

    size_delta — в единицах index token (fixed-point),
    collateral_delta — в единицах collateral token (fixed-point),
    acceptable_price — лимитная цена (используется только для limit запросов).

    user не ограничен min_length: пустая / нулевая идентичность отклоняется
    при расчёте impact как InvalidInput.
    """

    user: str = Field(..., description="Инициатор запроса")
    index_token: str = Field(..., min_length=1, description="Индексный инструмент")
    collateral_token: str = Field(..., min_length=1, description="Токен залога")
    is_long: bool = Field(..., description="Направление")
    is_increase: bool = Field(..., description="Увеличение (True) или уменьшение (False)")
    size_delta: int = Field(..., ge=0, description="Изменение размера (index token)")
    collateral_delta: int = Field(..., ge=0, description="Изменение залога")
    acceptable_price: int = Field(0, ge=0, description="Лимитная цена")
    request_block: int = Field(..., ge=0, description="Блок, в котором создан запрос")
    price_impact: int = Field(0, description="Signed price impact (заполняется при исполнении)")

    model_config = {"frozen": True}

    def with_price_impact(self, price_impact: int) -> "PositionRequest":
        """Копия запроса с аннотированным price_impact."""
        return self.model_copy(update={"price_impact": price_impact})

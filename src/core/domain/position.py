"""
Position — Модель позиции на perpetual рынке

Immutable Pydantic модель. Все изменения позиции (размер, залог, средняя
цена, снапшоты аккумуляторов) создают новый экземпляр через model_copy,
т.е. применяются атомарно как один логический шаг.

Все величины — целые числа в fixed-point (1e18).
"""

from pydantic import BaseModel, Field


# =============================================================================
# NESTED MODELS
# =============================================================================


class BorrowParams(BaseModel):
    """
    Снапшот borrow аккумулятора на момент последнего касания позиции.

    fees_owed — уже реализованные, но ещё не списанные комиссии.
    """

    fees_owed: int = Field(0, ge=0, description="Реализованная, не списанная borrow fee")
    last_long_cumulative_borrow_fee: int = Field(
        0, ge=0, description="Long аккумулятор на момент касания"
    )
    last_short_cumulative_borrow_fee: int = Field(
        0, ge=0, description="Short аккумулятор на момент касания"
    )

    model_config = {"frozen": True}

    def last_cumulative(self, is_long: bool) -> int:
        """Снапшот аккумулятора для стороны."""
        return (
            self.last_long_cumulative_borrow_fee
            if is_long
            else self.last_short_cumulative_borrow_fee
        )


class FundingParams(BaseModel):
    """Снапшот funding аккумулятора на момент последнего касания позиции."""

    fees_owed: int = Field(0, ge=0, description="Реализованная, не списанная funding fee")
    last_long_cumulative_funding_fee: int = Field(
        0, ge=0, description="Long аккумулятор на момент касания"
    )
    last_short_cumulative_funding_fee: int = Field(
        0, ge=0, description="Short аккумулятор на момент касания"
    )
    last_funding_update: int = Field(0, ge=0, description="Время касания (unix sec)")

    model_config = {"frozen": True}

    def last_cumulative(self, is_long: bool) -> int:
        """Снапшот аккумулятора для стороны."""
        return (
            self.last_long_cumulative_funding_fee
            if is_long
            else self.last_short_cumulative_funding_fee
        )


# =============================================================================
# POSITION MODEL
# =============================================================================


class Position(BaseModel):
    """
    Модель позиции.

    Инварианты (проверяются на каждой мутации в src.trading.positions):
    - position_size > 0 пока позиция открыта
    - collateral_amount > 0 пока позиция открыта
    - leverage = size / collateral в [MIN_LEVERAGE, MAX_LEVERAGE]

    Позиция с position_size == 0 — закрытая запись, передаётся в storage
    для архивации.
    """

    # Идентификация
    index: int = Field(..., ge=0, description="Порядковый номер в рамках market + side")
    market: str = Field(..., min_length=1, description="Ключ рынка")
    index_token: str = Field(..., min_length=1, description="Индексный инструмент")
    collateral_token: str = Field(..., min_length=1, description="Токен залога")
    user: str = Field(..., min_length=1, description="Владелец позиции")

    # Размер
    collateral_amount: int = Field(..., ge=0, description="Залог")
    position_size: int = Field(..., ge=0, description="Размер в единицах index token")
    is_long: bool = Field(..., description="Направление позиции")
    average_price_per_token: int = Field(..., ge=0, description="Средняя цена входа")
    realised_pnl: int = Field(0, description="Реализованный PnL (может быть отрицательным)")

    # Комиссии
    borrow_params: BorrowParams = Field(default_factory=BorrowParams)
    funding_params: FundingParams = Field(default_factory=FundingParams)

    # Время
    entry_timestamp: int = Field(..., ge=0, description="Время открытия (unix sec)")

    model_config = {"frozen": True}

    @property
    def is_open(self) -> bool:
        """Позиция открыта, пока position_size > 0."""
        return self.position_size > 0

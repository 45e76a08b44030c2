"""
MarketSnapshot — Снапшот состояния рынка

Immutable Pydantic модель, представляющая чтение market state provider
в момент исполнения. Все расчёты комиссий и impact выполняются как чистые
функции над этим снапшотом, без мутации разделяемого состояния.

Все величины — целые числа в fixed-point (1e18).
"""

from pydantic import BaseModel, Field


# =============================================================================
# MARKET SNAPSHOT MODEL
# =============================================================================


class MarketSnapshot(BaseModel):
    """
    Снапшот рынка (пара index token / collateral token).

    Инварианты:
    - cumulative-аккумуляторы не убывают между чтениями
    - ставки неотрицательные
    """

    # Идентификация
    market_key: str = Field(..., description="Ключ рынка (digest пары index/collateral)")
    index_token: str = Field(..., min_length=1, description="Индексный инструмент")
    collateral_token: str = Field(..., min_length=1, description="Токен залога")

    # Borrowing
    long_cumulative_borrow_fee: int = Field(
        0, ge=0, description="Накопленная borrow fee на единицу размера (long)"
    )
    short_cumulative_borrow_fee: int = Field(
        0, ge=0, description="Накопленная borrow fee на единицу размера (short)"
    )
    long_borrowing_rate: int = Field(0, ge=0, description="Borrow rate в секунду (long)")
    short_borrowing_rate: int = Field(0, ge=0, description="Borrow rate в секунду (short)")
    last_borrow_update_time: int = Field(
        0, ge=0, description="Время последнего обновления borrow аккумулятора (unix sec)"
    )

    # Funding
    long_cumulative_funding_fee: int = Field(
        0, ge=0, description="Накопленная funding fee на единицу размера (long)"
    )
    short_cumulative_funding_fee: int = Field(
        0, ge=0, description="Накопленная funding fee на единицу размера (short)"
    )
    long_funding_rate: int = Field(0, ge=0, description="Funding rate в секунду (long)")
    short_funding_rate: int = Field(0, ge=0, description="Funding rate в секунду (short)")
    last_funding_update_time: int = Field(
        0, ge=0, description="Время последнего обновления funding аккумулятора (unix sec)"
    )

    # Price impact
    price_impact_exponent: int = Field(
        0, ge=0, description="Показатель степени power-law impact (fixed-point)"
    )
    price_impact_factor: int = Field(
        0, ge=0, description="Множитель power-law impact (fixed-point)"
    )

    model_config = {"frozen": True}

    def cumulative_borrow_fee(self, is_long: bool) -> int:
        """Borrow аккумулятор для стороны."""
        return self.long_cumulative_borrow_fee if is_long else self.short_cumulative_borrow_fee

    def borrowing_rate(self, is_long: bool) -> int:
        """Borrow rate для стороны."""
        return self.long_borrowing_rate if is_long else self.short_borrowing_rate

    def cumulative_funding_fee(self, is_long: bool) -> int:
        """Funding аккумулятор для стороны."""
        return self.long_cumulative_funding_fee if is_long else self.short_cumulative_funding_fee

    def funding_rate(self, is_long: bool) -> int:
        """Funding rate для стороны."""
        return self.long_funding_rate if is_long else self.short_funding_rate

"""
Trade Valuation — Чистые расчёты для построения и валидации позиции

- Плечо и его валидация в [MIN_LEVERAGE, MAX_LEVERAGE]
- Торговая комиссия
- Средняя цена входа (равновесное усреднение, half up)
- Детерминированные ключи запроса / позиции и рынка
- PnL позиции

ВАЖНО: blended_average_price — равновесное среднее двух цен, а НЕ
средневзвешенное по размеру. Поведение воспроизводится точно.
"""

import hashlib
from typing import Final

from src.core.domain.position import Position
from src.core.errors import InvalidInput, LeverageOutOfRange
from src.core.math.fixed_point import PRECISION, average, mul_div, mul_div_signed

# =============================================================================
# CONSTANTS
# =============================================================================

MIN_LEVERAGE: Final[int] = 1 * PRECISION
MAX_LEVERAGE: Final[int] = 50 * PRECISION


# =============================================================================
# LEVERAGE
# =============================================================================


def leverage(size: int, collateral: int) -> int:
    """
    Плечо size / collateral в fixed-point.

    Examples:
        >>> leverage(50 * PRECISION, PRECISION) == 50 * PRECISION
        True

    Raises:
        InvalidInput: Если collateral == 0
    """
    if collateral == 0:
        raise InvalidInput("collateral must be non-zero to compute leverage")
    return mul_div(size, PRECISION, collateral)


def validate_leverage(
    size: int,
    collateral: int,
    min_leverage: int = MIN_LEVERAGE,
    max_leverage: int = MAX_LEVERAGE,
) -> int:
    """
    Валидация плеча.

    Returns:
        Плечо в fixed-point

    Raises:
        LeverageOutOfRange: Если плечо вне [min_leverage, max_leverage]
            (в том числе при нулевом залоге)
    """
    if collateral == 0:
        raise LeverageOutOfRange(f"zero collateral for size {size}")

    ratio = leverage(size, collateral)
    if ratio < min_leverage or ratio > max_leverage:
        raise LeverageOutOfRange(
            f"leverage {ratio} outside [{min_leverage}, {max_leverage}]"
        )
    return ratio


# =============================================================================
# FEES & PRICES
# =============================================================================


def trading_fee(size_delta: int, fee_rate: int) -> int:
    """Торговая комиссия: size_delta * fee_rate / PRECISION."""
    return mul_div(size_delta, fee_rate, PRECISION)


def blended_average_price(prev_average: int, new_price: int) -> int:
    """Равновесное среднее предыдущей средней цены и новой цены (half up)."""
    return average(prev_average, new_price)


def pnl_for_size(average_price: int, price: int, size: int, is_long: bool) -> int:
    """
    Знаковый PnL для размера size при цене price.

    LONG:  (price - average_price) * size / PRECISION
    SHORT: (average_price - price) * size / PRECISION
    """
    price_delta = price - average_price if is_long else average_price - price
    return mul_div_signed(price_delta, size, PRECISION)


def position_pnl(position: Position, price: int) -> int:
    """Нереализованный PnL всей позиции при цене price."""
    return pnl_for_size(
        position.average_price_per_token, price, position.position_size, position.is_long
    )


# =============================================================================
# KEYS
# =============================================================================


def request_key(index_token: str, user: str, is_long: bool) -> str:
    """
    Детерминированный ключ запроса (и открытой позиции).

    Ключ не содержит nonce: два запроса одного пользователя по одному
    инструменту и стороне получают один и тот же ключ.
    """
    payload = f"{index_token.lower()}:{user.lower()}:{int(is_long)}"
    return hashlib.sha256(payload.encode()).hexdigest()


def market_key(index_token: str, collateral_token: str) -> str:
    """Детерминированный ключ рынка по паре index / collateral."""
    payload = f"{index_token.lower()}:{collateral_token.lower()}"
    return hashlib.sha256(payload.encode()).hexdigest()

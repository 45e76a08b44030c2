"""
Borrowing Fees — Ленивое начисление borrow fee по позиции

Начисление вычисляется при чтении: долговременно хранимый cumulative
аккумулятор рынка + дешёвая экстраполяция текущей ставки с момента
последнего обновления аккумулятора. Позиции не нужно пересчитывать
на каждом блоке.

ФОРМУЛЫ:
    pending       = rate(side) * (now - last_borrow_update_time)
    factor        = cumulative(side) + pending - position.last_cumulative(side)
    fees_since    = factor * position_size / PRECISION        (0 если factor == 0)
    total_owed    = fees_since + borrow_params.fees_owed
    size_change   = total_owed * collateral_delta / collateral_amount

Все функции — чистые функции над (MarketSnapshot, Position, current_time).
Сторона (long/short) выбирается один раз на вызов.
"""

from src.core.domain.market import MarketSnapshot
from src.core.domain.position import Position
from src.core.errors import InvalidInput
from src.core.math.fixed_point import PRECISION, mul_div, to_uint256


def pending_rate_fees(market: MarketSnapshot, is_long: bool, current_time: int) -> int:
    """
    Начисление по текущей ставке с момента последнего обновления аккумулятора.

    Возвращает процент-от-размера (fixed-point), а не абсолютную комиссию.

    Args:
        market: Снапшот рынка
        is_long: Сторона
        current_time: Текущее время (unix sec)

    Returns:
        rate * elapsed, либо 0 если rate или elapsed равны 0

    Raises:
        InvalidInput: Если current_time раньше last_borrow_update_time
        MathOverflow: Если произведение вне uint256
    """
    rate = market.borrowing_rate(is_long)
    elapsed = current_time - market.last_borrow_update_time

    if elapsed < 0:
        raise InvalidInput(
            f"current_time {current_time} precedes last borrow update "
            f"{market.last_borrow_update_time}"
        )

    if rate == 0 or elapsed == 0:
        return 0

    return to_uint256(rate * elapsed)


def borrow_fee_checkpoint(market: MarketSnapshot, is_long: bool, current_time: int) -> int:
    """
    Значение аккумулятора, фиксируемое в позиции при касании.

    Включает pending начисление, чтобы оно не учитывалось повторно при
    следующем чтении (пока рынок не свернул pending в аккумулятор).
    """
    return to_uint256(
        market.cumulative_borrow_fee(is_long) + pending_rate_fees(market, is_long, current_time)
    )


def fees_since_last_update(market: MarketSnapshot, position: Position, current_time: int) -> int:
    """
    Borrow fee, начисленная с последнего касания позиции (в токенах).

    Снапшот позиции уже включает pending на момент касания, поэтому
    диапазон проверяется только у полного factor.

    Raises:
        MathOverflow: Если снапшот позиции опережает cumulative + pending рынка
    """
    is_long = position.is_long
    factor = to_uint256(
        market.cumulative_borrow_fee(is_long)
        + pending_rate_fees(market, is_long, current_time)
        - position.borrow_params.last_cumulative(is_long)
    )

    if factor == 0:
        return 0

    return mul_div(factor, position.position_size, PRECISION)


def total_fees_owed(market: MarketSnapshot, position: Position, current_time: int) -> int:
    """Полная borrow fee позиции: начисленная + реализованная, но не списанная."""
    return to_uint256(
        fees_since_last_update(market, position, current_time) + position.borrow_params.fees_owed
    )


def fee_for_size_change(
    market: MarketSnapshot,
    position: Position,
    collateral_delta: int,
    current_time: int,
) -> int:
    """
    Доля total_fees_owed, пропорциональная collateral_delta / collateral_amount.

    Используется, когда выводится / списывается только часть залога.

    Raises:
        InvalidInput: Если у позиции нулевой залог
    """
    if position.collateral_amount == 0:
        raise InvalidInput("position has no collateral to prorate fees against")

    return mul_div(
        total_fees_owed(market, position, current_time),
        collateral_delta,
        position.collateral_amount,
    )

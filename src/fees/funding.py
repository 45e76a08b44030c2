"""
Funding Fees — Ленивое начисление funding fee по позиции

Та же схема, что и для borrow fee (src.fees.borrowing), применённая к
funding аккумуляторам рынка и снапшоту Position.funding_params.
Funding rate задаётся market state provider на основе skew open interest.
"""

from src.core.domain.market import MarketSnapshot
from src.core.domain.position import Position
from src.core.errors import InvalidInput
from src.core.math.fixed_point import PRECISION, mul_div, to_uint256


def pending_funding_fees(market: MarketSnapshot, is_long: bool, current_time: int) -> int:
    """
    funding_rate(side) * (now - last_funding_update_time), либо 0.

    Raises:
        InvalidInput: Если current_time раньше last_funding_update_time
    """
    rate = market.funding_rate(is_long)
    elapsed = current_time - market.last_funding_update_time

    if elapsed < 0:
        raise InvalidInput(
            f"current_time {current_time} precedes last funding update "
            f"{market.last_funding_update_time}"
        )

    if rate == 0 or elapsed == 0:
        return 0

    return to_uint256(rate * elapsed)


def funding_fee_checkpoint(market: MarketSnapshot, is_long: bool, current_time: int) -> int:
    """Funding аккумулятор + pending, фиксируемый в позиции при касании."""
    return to_uint256(
        market.cumulative_funding_fee(is_long) + pending_funding_fees(market, is_long, current_time)
    )


def funding_fees_since_last_update(
    market: MarketSnapshot, position: Position, current_time: int
) -> int:
    """Funding fee, начисленная с последнего касания позиции (в токенах)."""
    is_long = position.is_long
    factor = to_uint256(
        market.cumulative_funding_fee(is_long)
        + pending_funding_fees(market, is_long, current_time)
        - position.funding_params.last_cumulative(is_long)
    )

    if factor == 0:
        return 0

    return mul_div(factor, position.position_size, PRECISION)


def total_funding_owed(market: MarketSnapshot, position: Position, current_time: int) -> int:
    """Полная funding fee позиции: начисленная + реализованная, но не списанная."""
    return to_uint256(
        funding_fees_since_last_update(market, position, current_time)
        + position.funding_params.fees_owed
    )


def funding_fee_for_size_change(
    market: MarketSnapshot,
    position: Position,
    collateral_delta: int,
    current_time: int,
) -> int:
    """Доля total_funding_owed, пропорциональная collateral_delta / collateral_amount."""
    if position.collateral_amount == 0:
        raise InvalidInput("position has no collateral to prorate fees against")

    return mul_div(
        total_funding_owed(market, position, current_time),
        collateral_delta,
        position.collateral_amount,
    )

"""Trading — оценка сделок и построение / мутация позиций."""

from src.trading.positions import (
    DecreaseResult,
    build_position,
    decrease_position,
    increase_position,
)
from src.trading.valuation import (
    MAX_LEVERAGE,
    MIN_LEVERAGE,
    blended_average_price,
    leverage,
    market_key,
    pnl_for_size,
    position_pnl,
    request_key,
    trading_fee,
    validate_leverage,
)

__all__ = [
    # Valuation
    "MAX_LEVERAGE",
    "MIN_LEVERAGE",
    "blended_average_price",
    "leverage",
    "market_key",
    "pnl_for_size",
    "position_pnl",
    "request_key",
    "trading_fee",
    "validate_leverage",
    # Positions
    "DecreaseResult",
    "build_position",
    "decrease_position",
    "increase_position",
]

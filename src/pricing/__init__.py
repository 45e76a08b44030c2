"""Pricing — power-law price impact и проверка проскальзывания."""

from src.pricing.price_impact import (
    MAX_PRICE_IMPACT_FRACTION,
    PriceImpactConfig,
    PriceImpactEngine,
    PriceImpactResult,
    apply_impact,
    check_slippage,
    compute_price_impact,
)

__all__ = [
    "MAX_PRICE_IMPACT_FRACTION",
    "PriceImpactConfig",
    "PriceImpactEngine",
    "PriceImpactResult",
    "apply_impact",
    "check_slippage",
    "compute_price_impact",
]

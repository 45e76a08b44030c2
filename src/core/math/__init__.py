"""
Core math modules

Целочисленная арифметика с фиксированной точкой (1e18) и гарантией
отсутствия переполнений.
"""

from src.core.math.fixed_point import (
    # Constants
    BPS_DENOMINATOR,
    MAX_INT256,
    MAX_UINT256,
    MIN_INT256,
    PRECISION,
    # Range checks
    to_int256,
    to_uint256,
    # Multiplication / division
    average,
    div,
    mul,
    mul_div,
    mul_div_round,
    mul_div_signed,
    pow_fixed,
    # Utilities
    bps_to_fraction,
    clamp,
    # Validation
    validate_non_negative,
    validate_positive,
)

__all__ = [
    # Fixed Point: Constants
    "BPS_DENOMINATOR",
    "MAX_INT256",
    "MAX_UINT256",
    "MIN_INT256",
    "PRECISION",
    # Fixed Point: Range checks
    "to_int256",
    "to_uint256",
    # Fixed Point: Multiplication / division
    "average",
    "div",
    "mul",
    "mul_div",
    "mul_div_round",
    "mul_div_signed",
    "pow_fixed",
    # Fixed Point: Utilities
    "bps_to_fraction",
    "clamp",
    # Fixed Point: Validation
    "validate_non_negative",
    "validate_positive",
]

"""
Fixed Point — Детерминированная арифметика с фиксированной точкой (18 знаков)

Все денежные величины и ставки — целые числа, масштабированные на 1e18
("одна единица точности"). Модуль обеспечивает:
- Умножение/деление с явным округлением (по умолчанию — усечение к нулю)
- Округление half-up (используется только для усреднения цен)
- Возведение в степень с дробным показателем (power-law impact)
- Проверку диапазона uint256 / int256 с ошибкой MathOverflow

КРИТИЧЕСКИЕ ИНВАРИАНТЫ:
1. Переполнение никогда не "заворачивается" — всегда MathOverflow
2. Деление на ноль → InvalidInput
3. Все операции детерминированы и воспроизводимы (только int / Decimal)
"""

import decimal
from decimal import ROUND_DOWN, Decimal
from typing import Final

from src.core.errors import InvalidInput, MathOverflow

# =============================================================================
# КОНСТАНТЫ ТОЧНОСТИ И ДИАПАЗОНА
# =============================================================================

# Одна единица точности (1.0 в fixed-point)
PRECISION: Final[int] = 10**18

# Базисный пункт в долях (10_000 bps = 100%)
BPS_DENOMINATOR: Final[int] = 10_000

# Представимый диапазон
MAX_UINT256: Final[int] = 2**256 - 1
MAX_INT256: Final[int] = 2**255 - 1
MIN_INT256: Final[int] = -(2**255)

# Точность Decimal для pow_fixed (uint256 занимает 78 десятичных знаков)
_POW_DECIMAL_PRECISION: Final[int] = 120


# =============================================================================
# ПРОВЕРКИ ДИАПАЗОНА
# =============================================================================


def to_uint256(value: int) -> int:
    """
    Проверка, что значение представимо как uint256.

    Raises:
        MathOverflow: Если value < 0 или value > MAX_UINT256
    """
    if value < 0 or value > MAX_UINT256:
        raise MathOverflow(f"value {value} out of uint256 range")
    return value


def to_int256(value: int) -> int:
    """
    Проверка, что значение представимо как int256.

    Raises:
        MathOverflow: Если value вне [MIN_INT256, MAX_INT256]
    """
    if value < MIN_INT256 or value > MAX_INT256:
        raise MathOverflow(f"value {value} out of int256 range")
    return value


# =============================================================================
# УМНОЖЕНИЕ И ДЕЛЕНИЕ
# =============================================================================


def _div_toward_zero(numerator: int, denominator: int) -> int:
    if denominator == 0:
        raise InvalidInput("division by zero")

    quotient = abs(numerator) // abs(denominator)
    if (numerator < 0) != (denominator < 0):
        return -quotient
    return quotient


def mul_div(x: int, y: int, denominator: int) -> int:
    """
    Беззнаковое x * y / denominator с усечением к нулю.

    Промежуточное произведение не ограничено (как mulDiv с 512-битным
    промежуточным значением), проверяется только результат.

    Args:
        x: Множитель
        y: Множитель
        denominator: Делитель (не ноль)

    Returns:
        Результат в диапазоне uint256

    Raises:
        InvalidInput: Если denominator == 0
        MathOverflow: Если результат вне uint256

    Examples:
        >>> mul_div(3 * PRECISION, 2 * PRECISION, PRECISION) == 6 * PRECISION
        True
        >>> mul_div(10, 1, 3)
        3
    """
    return to_uint256(_div_toward_zero(x * y, denominator))


def mul_div_signed(x: int, y: int, denominator: int) -> int:
    """
    Знаковое x * y / denominator с усечением к нулю.

    Examples:
        >>> mul_div_signed(-10, 1, 3)
        -3
    """
    return to_int256(_div_toward_zero(x * y, denominator))


def mul_div_round(x: int, y: int, denominator: int) -> int:
    """
    Беззнаковое x * y / denominator с округлением half up.

    Raises:
        InvalidInput: Если denominator <= 0 или аргументы отрицательные
        MathOverflow: Если результат вне uint256
    """
    if denominator <= 0:
        raise InvalidInput(f"denominator must be positive, got {denominator}")
    if x < 0 or y < 0:
        raise InvalidInput(f"mul_div_round expects non-negative operands, got {x}, {y}")

    return to_uint256((x * y + denominator // 2) // denominator)


def mul(a: int, b: int) -> int:
    """Fixed-point произведение: a * b / PRECISION."""
    return mul_div(a, b, PRECISION)


def div(a: int, b: int) -> int:
    """Fixed-point частное: a * PRECISION / b."""
    return mul_div(a, PRECISION, b)


def average(a: int, b: int) -> int:
    """
    Среднее арифметическое с округлением half up.

    Examples:
        >>> average(1, 2)
        2
        >>> average(2000, 2100)
        2050
    """
    to_uint256(a)
    to_uint256(b)
    return to_uint256((a + b + 1) // 2)


# =============================================================================
# ВОЗВЕДЕНИЕ В СТЕПЕНЬ
# =============================================================================


def pow_fixed(x: int, y: int) -> int:
    """
    Возведение в степень в fixed-point: (x / 1e18) ^ (y / 1e18).

    Используется для power-law модели price impact, где показатель
    может быть дробным (например 1.5e18).

    Args:
        x: Основание (fixed-point, >= 0)
        y: Показатель (fixed-point, >= 0)

    Returns:
        Результат в fixed-point, усечённый к нулю

    Raises:
        InvalidInput: Если x или y отрицательные
        MathOverflow: Если результат вне uint256

    Examples:
        >>> pow_fixed(4 * PRECISION, PRECISION // 2) == 2 * PRECISION
        True
        >>> pow_fixed(0, 2 * PRECISION)
        0
        >>> pow_fixed(123, 0) == PRECISION
        True
    """
    if x < 0 or y < 0:
        raise InvalidInput(f"pow_fixed expects non-negative operands, got {x}, {y}")

    if y == 0:
        return PRECISION
    if x == 0:
        return 0

    with decimal.localcontext() as ctx:
        ctx.prec = _POW_DECIMAL_PRECISION
        ctx.Emax = decimal.MAX_EMAX
        ctx.Emin = decimal.MIN_EMIN
        try:
            base = Decimal(x).scaleb(-18)
            exponent = Decimal(y).scaleb(-18)
            result = (base**exponent).scaleb(18)
        except decimal.Overflow as e:
            raise MathOverflow(f"pow_fixed overflow: x={x}, y={y}") from e

        if result > MAX_UINT256:
            raise MathOverflow(f"pow_fixed result out of uint256 range: x={x}, y={y}")

        return int(result.to_integral_value(rounding=ROUND_DOWN))


# =============================================================================
# УТИЛИТЫ
# =============================================================================


def bps_to_fraction(bps: int) -> int:
    """
    Конверсия basis points в fixed-point долю.

    Examples:
        >>> bps_to_fraction(100) == PRECISION // 100
        True
    """
    return mul_div(bps, PRECISION, BPS_DENOMINATOR)


def clamp(
    value: int,
    min_value: int | None = None,
    max_value: int | None = None,
) -> int:
    """
    Ограничение значения в заданном диапазоне.

    Examples:
        >>> clamp(5, 0, 10)
        5
        >>> clamp(-1, 0, 10)
        0
        >>> clamp(15, 0, 10)
        10
    """
    result = value

    if min_value is not None:
        result = max(result, min_value)

    if max_value is not None:
        result = min(result, max_value)

    return result


# =============================================================================
# ВАЛИДАЦИЯ
# =============================================================================


def validate_positive(value: int, name: str) -> None:
    """
    Валидация, что значение строго положительное.

    Raises:
        InvalidInput: Если value <= 0
    """
    if value <= 0:
        raise InvalidInput(f"{name} must be positive, got {value}")


def validate_non_negative(value: int, name: str) -> None:
    """
    Валидация, что значение неотрицательное.

    Raises:
        InvalidInput: Если value < 0
    """
    if value < 0:
        raise InvalidInput(f"{name} must be non-negative, got {value}")

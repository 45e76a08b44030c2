"""
Price Impact — Power-law impact от изменения skew open interest

Impact моделируется как функция того, насколько запрос сдвигает чистый
skew (long OI - short OI), а не как функция сырого изменения OI:
long запросы сдвигают skew вверх, short — вниз, независимо от того,
увеличивается или уменьшается позиция.

ФОРМУЛЫ:
    size_delta_usd = size_delta * reference_price / PRECISION
    skew_before    = long_oi - short_oi
    skew_after     = skew_before + size_delta_usd   (long)
                   = skew_before - size_delta_usd   (short)
    impact         = factor * (|skew_before|^exp - |skew_after|^exp) / PRECISION
    impact         = clamp(impact, -max_impact, +max_impact),
    max_impact     = reference_price * max_impact_fraction (0.33)

Знак: положительный, если дисбаланс уменьшается; отрицательный, если растёт.

КРИТИЧЕСКИЕ ИНВАРИАНТЫ:
1. |impact| <= 0.33 * reference_price
2. skew_before == skew_after → impact == 0
3. Переполнение при возведении в степень → MathOverflow
"""

import logging
from dataclasses import dataclass
from typing import Final

from src.core.domain.market import MarketSnapshot
from src.core.domain.request import ZERO_ADDRESS, PositionRequest
from src.core.errors import InvalidInput, SlippageExceeded
from src.core.interfaces import MarketRegistry
from src.core.math.fixed_point import (
    PRECISION,
    bps_to_fraction,
    clamp,
    mul_div,
    mul_div_signed,
    pow_fixed,
    to_uint256,
)

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

# Максимальный impact в долях reference price (33%)
MAX_PRICE_IMPACT_FRACTION: Final[int] = 33 * PRECISION // 100


# =============================================================================
# CONFIG
# =============================================================================


@dataclass(frozen=True)
class PriceImpactConfig:
    """Конфигурация price impact."""

    max_impact_fraction: int = MAX_PRICE_IMPACT_FRACTION


# =============================================================================
# RESULT
# =============================================================================


@dataclass(frozen=True)
class PriceImpactResult:
    """Результат расчёта price impact."""

    price_impact: int  # Signed, в единицах цены

    # Диагностика
    size_delta_usd: int
    skew_before: int
    skew_after: int
    long_oi_after: int
    short_oi_after: int
    max_impact: int
    was_clamped: bool


# =============================================================================
# PURE CORE
# =============================================================================


def compute_price_impact(
    long_oi_usd: int,
    short_oi_usd: int,
    size_delta: int,
    is_long: bool,
    is_increase: bool,
    reference_price: int,
    exponent: int,
    factor: int,
    max_impact_fraction: int = MAX_PRICE_IMPACT_FRACTION,
) -> PriceImpactResult:
    """
    Чистый численный расчёт impact по open interest и параметрам модели.

    Args:
        long_oi_usd: Long open interest (USD, fixed-point)
        short_oi_usd: Short open interest (USD, fixed-point)
        size_delta: Изменение размера (index token)
        is_long: Сторона запроса
        is_increase: Увеличение / уменьшение
        reference_price: Подписанная цена (fixed-point)
        exponent: Показатель степени (fixed-point)
        factor: Множитель (fixed-point)
        max_impact_fraction: Доля reference price для clamp

    Returns:
        PriceImpactResult со знаковым impact и диагностикой
    """
    size_delta_usd = mul_div(size_delta, reference_price, PRECISION)

    skew_before = long_oi_usd - short_oi_usd

    # Post-trade OI на стороне запроса (уменьшение не уходит ниже нуля)
    long_oi_after = long_oi_usd
    short_oi_after = short_oi_usd
    if is_increase:
        if is_long:
            long_oi_after = long_oi_usd + size_delta_usd
        else:
            short_oi_after = short_oi_usd + size_delta_usd
    else:
        if is_long:
            long_oi_after = clamp(long_oi_usd - size_delta_usd, min_value=0)
        else:
            short_oi_after = clamp(short_oi_usd - size_delta_usd, min_value=0)

    # Направление skew_after определяется стороной запроса
    skew_after = skew_before + size_delta_usd if is_long else skew_before - size_delta_usd

    before_pow = pow_fixed(abs(skew_before), exponent)
    after_pow = pow_fixed(abs(skew_after), exponent)
    raw_impact = mul_div_signed(factor, before_pow - after_pow, PRECISION)

    max_impact = mul_div(reference_price, max_impact_fraction, PRECISION)
    price_impact = clamp(raw_impact, -max_impact, max_impact)

    return PriceImpactResult(
        price_impact=price_impact,
        size_delta_usd=size_delta_usd,
        skew_before=skew_before,
        skew_after=skew_after,
        long_oi_after=long_oi_after,
        short_oi_after=short_oi_after,
        max_impact=max_impact,
        was_clamped=price_impact != raw_impact,
    )


# =============================================================================
# ENGINE
# =============================================================================


class PriceImpactEngine:
    """
    Расчёт price impact для pending запроса.

    Порядок:
    1. Валидация входов (reference price, market key, пользователь)
    2. Чтение long/short OI (USD) из реестра
    3. Расчёт impact через compute_price_impact
    """

    def __init__(self, config: PriceImpactConfig | None = None):
        self.config = config or PriceImpactConfig()

    def calculate_impact(
        self,
        market: MarketSnapshot,
        request: PositionRequest,
        reference_price: int,
        open_interest: MarketRegistry,
    ) -> PriceImpactResult:
        """
        Знаковый price impact запроса.

        Raises:
            InvalidInput: Если reference price == 0, market key пуст или
                пользователь пуст / нулевой адрес
            MathOverflow: Если возведение skew в степень переполняется
        """
        if reference_price == 0:
            raise InvalidInput("reference price must be non-zero")
        if not market.market_key:
            raise InvalidInput("market key must be non-empty")
        if not request.user or request.user == ZERO_ADDRESS:
            raise InvalidInput("request user must be non-empty")

        long_oi_usd = open_interest.open_interest_usd(market.index_token, True)
        short_oi_usd = open_interest.open_interest_usd(market.index_token, False)

        result = compute_price_impact(
            long_oi_usd=long_oi_usd,
            short_oi_usd=short_oi_usd,
            size_delta=request.size_delta,
            is_long=request.is_long,
            is_increase=request.is_increase,
            reference_price=reference_price,
            exponent=market.price_impact_exponent,
            factor=market.price_impact_factor,
            max_impact_fraction=self.config.max_impact_fraction,
        )

        logger.debug(
            "price impact market=%s skew_before=%d skew_after=%d impact=%d clamped=%s",
            market.market_key,
            result.skew_before,
            result.skew_after,
            result.price_impact,
            result.was_clamped,
        )
        return result


# =============================================================================
# EXECUTION PRICE
# =============================================================================


def apply_impact(reference_price: int, signed_impact: int) -> int:
    """
    Execution price: reference_price + impact (impact >= 0),
    иначе reference_price - |impact|.

    Raises:
        InvalidInput: Если reference_price == 0
        MathOverflow: Если результат вне uint256
    """
    if reference_price == 0:
        raise InvalidInput("reference price must be non-zero")

    if signed_impact >= 0:
        return to_uint256(reference_price + signed_impact)
    return to_uint256(reference_price - abs(signed_impact))


def check_slippage(execution_price: int, reference_price: int, max_slippage_bps: int) -> int:
    """
    Проверка проскальзывания: slippage = 1 - execution_price / reference_price.

    Проверка односторонняя: "хуже" соответствует положительному результату.
    Вызывающий код ориентирует аргументы под сторону сделки.

    Returns:
        Знаковое проскальзывание (fixed-point доля)

    Raises:
        InvalidInput: Если reference_price == 0
        SlippageExceeded: Если проскальзывание выше допуска
    """
    if reference_price == 0:
        raise InvalidInput("reference price must be non-zero")

    slippage = PRECISION - mul_div(execution_price, PRECISION, reference_price)
    max_slippage = bps_to_fraction(max_slippage_bps)

    if slippage > max_slippage:
        raise SlippageExceeded(
            f"slippage {slippage} exceeds tolerance {max_slippage} ({max_slippage_bps} bps)"
        )

    return slippage

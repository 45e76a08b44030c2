"""
Positions — Построение и мутация позиции при исполнении запроса

Каждая мутация возвращает новый экземпляр Position (frozen модель):
размер, залог, средняя цена и снапшоты borrow/funding аккумуляторов
обновляются атомарно как один логический шаг.

При каждом касании позиции:
- начисленные с прошлого касания комиссии сворачиваются в fees_owed
- снапшоты аккумуляторов переставляются на cumulative + pending
- плечо валидируется, пока позиция остаётся открытой
"""

from dataclasses import dataclass

from src.core.domain.market import MarketSnapshot
from src.core.domain.position import BorrowParams, FundingParams, Position
from src.core.domain.request import PositionRequest
from src.core.errors import InsufficientPositionSize, InvalidInput
from src.fees.borrowing import borrow_fee_checkpoint, fee_for_size_change, total_fees_owed
from src.fees.funding import (
    funding_fee_checkpoint,
    funding_fee_for_size_change,
    total_funding_owed,
)
from src.trading.valuation import (
    MAX_LEVERAGE,
    MIN_LEVERAGE,
    blended_average_price,
    pnl_for_size,
    validate_leverage,
)


@dataclass(frozen=True)
class DecreaseResult:
    """Результат уменьшения позиции."""

    position: Position
    borrow_fee_charged: int
    funding_fee_charged: int
    realised_pnl_delta: int


def _borrow_params(market: MarketSnapshot, fees_owed: int, current_time: int) -> BorrowParams:
    return BorrowParams(
        fees_owed=fees_owed,
        last_long_cumulative_borrow_fee=borrow_fee_checkpoint(market, True, current_time),
        last_short_cumulative_borrow_fee=borrow_fee_checkpoint(market, False, current_time),
    )


def _funding_params(market: MarketSnapshot, fees_owed: int, current_time: int) -> FundingParams:
    return FundingParams(
        fees_owed=fees_owed,
        last_long_cumulative_funding_fee=funding_fee_checkpoint(market, True, current_time),
        last_short_cumulative_funding_fee=funding_fee_checkpoint(market, False, current_time),
        last_funding_update=current_time,
    )


def build_position(
    request: PositionRequest,
    execution_price: int,
    next_index: int,
    market: MarketSnapshot,
    current_time: int,
    min_leverage: int = MIN_LEVERAGE,
    max_leverage: int = MAX_LEVERAGE,
) -> Position:
    """
    Новая позиция из запроса на увеличение.

    realised_pnl и оба fees_owed обнуляются, снапшоты аккумуляторов берутся
    из свежего снапшота рынка, entry_timestamp = current_time.

    Raises:
        LeverageOutOfRange: Если size_delta / collateral_delta вне диапазона
    """
    validate_leverage(request.size_delta, request.collateral_delta, min_leverage, max_leverage)

    return Position(
        index=next_index,
        market=market.market_key,
        index_token=request.index_token,
        collateral_token=request.collateral_token,
        user=request.user,
        collateral_amount=request.collateral_delta,
        position_size=request.size_delta,
        is_long=request.is_long,
        average_price_per_token=execution_price,
        realised_pnl=0,
        borrow_params=_borrow_params(market, 0, current_time),
        funding_params=_funding_params(market, 0, current_time),
        entry_timestamp=current_time,
    )


def increase_position(
    position: Position,
    request: PositionRequest,
    execution_price: int,
    market: MarketSnapshot,
    current_time: int,
    min_leverage: int = MIN_LEVERAGE,
    max_leverage: int = MAX_LEVERAGE,
) -> Position:
    """
    Увеличение существующей позиции.

    Средняя цена — равновесное среднее предыдущей и execution price.
    """
    new_size = position.position_size + request.size_delta
    new_collateral = position.collateral_amount + request.collateral_delta
    validate_leverage(new_size, new_collateral, min_leverage, max_leverage)

    borrow_owed = total_fees_owed(market, position, current_time)
    funding_owed = total_funding_owed(market, position, current_time)

    return position.model_copy(
        update={
            "position_size": new_size,
            "collateral_amount": new_collateral,
            "average_price_per_token": blended_average_price(
                position.average_price_per_token, execution_price
            ),
            "borrow_params": _borrow_params(market, borrow_owed, current_time),
            "funding_params": _funding_params(market, funding_owed, current_time),
        }
    )


def decrease_position(
    position: Position,
    request: PositionRequest,
    execution_price: int,
    market: MarketSnapshot,
    current_time: int,
    min_leverage: int = MIN_LEVERAGE,
    max_leverage: int = MAX_LEVERAGE,
) -> DecreaseResult:
    """
    Уменьшение существующей позиции.

    - borrow / funding комиссии списываются пропорционально collateral_delta
    - при полном закрытии списывается весь долг и весь залог, независимо от collateral_delta
    - PnL реализуется на уменьшаемом размере по execution price
    - плечо валидируется, если позиция остаётся открытой

    Raises:
        InsufficientPositionSize: Если position_size < size_delta
        InvalidInput: Если collateral_delta больше залога позиции
        LeverageOutOfRange: Если остаток позиции вне диапазона плеча
    """
    if position.position_size < request.size_delta:
        raise InsufficientPositionSize(
            f"position size {position.position_size} < size delta {request.size_delta}"
        )
    if request.collateral_delta > position.collateral_amount:
        raise InvalidInput(
            f"collateral delta {request.collateral_delta} exceeds collateral "
            f"{position.collateral_amount}"
        )

    new_size = position.position_size - request.size_delta
    borrow_owed = total_fees_owed(market, position, current_time)
    funding_owed = total_funding_owed(market, position, current_time)

    if new_size == 0:
        # Полное закрытие: весь долг погашается, залог выводится целиком
        borrow_charged = borrow_owed
        funding_charged = funding_owed
        new_collateral = 0
    else:
        borrow_charged = fee_for_size_change(
            market, position, request.collateral_delta, current_time
        )
        funding_charged = funding_fee_for_size_change(
            market, position, request.collateral_delta, current_time
        )
        new_collateral = position.collateral_amount - request.collateral_delta
        validate_leverage(new_size, new_collateral, min_leverage, max_leverage)

    pnl_delta = pnl_for_size(
        position.average_price_per_token, execution_price, request.size_delta, position.is_long
    )

    updated = position.model_copy(
        update={
            "position_size": new_size,
            "collateral_amount": new_collateral,
            "realised_pnl": position.realised_pnl + pnl_delta,
            "borrow_params": _borrow_params(market, borrow_owed - borrow_charged, current_time),
            "funding_params": _funding_params(
                market, funding_owed - funding_charged, current_time
            ),
        }
    )

    return DecreaseResult(
        position=updated,
        borrow_fee_charged=borrow_charged,
        funding_fee_charged=funding_charged,
        realised_pnl_delta=pnl_delta,
    )

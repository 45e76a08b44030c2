"""Trade Execution Orchestrator — исполнение pending запроса в изменение позиции.

Порядок шагов execute_request:
1. Поиск запроса по ключу (нет → RequestNotFound), валидация контракта,
   разрешение рынка по паре index / collateral
2. Reference price для request_block (0 / None → CANCELLED, не ошибка)
3. Лимитные запросы: long ref <= acceptable, short ref >= acceptable
   (иначе LimitNotMet, запрос остаётся PENDING)
4. Price impact и execution price (+ опциональная проверка slippage)
5. Уменьшение: размер существующей позиции >= size_delta
   (иначе InsufficientPositionSize)
6. Построение / мутация позиции, сохранение через store → EXECUTED
7. Обновление рыночного состояния строго в порядке:
   open interest → funding rate → borrowing rate → weighted-average entry price

Шаги 1 и 5 — жёсткие отказы без частичных изменений состояния.
Атомарность шагов 6-7 обеспечивается транзакционной границей вызывающего
кода (unit_of_work в execute_batch).
"""

import contextlib
import logging
import threading
from dataclasses import dataclass
from typing import Callable, ContextManager, Iterable, List, Optional, Set, Tuple

from jsonschema import ValidationError

from src.core.contracts import validate_position_request
from src.core.domain.market import MarketSnapshot
from src.core.domain.position import Position
from src.core.domain.request import PositionRequest, RequestStatus
from src.core.errors import (
    InsufficientPositionSize,
    InvalidInput,
    LimitNotMet,
    RequestConflict,
    RequestNotFound,
    TradeExecutionError,
)
from src.core.interfaces import (
    MarketRegistry,
    MarketStateProvider,
    PositionStore,
    PriceReferenceProvider,
)
from src.core.math.fixed_point import PRECISION
from src.execution.lifecycle import RequestLifecycle, RequestTransitionResult
from src.pricing.price_impact import PriceImpactEngine, apply_impact, check_slippage
from src.trading.positions import build_position, decrease_position, increase_position
from src.trading.valuation import MAX_LEVERAGE, MIN_LEVERAGE, request_key, trading_fee

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIG
# =============================================================================


@dataclass(frozen=True)
class ExecutionConfig:
    """Конфигурация исполнения."""

    min_leverage: int = MIN_LEVERAGE
    max_leverage: int = MAX_LEVERAGE

    # Торговая комиссия в долях size_delta (0.1%)
    trading_fee_rate: int = PRECISION // 1000

    # None: проверка проскальзывания отключена
    max_slippage_bps: Optional[int] = None

    # Валидация запроса против JSON Schema контракта перед исполнением
    validate_contracts: bool = True


# =============================================================================
# RESULTS
# =============================================================================


@dataclass(frozen=True)
class TradeParams:
    """Параметры исполненной сделки, передаваемые в PositionStore.execute_trade."""

    key: str
    is_limit: bool
    market_key: str
    position_key: str
    request: PositionRequest  # с аннотированным price_impact
    position: Position  # состояние после исполнения (size == 0 → закрыта)
    reference_price: int
    execution_price: int
    price_impact: int
    size_delta_usd: int
    trading_fee: int
    borrow_fee_charged: int = 0
    funding_fee_charged: int = 0
    realised_pnl_delta: int = 0


@dataclass(frozen=True)
class ExecutionOutcome:
    """Исход одной попытки исполнения запроса."""

    key: str
    is_limit: bool
    status: RequestStatus
    transition: RequestTransitionResult

    position: Optional[Position] = None
    reference_price: Optional[int] = None
    execution_price: Optional[int] = None
    price_impact: Optional[int] = None

    # Ошибка (для PENDING / REJECTED исходов batch-драйвера)
    error_type: Optional[str] = None
    error: Optional[str] = None


# =============================================================================
# ORCHESTRATOR
# =============================================================================


class TradeExecutionOrchestrator:
    """Оркестратор исполнения pending запросов.

    Расчётное ядро однопоточное и без побочных эффектов, кроме явных
    мутаций коллабораторов на шаге 7. Оркестратор гарантирует не более
    одной попытки исполнения на ключ в рамках процесса; межпроцессное
    исключение — ответственность storage.
    """

    def __init__(
        self,
        store: PositionStore,
        registry: MarketRegistry,
        prices: PriceReferenceProvider,
        config: Optional[ExecutionConfig] = None,
        impact_engine: Optional[PriceImpactEngine] = None,
        unit_of_work: Optional[Callable[[], ContextManager]] = None,
    ):
        """
        Args:
            store: хранилище запросов и позиций
            registry: реестр рынков и open interest
            prices: провайдер подписанных цен
            config: конфигурация исполнения
            impact_engine: движок price impact
            unit_of_work: фабрика транзакционной границы для execute_batch
        """
        self.store = store
        self.registry = registry
        self.prices = prices
        self.config = config or ExecutionConfig()
        self.impact_engine = impact_engine or PriceImpactEngine()
        self._unit_of_work = unit_of_work or contextlib.nullcontext

        self._lifecycle = RequestLifecycle()
        self._in_flight: Set[str] = set()
        self._in_flight_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Single request
    # -------------------------------------------------------------------------

    def execute_request(self, key: str, is_limit: bool, current_time: int) -> ExecutionOutcome:
        """Исполнение одного pending запроса.

        Args:
            key: ключ запроса (request_key)
            is_limit: лимитный (True) или рыночный запрос
            current_time: текущее время (unix sec)

        Returns:
            ExecutionOutcome со статусом EXECUTED или CANCELLED

        Raises:
            RequestConflict: ключ уже исполняется
            RequestNotFound: запроса нет
            LimitNotMet: лимитная цена не достигнута
            InsufficientPositionSize: уменьшение больше размера позиции
            TradeExecutionError: прочие ошибки расчёта
        """
        with self._in_flight_lock:
            if key in self._in_flight:
                raise RequestConflict(f"request {key} is already executing")
            self._in_flight.add(key)

        try:
            return self._execute(key, is_limit, current_time)
        finally:
            with self._in_flight_lock:
                self._in_flight.discard(key)

    def _execute(self, key: str, is_limit: bool, current_time: int) -> ExecutionOutcome:
        # 1. Запрос и рынок
        request = self.store.pending_request(is_limit, key)
        if request is None:
            raise RequestNotFound(f"no pending {'limit' if is_limit else 'market'} request {key}")

        if self.config.validate_contracts:
            self._validate_contract(request)

        market = self.registry.market_for_pair(request.index_token, request.collateral_token)
        if market is None:
            raise InvalidInput(
                f"no market for pair {request.index_token}/{request.collateral_token}"
            )
        snapshot = market.snapshot()

        # 2. Reference price
        reference_price = self.prices.reference_price(snapshot.market_key, request.request_block)
        if not reference_price:
            self.store.cancel_request(key, is_limit)
            transition = self._lifecycle.evaluate_transition(
                RequestStatus.PENDING,
                RequestStatus.CANCELLED,
                reason="price_unavailable",
                details=f"no reference price for block {request.request_block}",
            )
            logger.warning(
                "request %s cancelled: no reference price for block %d",
                key,
                request.request_block,
            )
            return ExecutionOutcome(
                key=key,
                is_limit=is_limit,
                status=RequestStatus.CANCELLED,
                transition=transition,
            )

        # 3. Лимитная цена
        if is_limit:
            self._check_limit(request, reference_price)

        # 4. Impact и execution price
        impact = self.impact_engine.calculate_impact(
            snapshot, request, reference_price, self.registry
        )
        execution_price = apply_impact(reference_price, impact.price_impact)
        if self.config.max_slippage_bps is not None:
            self._check_slippage(request, execution_price, reference_price)
        request = request.with_price_impact(impact.price_impact)

        # 5-6. Позиция
        position_key = request_key(request.index_token, request.user, request.is_long)
        existing = self.store.open_position(position_key)
        params = self._build_trade(
            key=key,
            is_limit=is_limit,
            position_key=position_key,
            request=request,
            existing=existing,
            snapshot=snapshot,
            reference_price=reference_price,
            execution_price=execution_price,
            size_delta_usd=impact.size_delta_usd,
            current_time=current_time,
        )
        stored = self.store.execute_trade(params)

        # 7. Рыночное состояние
        # Полное закрытие выводит весь залог, а не только collateral_delta
        collateral_delta = request.collateral_delta
        if not request.is_increase and not params.position.is_open:
            collateral_delta = existing.collateral_amount
        self._update_market_state(
            market,
            snapshot.market_key,
            request,
            collateral_delta,
            impact.size_delta_usd,
            execution_price,
        )

        transition = self._lifecycle.evaluate_transition(
            RequestStatus.PENDING,
            RequestStatus.EXECUTED,
            reason="executed",
            details=f"execution_price={execution_price}, impact={impact.price_impact}",
        )
        logger.info(
            "request %s executed: %s %s size_delta=%d price=%d impact=%d",
            key,
            "increase" if request.is_increase else "decrease",
            "long" if request.is_long else "short",
            request.size_delta,
            execution_price,
            impact.price_impact,
        )
        return ExecutionOutcome(
            key=key,
            is_limit=is_limit,
            status=RequestStatus.EXECUTED,
            transition=transition,
            position=stored,
            reference_price=reference_price,
            execution_price=execution_price,
            price_impact=impact.price_impact,
        )

    def _validate_contract(self, request: PositionRequest) -> None:
        try:
            validate_position_request(request.model_dump(mode="json"))
        except ValidationError as e:
            raise InvalidInput(f"request violates position_request contract: {e.message}") from e

    def _check_limit(self, request: PositionRequest, reference_price: int) -> None:
        if request.is_long:
            met = reference_price <= request.acceptable_price
        else:
            met = reference_price >= request.acceptable_price

        if not met:
            raise LimitNotMet(
                f"reference price {reference_price} does not meet acceptable price "
                f"{request.acceptable_price} ({'long' if request.is_long else 'short'})"
            )

    def _check_slippage(
        self, request: PositionRequest, execution_price: int, reference_price: int
    ) -> None:
        # Покупка (long increase / short decrease): хуже, если выше reference
        is_buy = request.is_long == request.is_increase
        if is_buy:
            check_slippage(reference_price, execution_price, self.config.max_slippage_bps)
        else:
            check_slippage(execution_price, reference_price, self.config.max_slippage_bps)

    def _build_trade(
        self,
        key: str,
        is_limit: bool,
        position_key: str,
        request: PositionRequest,
        existing: Optional[Position],
        snapshot: MarketSnapshot,
        reference_price: int,
        execution_price: int,
        size_delta_usd: int,
        current_time: int,
    ) -> TradeParams:
        fee = trading_fee(request.size_delta, self.config.trading_fee_rate)
        borrow_charged = 0
        funding_charged = 0
        pnl_delta = 0

        if request.is_increase:
            if existing is not None and existing.is_open:
                position = increase_position(
                    existing,
                    request,
                    execution_price,
                    snapshot,
                    current_time,
                    self.config.min_leverage,
                    self.config.max_leverage,
                )
            else:
                next_index = self.store.next_position_index(snapshot.market_key, request.is_long)
                position = build_position(
                    request,
                    execution_price,
                    next_index,
                    snapshot,
                    current_time,
                    self.config.min_leverage,
                    self.config.max_leverage,
                )
        else:
            existing_size = existing.position_size if existing is not None else 0
            if existing is None or existing_size < request.size_delta:
                raise InsufficientPositionSize(
                    f"position size {existing_size} < size delta {request.size_delta}"
                )
            result = decrease_position(
                existing,
                request,
                execution_price,
                snapshot,
                current_time,
                self.config.min_leverage,
                self.config.max_leverage,
            )
            position = result.position
            borrow_charged = result.borrow_fee_charged
            funding_charged = result.funding_fee_charged
            pnl_delta = result.realised_pnl_delta

        return TradeParams(
            key=key,
            is_limit=is_limit,
            market_key=snapshot.market_key,
            position_key=position_key,
            request=request,
            position=position,
            reference_price=reference_price,
            execution_price=execution_price,
            price_impact=request.price_impact,
            size_delta_usd=size_delta_usd,
            trading_fee=fee,
            borrow_fee_charged=borrow_charged,
            funding_fee_charged=funding_charged,
            realised_pnl_delta=pnl_delta,
        )

    def _update_market_state(
        self,
        market: MarketStateProvider,
        market_key: str,
        request: PositionRequest,
        collateral_delta: int,
        size_delta_usd: int,
        execution_price: int,
    ) -> None:
        # Funding / borrowing должны видеть состояние после обновления OI
        self.registry.update_open_interest(
            market_key,
            collateral_delta,
            request.size_delta,
            request.is_long,
            request.is_increase,
        )
        market.update_funding_rate(size_delta_usd, request.is_long)
        market.update_borrowing_rate(request.is_long)

        signed_size_delta_usd = size_delta_usd if request.is_increase else -size_delta_usd
        market.update_total_weighted_average_entry_price(
            execution_price, signed_size_delta_usd, request.is_long
        )

    # -------------------------------------------------------------------------
    # Batch
    # -------------------------------------------------------------------------

    def execute_batch(
        self, items: Iterable[Tuple[str, bool]], current_time: int
    ) -> List[ExecutionOutcome]:
        """Исполнение пачки независимых запросов с изоляцией отказов.

        Каждый запрос исполняется в собственной транзакционной границе
        (unit_of_work). Отказ одного запроса не прерывает остальные.

        Args:
            items: пары (key, is_limit)
            current_time: текущее время (unix sec)

        Returns:
            Исходы в порядке items:
            - EXECUTED / CANCELLED — штатные исходы
            - PENDING — LimitNotMet (повтор на следующем тике)
            - NOT_FOUND — запроса нет, состояние не менялось
            - REJECTED — любая другая ошибка
        """
        outcomes: List[ExecutionOutcome] = []

        for key, is_limit in items:
            try:
                with self._unit_of_work():
                    outcome = self.execute_request(key, is_limit, current_time)
            except LimitNotMet as e:
                logger.info("request %s remains pending: %s", key, e)
                outcome = self._failed_outcome(
                    key, is_limit, RequestStatus.PENDING, "limit_not_met", e
                )
            except RequestNotFound as e:
                logger.warning("request %s not found: %s", key, e)
                outcome = ExecutionOutcome(
                    key=key,
                    is_limit=is_limit,
                    status=RequestStatus.NOT_FOUND,
                    transition=self._lifecycle.request_not_found(str(e)),
                    error_type=type(e).__name__,
                    error=str(e),
                )
            except TradeExecutionError as e:
                logger.warning("request %s rejected: %s: %s", key, type(e).__name__, e)
                outcome = self._failed_outcome(
                    key, is_limit, RequestStatus.REJECTED, "execution_failed", e
                )
            except Exception as e:
                logger.exception("request %s rejected: unexpected collaborator failure", key)
                outcome = self._failed_outcome(
                    key, is_limit, RequestStatus.REJECTED, "collaborator_failed", e
                )

            outcomes.append(outcome)

        return outcomes

    def _failed_outcome(
        self,
        key: str,
        is_limit: bool,
        status: RequestStatus,
        reason: str,
        error: Exception,
    ) -> ExecutionOutcome:
        transition = self._lifecycle.evaluate_transition(
            RequestStatus.PENDING, status, reason=reason, details=str(error)
        )
        return ExecutionOutcome(
            key=key,
            is_limit=is_limit,
            status=status,
            transition=transition,
            error_type=type(error).__name__,
            error=str(error),
        )

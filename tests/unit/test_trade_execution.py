"""
Тесты для Trade Execution Orchestrator

Проверяет:
1. Исполнение рыночного запроса: новая позиция, параметры сделки
2. Порядок обновления рыночного состояния
3. Отмена при отсутствии reference price
4. Лимитные запросы (long / short)
5. Уменьшение и закрытие позиции
6. Price impact и проверку проскальзывания
7. Защиту от повторного входа по ключу
8. Batch-исполнение с изоляцией отказов
"""

import contextlib
from types import SimpleNamespace

import pytest

from src.core.domain.request import PositionRequest, RequestStatus
from src.core.errors import (
    InsufficientPositionSize,
    InvalidInput,
    LeverageOutOfRange,
    LimitNotMet,
    RequestConflict,
    RequestNotFound,
    SlippageExceeded,
)
from src.core.math.fixed_point import PRECISION
from src.execution import ExecutionConfig, TradeExecutionOrchestrator
from tests.fakes import (
    InMemoryMarket,
    InMemoryPositionStore,
    InMemoryRegistry,
    StaticPriceProvider,
)

NOW = 2000
ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20

MARKET_STATE_UPDATES = [
    "update_open_interest",
    "update_funding_rate",
    "update_borrowing_rate",
    "update_total_weighted_average_entry_price",
]


def make_env(prices=None, config=None, store=None, unit_of_work=None, **market_state):
    journal = []
    state = {"index_token": "ETH", "collateral_token": "USDC", "price_impact_exponent": PRECISION}
    state.update(market_state)
    market = InMemoryMarket(journal, **state)

    registry = InMemoryRegistry(journal)
    registry.add_market(market)

    store = store or InMemoryPositionStore()
    orchestrator = TradeExecutionOrchestrator(
        store,
        registry,
        StaticPriceProvider(prices or {100: 2000 * PRECISION}),
        config=config,
        unit_of_work=unit_of_work,
    )
    return SimpleNamespace(
        journal=journal,
        market=market,
        registry=registry,
        store=store,
        orchestrator=orchestrator,
    )


def make_request(**overrides) -> PositionRequest:
    data = dict(
        user=ALICE,
        index_token="ETH",
        collateral_token="USDC",
        is_long=True,
        is_increase=True,
        size_delta=100 * PRECISION,
        collateral_delta=10 * PRECISION,
        request_block=100,
    )
    data.update(overrides)
    return PositionRequest(**data)


@pytest.fixture
def env() -> SimpleNamespace:
    return make_env()


def _calls(journal) -> list:
    return [call[0] for call in journal]


# =============================================================================
# MARKET REQUESTS
# =============================================================================


class TestMarketExecution:
    """Исполнение рыночных запросов на увеличение"""

    def test_opens_new_position(self, env: SimpleNamespace) -> None:
        """size 100, collateral 10, price 2000 → новая позиция"""
        key = env.store.submit(make_request())

        outcome = env.orchestrator.execute_request(key, is_limit=False, current_time=NOW)

        assert outcome.status == RequestStatus.EXECUTED
        assert outcome.transition.transition_occurred
        assert outcome.reference_price == 2000 * PRECISION
        assert outcome.execution_price == 2000 * PRECISION
        assert outcome.price_impact == 0

        position = env.store.positions[key]
        assert position == outcome.position
        assert position.position_size == 100 * PRECISION
        assert position.collateral_amount == 10 * PRECISION
        assert position.average_price_per_token == 2000 * PRECISION
        assert position.entry_timestamp == NOW
        assert position.index == 0
        assert (False, key) not in env.store.requests

    def test_trade_params(self, env: SimpleNamespace) -> None:
        """Параметры сделки передаются в store"""
        key = env.store.submit(make_request())
        env.orchestrator.execute_request(key, is_limit=False, current_time=NOW)

        params = env.store.executed[0]
        assert params.key == key
        assert params.position_key == key
        assert params.market_key == env.market.market_key()
        assert params.size_delta_usd == 200_000 * PRECISION
        assert params.trading_fee == PRECISION // 10
        assert params.realised_pnl_delta == 0

    def test_market_state_update_order(self, env: SimpleNamespace) -> None:
        """OI → funding → borrowing → weighted-average entry price"""
        key = env.store.submit(make_request())
        env.orchestrator.execute_request(key, is_limit=False, current_time=NOW)

        assert _calls(env.journal) == MARKET_STATE_UPDATES
        assert env.journal[0] == (
            "update_open_interest",
            env.market.market_key(),
            10 * PRECISION,
            100 * PRECISION,
            True,
            True,
        )
        assert env.journal[1] == ("update_funding_rate", 200_000 * PRECISION, True)
        assert env.journal[2] == ("update_borrowing_rate", True)
        assert env.journal[3] == (
            "update_total_weighted_average_entry_price",
            2000 * PRECISION,
            200_000 * PRECISION,
            True,
        )

    def test_position_index_per_market_side(self, env: SimpleNamespace) -> None:
        """Индексы позиций выдаются последовательно в рамках рынка и стороны"""
        alice = env.store.submit(make_request(user=ALICE))
        bob = env.store.submit(make_request(user=BOB))
        carol = env.store.submit(make_request(user=CAROL, is_long=False))

        for key in (alice, bob, carol):
            env.orchestrator.execute_request(key, is_limit=False, current_time=NOW)

        assert env.store.positions[alice].index == 0
        assert env.store.positions[bob].index == 1
        assert env.store.positions[carol].index == 0

    def test_increase_existing_position(self) -> None:
        """Повторное увеличение: средняя цена = среднее 2000 и 2100"""
        env = make_env(prices={100: 2000 * PRECISION, 101: 2100 * PRECISION})
        key = env.store.submit(make_request())
        env.orchestrator.execute_request(key, is_limit=False, current_time=NOW)

        env.store.submit(make_request(request_block=101))
        outcome = env.orchestrator.execute_request(key, is_limit=False, current_time=NOW + 60)

        position = outcome.position
        assert position.position_size == 200 * PRECISION
        assert position.collateral_amount == 20 * PRECISION
        assert position.average_price_per_token == 2050 * PRECISION
        assert position.entry_timestamp == NOW
        assert position.index == 0

    def test_increase_accrues_borrow_fee_between_touches(self) -> None:
        """Ненулевая ставка: второе увеличение копит rate * dt * size с момента первого"""
        rate = 10**10
        env = make_env(
            prices={100: 2000 * PRECISION, 101: 2000 * PRECISION},
            long_borrowing_rate=rate,
            long_cumulative_borrow_fee=10**16,
            last_borrow_update_time=0,
        )
        key = env.store.submit(make_request())
        first = env.orchestrator.execute_request(key, is_limit=False, current_time=NOW)
        assert first.position.borrow_params.fees_owed == 0

        env.store.submit(make_request(request_block=101))
        [outcome] = env.orchestrator.execute_batch([(key, False)], current_time=NOW + 100)

        assert outcome.status == RequestStatus.EXECUTED
        position = outcome.position
        assert position.position_size == 200 * PRECISION
        # 1e10 * 100 сек * 100 ETH
        assert position.borrow_params.fees_owed == rate * 100 * 100

    def test_request_not_found(self, env: SimpleNamespace) -> None:
        """Неизвестный ключ → RequestNotFound без изменений состояния"""
        with pytest.raises(RequestNotFound):
            env.orchestrator.execute_request("missing", is_limit=False, current_time=NOW)
        assert env.journal == []

    def test_unknown_market(self, env: SimpleNamespace) -> None:
        """Нет рынка для пары → InvalidInput"""
        key = env.store.submit(make_request(index_token="BTC"))
        with pytest.raises(InvalidInput, match="no market"):
            env.orchestrator.execute_request(key, is_limit=False, current_time=NOW)

    def test_contract_violation(self, env: SimpleNamespace) -> None:
        """Запрос, нарушающий контракт → InvalidInput"""
        key = env.store.submit(make_request(user=""))
        with pytest.raises(InvalidInput, match="contract"):
            env.orchestrator.execute_request(key, is_limit=False, current_time=NOW)

    def test_empty_user_without_contract_check(self) -> None:
        """Без контрактной валидации пустой пользователь отклоняется при расчёте impact"""
        env = make_env(config=ExecutionConfig(validate_contracts=False))
        key = env.store.submit(make_request(user=""))
        with pytest.raises(InvalidInput, match="user"):
            env.orchestrator.execute_request(key, is_limit=False, current_time=NOW)

    def test_leverage_rejected(self, env: SimpleNamespace) -> None:
        """100x → LeverageOutOfRange, запрос остаётся, рынок не трогается"""
        key = env.store.submit(make_request(collateral_delta=PRECISION))

        with pytest.raises(LeverageOutOfRange):
            env.orchestrator.execute_request(key, is_limit=False, current_time=NOW)

        assert (False, key) in env.store.requests
        assert env.store.positions == {}
        assert env.journal == []


# =============================================================================
# PRICE UNAVAILABLE
# =============================================================================


class TestPriceUnavailable:
    """Отсутствие подписанной цены → CANCELLED"""

    @pytest.mark.parametrize("price", [0, None])
    def test_cancelled_without_mutation(self, price) -> None:
        """Цена 0 / None: запрос отменён, позиция и рынок не изменены"""
        env = make_env(prices={100: price})
        key = env.store.submit(make_request())

        outcome = env.orchestrator.execute_request(key, is_limit=False, current_time=NOW)

        assert outcome.status == RequestStatus.CANCELLED
        assert outcome.transition.transition_reason == "price_unavailable"
        assert outcome.position is None
        assert env.store.cancelled == [(key, False)]
        assert (False, key) not in env.store.requests
        assert env.store.executed == []
        assert env.journal == []

    def test_cancelled_limit_request(self, env: SimpleNamespace) -> None:
        """Лимитный запрос без цены тоже отменяется"""
        key = env.store.submit(
            make_request(request_block=999, acceptable_price=1900 * PRECISION), is_limit=True
        )

        outcome = env.orchestrator.execute_request(key, is_limit=True, current_time=NOW)

        assert outcome.status == RequestStatus.CANCELLED
        assert env.store.cancelled == [(key, True)]


# =============================================================================
# LIMIT REQUESTS
# =============================================================================


class TestLimitRequests:
    """Лимитные запросы: long ref <= acceptable, short ref >= acceptable"""

    def test_long_limit_not_met(self) -> None:
        """Long acceptable 1900, ref 1950 → LimitNotMet, запрос остаётся"""
        env = make_env(prices={100: 1950 * PRECISION})
        key = env.store.submit(make_request(acceptable_price=1900 * PRECISION), is_limit=True)

        with pytest.raises(LimitNotMet):
            env.orchestrator.execute_request(key, is_limit=True, current_time=NOW)

        assert (True, key) in env.store.requests
        assert env.journal == []

    def test_long_limit_met(self) -> None:
        """Long acceptable 1900, ref 1880 → исполнение по 1880"""
        env = make_env(prices={100: 1880 * PRECISION})
        key = env.store.submit(make_request(acceptable_price=1900 * PRECISION), is_limit=True)

        outcome = env.orchestrator.execute_request(key, is_limit=True, current_time=NOW)

        assert outcome.status == RequestStatus.EXECUTED
        assert outcome.position.average_price_per_token == 1880 * PRECISION
        assert (True, key) not in env.store.requests

    def test_short_limit(self) -> None:
        """Short acceptable 2000: ref 1950 не исполняется, ref 2050 исполняется"""
        env = make_env(prices={100: 1950 * PRECISION, 101: 2050 * PRECISION})
        key = env.store.submit(
            make_request(is_long=False, acceptable_price=2000 * PRECISION), is_limit=True
        )
        with pytest.raises(LimitNotMet):
            env.orchestrator.execute_request(key, is_limit=True, current_time=NOW)

        env.store.requests[(True, key)] = make_request(
            is_long=False, acceptable_price=2000 * PRECISION, request_block=101
        )
        outcome = env.orchestrator.execute_request(key, is_limit=True, current_time=NOW)
        assert outcome.status == RequestStatus.EXECUTED

    def test_market_request_ignores_acceptable_price(self, env: SimpleNamespace) -> None:
        """Для рыночного запроса acceptable_price не проверяется"""
        key = env.store.submit(make_request(acceptable_price=PRECISION))
        outcome = env.orchestrator.execute_request(key, is_limit=False, current_time=NOW)
        assert outcome.status == RequestStatus.EXECUTED


# =============================================================================
# DECREASE
# =============================================================================


class TestDecrease:
    """Уменьшение и закрытие позиции"""

    @pytest.fixture
    def opened(self) -> SimpleNamespace:
        env = make_env(prices={100: 2000 * PRECISION, 101: 2100 * PRECISION})
        env.key = env.store.submit(make_request())
        env.orchestrator.execute_request(env.key, is_limit=False, current_time=NOW)
        return env

    def test_insufficient_position_size(self) -> None:
        """Уменьшение 50 при размере 30 → InsufficientPositionSize без изменений"""
        env = make_env()
        key = env.store.submit(
            make_request(size_delta=30 * PRECISION, collateral_delta=3 * PRECISION)
        )
        env.orchestrator.execute_request(key, is_limit=False, current_time=NOW)
        before = env.store.positions[key]
        journal_before = list(env.journal)

        env.store.submit(
            make_request(is_increase=False, size_delta=50 * PRECISION, collateral_delta=0)
        )
        with pytest.raises(InsufficientPositionSize):
            env.orchestrator.execute_request(key, is_limit=False, current_time=NOW)

        assert env.store.positions[key] == before
        assert env.journal == journal_before

    def test_no_open_position(self, env: SimpleNamespace) -> None:
        """Уменьшение без позиции → InsufficientPositionSize"""
        key = env.store.submit(make_request(is_increase=False))
        with pytest.raises(InsufficientPositionSize):
            env.orchestrator.execute_request(key, is_limit=False, current_time=NOW)

    def test_partial_decrease(self, opened: SimpleNamespace) -> None:
        """Половина позиции по 2100: PnL 5000, signed weighted-average update"""
        opened.store.submit(
            make_request(
                is_increase=False,
                size_delta=50 * PRECISION,
                collateral_delta=5 * PRECISION,
                request_block=101,
            )
        )
        outcome = opened.orchestrator.execute_request(
            opened.key, is_limit=False, current_time=NOW + 10
        )

        position = outcome.position
        assert position.position_size == 50 * PRECISION
        assert position.collateral_amount == 5 * PRECISION
        assert position.realised_pnl == 5000 * PRECISION
        assert opened.store.executed[-1].realised_pnl_delta == 5000 * PRECISION

        assert _calls(opened.journal[4:]) == MARKET_STATE_UPDATES
        assert opened.journal[4][-1] is False  # is_increase
        assert opened.journal[-1] == (
            "update_total_weighted_average_entry_price",
            2100 * PRECISION,
            -105_000 * PRECISION,
            True,
        )

    def test_full_close(self, opened: SimpleNamespace) -> None:
        """Полное закрытие: позиция архивируется"""
        opened.store.submit(
            make_request(
                is_increase=False,
                size_delta=100 * PRECISION,
                collateral_delta=10 * PRECISION,
                request_block=101,
            )
        )
        outcome = opened.orchestrator.execute_request(
            opened.key, is_limit=False, current_time=NOW + 10
        )

        assert not outcome.position.is_open
        assert opened.key not in opened.store.positions
        assert opened.store.archived[-1].realised_pnl == 10_000 * PRECISION

    def test_full_close_withdraws_all_collateral(self, opened: SimpleNamespace) -> None:
        """Полное закрытие с collateral_delta меньше залога: OI уменьшается на весь залог"""
        opened.store.submit(
            make_request(
                is_increase=False,
                size_delta=100 * PRECISION,
                collateral_delta=PRECISION,
                request_block=101,
            )
        )
        outcome = opened.orchestrator.execute_request(
            opened.key, is_limit=False, current_time=NOW + 10
        )

        assert outcome.position.collateral_amount == 0
        assert not outcome.position.is_open
        assert opened.journal[4] == (
            "update_open_interest",
            opened.market.market_key(),
            10 * PRECISION,
            100 * PRECISION,
            True,
            False,
        )


# =============================================================================
# PRICE IMPACT & SLIPPAGE
# =============================================================================


class TestImpactAndSlippage:
    """Execution price = reference ± impact"""

    def _env(self, long_oi: int, short_oi: int, config=None) -> SimpleNamespace:
        env = make_env(
            prices={100: 100 * PRECISION}, config=config, price_impact_factor=PRECISION // 10
        )
        env.registry.set_open_interest("ETH", long_usd=long_oi, short_usd=short_oi)
        return env

    def _small_request(self, **overrides) -> PositionRequest:
        return make_request(size_delta=PRECISION, collateral_delta=PRECISION // 10, **overrides)

    def test_impact_applied(self) -> None:
        """Long на перекошенном в long рынке: impact -10 → execution 90"""
        env = self._env(long_oi=1000 * PRECISION, short_oi=0)
        key = env.store.submit(self._small_request())

        outcome = env.orchestrator.execute_request(key, is_limit=False, current_time=NOW)

        assert outcome.price_impact == -10 * PRECISION
        assert outcome.execution_price == 90 * PRECISION
        assert outcome.position.average_price_per_token == 90 * PRECISION

        params = env.store.executed[0]
        assert params.price_impact == -10 * PRECISION
        assert params.request.price_impact == -10 * PRECISION

    def test_buy_slippage_exceeded(self) -> None:
        """Long increase по 110 против 100 при допуске 10 bps → SlippageExceeded"""
        env = self._env(
            long_oi=0, short_oi=1000 * PRECISION, config=ExecutionConfig(max_slippage_bps=10)
        )
        key = env.store.submit(self._small_request())

        with pytest.raises(SlippageExceeded):
            env.orchestrator.execute_request(key, is_limit=False, current_time=NOW)
        assert env.journal == []
        assert (False, key) in env.store.requests

    def test_buy_slippage_within_tolerance(self) -> None:
        """~9.1% при допуске 10% → исполнение по 110"""
        env = self._env(
            long_oi=0, short_oi=1000 * PRECISION, config=ExecutionConfig(max_slippage_bps=1000)
        )
        key = env.store.submit(self._small_request())

        outcome = env.orchestrator.execute_request(key, is_limit=False, current_time=NOW)
        assert outcome.execution_price == 110 * PRECISION

    def test_sell_slippage_exceeded(self) -> None:
        """Short increase по 90 против 100 → SlippageExceeded"""
        env = self._env(
            long_oi=0, short_oi=1000 * PRECISION, config=ExecutionConfig(max_slippage_bps=10)
        )
        key = env.store.submit(self._small_request(is_long=False))

        with pytest.raises(SlippageExceeded):
            env.orchestrator.execute_request(key, is_limit=False, current_time=NOW)

    def test_favourable_impact_passes(self) -> None:
        """Impact в пользу трейдера проходит при нулевом допуске"""
        env = self._env(
            long_oi=1000 * PRECISION, short_oi=0, config=ExecutionConfig(max_slippage_bps=0)
        )
        key = env.store.submit(self._small_request())

        outcome = env.orchestrator.execute_request(key, is_limit=False, current_time=NOW)
        assert outcome.execution_price == 90 * PRECISION


# =============================================================================
# CONCURRENCY
# =============================================================================


class ReentrantStore(InMemoryPositionStore):
    """Store, который во время чтения запроса пытается исполнить тот же ключ."""

    def __init__(self):
        super().__init__()
        self.orchestrator = None
        self.inner_error = None
        self._reentered = False

    def pending_request(self, is_limit, key):
        if not self._reentered and self.orchestrator is not None:
            self._reentered = True
            try:
                self.orchestrator.execute_request(key, is_limit, NOW)
            except RequestConflict as e:
                self.inner_error = e
        return super().pending_request(is_limit, key)


class TestInFlightGuard:
    """Не более одной попытки исполнения на ключ"""

    def test_concurrent_attempt_conflicts(self) -> None:
        """Повторный вход по тому же ключу → RequestConflict, первая попытка завершается"""
        store = ReentrantStore()
        env = make_env(store=store)
        store.orchestrator = env.orchestrator
        key = store.submit(make_request())

        outcome = env.orchestrator.execute_request(key, is_limit=False, current_time=NOW)

        assert isinstance(store.inner_error, RequestConflict)
        assert outcome.status == RequestStatus.EXECUTED
        assert len(store.executed) == 1

    def test_guard_released_after_failure(self, env: SimpleNamespace) -> None:
        """После ошибки ключ снова доступен"""
        with pytest.raises(RequestNotFound):
            env.orchestrator.execute_request("k", is_limit=False, current_time=NOW)
        with pytest.raises(RequestNotFound):
            env.orchestrator.execute_request("k", is_limit=False, current_time=NOW)


# =============================================================================
# BATCH
# =============================================================================


class TestExecuteBatch:
    """Batch-исполнение с изоляцией отказов"""

    def test_mixed_outcomes(self) -> None:
        """EXECUTED / NOT_FOUND / PENDING / CANCELLED в порядке items"""
        env = make_env(prices={100: 2000 * PRECISION})
        ok = env.store.submit(make_request(user=ALICE))
        limit = env.store.submit(
            make_request(user=BOB, acceptable_price=1900 * PRECISION), is_limit=True
        )
        cancelled = env.store.submit(make_request(user=CAROL, request_block=999))

        outcomes = env.orchestrator.execute_batch(
            [(ok, False), ("missing", False), (limit, True), (cancelled, False)],
            current_time=NOW,
        )

        assert [o.status for o in outcomes] == [
            RequestStatus.EXECUTED,
            RequestStatus.NOT_FOUND,
            RequestStatus.PENDING,
            RequestStatus.CANCELLED,
        ]
        assert outcomes[1].error_type == "RequestNotFound"
        assert not outcomes[1].transition.transition_occurred
        assert outcomes[1].transition.transition_reason == "request_not_found"
        assert outcomes[2].error_type == "LimitNotMet"
        assert not outcomes[2].transition.transition_occurred
        assert (True, limit) in env.store.requests
        assert ok in env.store.positions

    def test_unit_of_work_per_item(self) -> None:
        """Каждый запрос исполняется в собственной транзакционной границе"""
        events = []

        @contextlib.contextmanager
        def unit_of_work():
            events.append("begin")
            try:
                yield
            except Exception as e:
                events.append(f"rollback:{type(e).__name__}")
                raise
            else:
                events.append("commit")

        env = make_env(unit_of_work=unit_of_work)
        ok = env.store.submit(make_request())

        env.orchestrator.execute_batch([(ok, False), ("missing", False)], current_time=NOW)

        assert events == ["begin", "commit", "begin", "rollback:RequestNotFound"]

    def test_collaborator_failure_isolated(self) -> None:
        """Сбой коллаборатора отклоняет только свой запрос"""
        env = make_env()
        btc = InMemoryMarket(
            env.journal, index_token="BTC", collateral_token="USDC", price_impact_exponent=PRECISION
        )
        env.registry.add_market(btc)
        env.market.fail_on = "update_borrowing_rate"

        eth_key = env.store.submit(make_request(user=ALICE))
        btc_key = env.store.submit(make_request(user=BOB, index_token="BTC"))

        outcomes = env.orchestrator.execute_batch(
            [(eth_key, False), (btc_key, False)], current_time=NOW
        )

        assert outcomes[0].status == RequestStatus.REJECTED
        assert outcomes[0].error_type == "RuntimeError"
        assert outcomes[0].transition.transition_reason == "collaborator_failed"
        assert outcomes[1].status == RequestStatus.EXECUTED

    def test_empty_batch(self, env: SimpleNamespace) -> None:
        assert env.orchestrator.execute_batch([], current_time=NOW) == []

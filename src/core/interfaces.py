"""
Interfaces — Контракты внешних коллабораторов ядра

Хранилище позиций/ордеров/рынков, ценовой оракул и реестр open interest
находятся вне ядра. Ядро использует их только через эти абстрактные
классы. Реализации обязаны пропагировать свои ошибки, а не глотать их.
"""

from abc import ABC, abstractmethod
from typing import Optional

from src.core.domain.market import MarketSnapshot
from src.core.domain.position import Position
from src.core.domain.request import PositionRequest


class MarketStateProvider(ABC):
    """Состояние одного рынка: аккумуляторы, ставки, параметры impact."""

    @abstractmethod
    def market_key(self) -> str:
        pass

    @abstractmethod
    def index_token(self) -> str:
        pass

    @abstractmethod
    def collateral_token(self) -> str:
        pass

    @abstractmethod
    def cumulative_borrow_fee(self, is_long: bool) -> int:
        pass

    @abstractmethod
    def borrowing_rate(self, is_long: bool) -> int:
        pass

    @abstractmethod
    def last_borrow_update_time(self) -> int:
        pass

    @abstractmethod
    def cumulative_funding_fee(self, is_long: bool) -> int:
        pass

    @abstractmethod
    def funding_rate(self, is_long: bool) -> int:
        pass

    @abstractmethod
    def last_funding_update_time(self) -> int:
        pass

    @abstractmethod
    def price_impact_exponent(self) -> int:
        pass

    @abstractmethod
    def price_impact_factor(self) -> int:
        pass

    @abstractmethod
    def update_funding_rate(self, size_delta_usd: int, is_long: bool) -> None:
        """Пересчёт funding state после изменения open interest."""
        pass

    @abstractmethod
    def update_borrowing_rate(self, is_long: bool) -> None:
        """Свёртка pending начисления в аккумулятор и пересчёт borrow rate."""
        pass

    @abstractmethod
    def update_total_weighted_average_entry_price(
        self, price: int, size_delta_usd: int, is_long: bool
    ) -> None:
        """
        Обновление средневзвешенной цены входа стороны.

        size_delta_usd — знаковый: отрицательный при уменьшении позиции.
        """
        pass

    def snapshot(self) -> MarketSnapshot:
        """
        Immutable снапшот рынка для чистых расчётов.

        Каждое исполнение перечитывает снапшот — кэша между вызовами нет.
        """
        return MarketSnapshot(
            market_key=self.market_key(),
            index_token=self.index_token(),
            collateral_token=self.collateral_token(),
            long_cumulative_borrow_fee=self.cumulative_borrow_fee(True),
            short_cumulative_borrow_fee=self.cumulative_borrow_fee(False),
            long_borrowing_rate=self.borrowing_rate(True),
            short_borrowing_rate=self.borrowing_rate(False),
            last_borrow_update_time=self.last_borrow_update_time(),
            long_cumulative_funding_fee=self.cumulative_funding_fee(True),
            short_cumulative_funding_fee=self.cumulative_funding_fee(False),
            long_funding_rate=self.funding_rate(True),
            short_funding_rate=self.funding_rate(False),
            last_funding_update_time=self.last_funding_update_time(),
            price_impact_exponent=self.price_impact_exponent(),
            price_impact_factor=self.price_impact_factor(),
        )


class MarketRegistry(ABC):
    """Реестр рынков и open interest."""

    @abstractmethod
    def open_interest_usd(self, index_token: str, is_long: bool) -> int:
        pass

    @abstractmethod
    def market_for_pair(
        self, index_token: str, collateral_token: str
    ) -> Optional[MarketStateProvider]:
        """Рынок для пары, либо None если рынок не зарегистрирован."""
        pass

    @abstractmethod
    def update_open_interest(
        self,
        market_key: str,
        collateral_delta: int,
        size_delta: int,
        is_long: bool,
        is_increase: bool,
    ) -> None:
        pass


class PositionStore(ABC):
    """Хранилище pending запросов и позиций."""

    @abstractmethod
    def pending_request(self, is_limit: bool, key: str) -> Optional[PositionRequest]:
        pass

    @abstractmethod
    def open_position(self, key: str) -> Optional[Position]:
        pass

    @abstractmethod
    def next_position_index(self, market_key: str, is_long: bool) -> int:
        pass

    @abstractmethod
    def cancel_request(self, key: str, is_limit: bool) -> None:
        pass

    @abstractmethod
    def execute_trade(self, params) -> Position:
        """
        Сохранение результата исполнения (src.execution.orchestrator.TradeParams).

        Позиция с position_size == 0 передаётся на архивацию.
        """
        pass


class PriceReferenceProvider(ABC):
    """Подписанные цены по блокам."""

    @abstractmethod
    def reference_price(self, market_key: str, block_number: int) -> Optional[int]:
        """Цена для блока; 0 или None — цена недоступна."""
        pass

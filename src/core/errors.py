"""
Errors — Таксономия ошибок расчётного ядра

Все ошибки поднимаются к непосредственному вызывающему коду.
Расчётные компоненты никогда не перехватывают собственные ошибки;
изоляция отказов выполняется только batch-драйвером оркестратора.

Недоступная цена (reference price == 0) НЕ является ошибкой:
это штатный терминальный исход CANCELLED.
"""


class TradeExecutionError(Exception):
    """Базовый класс для всех ошибок расчёта и исполнения сделок."""

    pass


class InvalidInput(TradeExecutionError, ValueError):
    """Некорректные / нулевые аргументы (цена, market key, пользователь, делитель)."""

    pass


class MathOverflow(TradeExecutionError, ArithmeticError):
    """
    Результат арифметики вне представимого диапазона (uint256 / int256).

    Значения никогда не "заворачиваются" — вызывающий код получает ошибку.
    """

    pass


class LeverageOutOfRange(TradeExecutionError):
    """Плечо size/collateral вне [MIN_LEVERAGE, MAX_LEVERAGE]."""

    pass


class LimitNotMet(TradeExecutionError):
    """
    Лимитная цена не достигнута.

    Запрос остаётся PENDING и может быть исполнен на следующем тике цены.
    """

    pass


class SlippageExceeded(TradeExecutionError):
    """Проскальзывание execution price относительно reference price выше допуска."""

    pass


class RequestNotFound(TradeExecutionError):
    """Pending запрос по ключу не найден."""

    pass


class InsufficientPositionSize(TradeExecutionError):
    """Уменьшение позиции на size_delta больше текущего position_size."""

    pass


class RequestConflict(TradeExecutionError):
    """Запрос с тем же ключом уже исполняется (at-most-one-attempt-in-flight)."""

    pass

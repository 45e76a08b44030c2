"""
Contract Validation Module

Модуль для валидации JSON контрактов запросов и позиций.
"""

from .validators import (
    ContractValidator,
    PositionRequestValidator,
    PositionValidator,
    SchemaLoader,
    validate_position,
    validate_position_request,
)

__all__ = [
    # Classes
    "SchemaLoader",
    "ContractValidator",
    "PositionRequestValidator",
    "PositionValidator",
    # Functions
    "validate_position_request",
    "validate_position",
]

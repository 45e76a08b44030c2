"""
Domain models and value objects.

Contains fundamental domain entities: MarketSnapshot, Position, PositionRequest.
"""

from src.core.domain.market import MarketSnapshot
from src.core.domain.position import BorrowParams, FundingParams, Position
from src.core.domain.request import ZERO_ADDRESS, PositionRequest, RequestStatus

__all__ = [
    # Market model
    "MarketSnapshot",
    # Position model
    "BorrowParams",
    "FundingParams",
    "Position",
    # Request model
    "ZERO_ADDRESS",
    "PositionRequest",
    "RequestStatus",
]

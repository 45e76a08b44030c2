"""Fees — ленивое начисление borrow и funding комиссий по позициям."""

from src.fees.borrowing import (
    borrow_fee_checkpoint,
    fee_for_size_change,
    fees_since_last_update,
    pending_rate_fees,
    total_fees_owed,
)
from src.fees.funding import (
    funding_fee_checkpoint,
    funding_fee_for_size_change,
    funding_fees_since_last_update,
    pending_funding_fees,
    total_funding_owed,
)

__all__ = [
    # Borrowing
    "borrow_fee_checkpoint",
    "fee_for_size_change",
    "fees_since_last_update",
    "pending_rate_fees",
    "total_fees_owed",
    # Funding
    "funding_fee_checkpoint",
    "funding_fee_for_size_change",
    "funding_fees_since_last_update",
    "pending_funding_fees",
    "total_funding_owed",
]

"""Application DTOs (no driver dependency)."""

from pos_backend.application.dtos.points import (
    BalanceResult,
    EarnResult,
    PointsTransactionResult,
    RedeemResult,
)
from pos_backend.application.dtos.store import (
    StoreCreate,
    StoreCreationResult,
    StoreRecord,
)

__all__ = [
    "BalanceResult",
    "EarnResult",
    "PointsTransactionResult",
    "RedeemResult",
    "StoreCreate",
    "StoreCreationResult",
    "StoreRecord",
]

"""DTOs for points ledger use cases."""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class EarnResult:
    """Outcome of earn_points."""

    global_customer_id: str
    points_earned: int
    total_points: int
    available_points: int
    transaction_id: str
    expires_at: datetime | None = None


@dataclass(frozen=True)
class RedeemResult:
    """Outcome of redeem_points."""

    global_customer_id: str
    points_redeemed: int
    remaining_points: int
    points_value: float
    transaction_id: str


@dataclass(frozen=True)
class BalanceResult:
    """Points balance read-model (zero balance when the customer has none)."""

    global_customer_id: str
    total_points: int
    available_points: int
    pending_points: int = 0
    lifetime_earned: int = 0
    lifetime_spent: int = 0
    points_value_per_point: float = 0.01
    customer_name: str | None = None
    last_transaction_date: datetime | None = None


@dataclass(frozen=True)
class PointsTransactionResult:
    """One points ledger entry. points is signed: positive earned, negative spent."""

    id: str
    global_customer_id: str
    transaction_type: str
    points: int
    earning_store_id: str | None = None
    redeeming_store_id: str | None = None
    invoice_number: str | None = None
    purchase_amount: float | None = None
    points_value: float | None = None
    description: str | None = None
    expires_at: datetime | None = None
    created_at: datetime | None = None

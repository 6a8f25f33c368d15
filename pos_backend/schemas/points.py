"""Points ledger API schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class EarnPointsRequest(BaseModel):
    """Award points for a purchase by a customer of the calling store."""

    customer_id: str = Field(..., min_length=1, description="Customer id in the calling store")
    purchase_amount: float = Field(..., gt=0)
    points_percentage: float | None = Field(default=None, gt=0, le=100)
    invoice_number: str | None = None


class RedeemPointsRequest(BaseModel):
    """Spend points at the calling store. One customer identifier is required."""

    points: int = Field(..., gt=0)
    customer_id: str | None = None
    global_customer_id: str | None = None
    phone: str | None = None
    email: str | None = None
    invoice_number: str | None = None
    description: str | None = None


class EarnPointsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    global_customer_id: str
    points_earned: int
    total_points: int
    available_points: int
    transaction_id: str
    expires_at: datetime | None = None


class RedeemPointsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    global_customer_id: str
    points_redeemed: int
    remaining_points: int
    points_value: float
    transaction_id: str


class BalanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    global_customer_id: str
    total_points: int
    available_points: int
    pending_points: int = 0
    lifetime_earned: int = 0
    lifetime_spent: int = 0
    points_value_per_point: float
    customer_name: str | None = None
    last_transaction_date: datetime | None = None


class PointsTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

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


class PointsHistoryResponse(BaseModel):
    items: list[PointsTransactionResponse]
    total: int
    skip: int
    limit: int


class StorePointsAccountResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    store_id: str
    store_name: str
    points_value_per_point: float
    total_points_issued: int
    total_points_redeemed: int
    net_points_balance: int
    total_points_value_issued: float
    total_points_value_redeemed: float
    net_financial_balance: float
    amount_owed: float
    last_updated: datetime

"""Domain entities for the points ledger.

StorePointsAccount is the per-store accounting aggregate; every derived
field comes from recalculate(), never set independently.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pos_backend.shared.utils.datetime import utc_now


@dataclass
class StorePointsAccount:
    """Points issued and redeemed by one store, with derived financial totals."""

    store_id: str
    store_name: str
    points_value_per_point: float
    total_points_issued: int = 0
    total_points_redeemed: int = 0
    net_points_balance: int = 0
    total_points_value_issued: float = 0.0
    total_points_value_redeemed: float = 0.0
    net_financial_balance: float = 0.0
    amount_owed: float = 0.0
    last_updated: datetime = field(default_factory=utc_now)

    def recalculate(self) -> None:
        """Derive balances from the issued/redeemed counters."""
        self.net_points_balance = self.total_points_issued - self.total_points_redeemed
        self.total_points_value_issued = (
            self.total_points_issued * self.points_value_per_point
        )
        self.total_points_value_redeemed = (
            self.total_points_redeemed * self.points_value_per_point
        )
        self.net_financial_balance = (
            self.total_points_value_issued - self.total_points_value_redeemed
        )
        self.amount_owed = abs(self.net_financial_balance)
        self.last_updated = utc_now()

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> StorePointsAccount:
        """Build from a store_points_accounts document (derived fields are recomputed)."""
        account = cls(
            store_id=doc["storeId"],
            store_name=doc.get("storeName", ""),
            points_value_per_point=float(doc.get("pointsValuePerPoint", 0.01)),
            total_points_issued=int(doc.get("totalPointsIssued", 0)),
            total_points_redeemed=int(doc.get("totalPointsRedeemed", 0)),
        )
        account.recalculate()
        return account

    def to_document(self) -> dict[str, Any]:
        """Persisted field names (camelCase, as stored)."""
        return {
            "storeId": self.store_id,
            "storeName": self.store_name,
            "pointsValuePerPoint": self.points_value_per_point,
            "totalPointsIssued": self.total_points_issued,
            "totalPointsRedeemed": self.total_points_redeemed,
            "netPointsBalance": self.net_points_balance,
            "totalPointsValueIssued": self.total_points_value_issued,
            "totalPointsValueRedeemed": self.total_points_value_redeemed,
            "netFinancialBalance": self.net_financial_balance,
            "amountOwed": self.amount_owed,
            "lastUpdated": self.last_updated,
        }


@dataclass(frozen=True)
class PointsPolicy:
    """Effective points settings for a store (store document, else global, else defaults)."""

    user_points_percentage: float
    points_value_per_point: float
    company_profit_percentage: float = 0.0
    default_threshold: float = 0.0
    min_purchase_amount: float | None = None
    max_points_per_transaction: int | None = None
    points_expiration_days: int | None = None

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> PointsPolicy:
        return cls(
            user_points_percentage=float(doc.get("userPointsPercentage", 0)),
            points_value_per_point=float(doc.get("pointsValuePerPoint") or 0.01),
            company_profit_percentage=float(doc.get("companyProfitPercentage", 0)),
            default_threshold=float(doc.get("defaultThreshold", 0)),
            min_purchase_amount=doc.get("minPurchaseAmount"),
            max_points_per_transaction=doc.get("maxPointsPerTransaction"),
            points_expiration_days=doc.get("pointsExpirationDays"),
        )

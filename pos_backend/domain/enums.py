"""Domain enumerations for the POS backend.

Enums represent fixed sets of domain values (entity types, storage policy,
ledger transaction types).
"""

from enum import Enum


class EntityType(str, Enum):
    """Store-scoped entity types. The value is the collection-name suffix."""

    PRODUCTS = "products"
    SALES = "sales"
    CUSTOMERS = "customers"
    BRANDS = "brands"
    CATEGORIES = "categories"
    UNITS = "units"
    SETTINGS = "settings"
    CUSTOMER_PAYMENTS = "customer_payments"
    WAREHOUSES = "warehouses"
    PAYMENTS = "payments"
    MERCHANTS = "merchants"
    STORE_ACCOUNTS = "store_accounts"
    USERS = "users"

    @classmethod
    def values(cls) -> list[str]:
        """Return all entity type values as strings."""
        return [entity.value for entity in cls]


class StoragePolicy(str, Enum):
    """Where an entity's documents live.

    SHARDED: one '{prefix}_{entity}' collection per store on the store's shard.
    UNIFIED: one global collection in the control database, filtered by storeId.
    """

    SHARDED = "sharded"
    UNIFIED = "unified"


class TransactionType(str, Enum):
    """Points ledger entry type. The sign of points encodes direction."""

    EARNED = "earned"
    SPENT = "spent"
    EXPIRED = "expired"
    ADJUSTED = "adjusted"


class IdentifierType(str, Enum):
    """Which contact field a global customer id was derived from."""

    PHONE = "phone"
    EMAIL = "email"


class PaymentMethod(str, Enum):
    """Sale payment method."""

    CASH = "cash"
    CARD = "card"
    CREDIT = "credit"


class SaleStatus(str, Enum):
    """Sale status."""

    COMPLETED = "completed"
    PARTIAL_PAYMENT = "partial_payment"
    PENDING = "pending"
    REFUNDED = "refunded"
    PARTIAL_REFUND = "partial_refund"


class SubscriptionDuration(str, Enum):
    """Predefined subscription lengths offered at store onboarding."""

    ONE_MONTH = "1month"
    TWO_MONTHS = "2months"
    ONE_YEAR = "1year"
    TWO_YEARS = "2years"

    @property
    def months(self) -> int:
        return {
            SubscriptionDuration.ONE_MONTH: 1,
            SubscriptionDuration.TWO_MONTHS: 2,
            SubscriptionDuration.ONE_YEAR: 12,
            SubscriptionDuration.TWO_YEARS: 24,
        }[self]

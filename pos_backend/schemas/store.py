"""Store administration API schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from pos_backend.core.constants import STORE_PREFIX_PATTERN
from pos_backend.domain.enums import SubscriptionDuration


class StoreCreateRequest(BaseModel):
    """Request body for onboarding a store.

    store_id and prefix are normalized to lowercase. The prefix namespaces
    every per-store collection and cannot change later. Subscription: an
    explicit end date wins over a duration; with neither, one month.
    """

    store_id: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)
    prefix: str = Field(..., min_length=1, max_length=50, pattern=STORE_PREFIX_PATTERN)
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    country: str | None = None
    is_trial_account: bool = False
    subscription_duration: SubscriptionDuration | None = None
    subscription_end_date: datetime | None = None
    create_default_admin: bool = False
    admin_email: str | None = None
    admin_name: str | None = None
    admin_password: SecretStr | None = Field(
        default=None,
        description="Optional initial admin password (min 8 chars); generated when omitted, never returned",
    )

    @field_validator("store_id", "prefix", mode="before")
    @classmethod
    def normalize_key(cls, v: str) -> str:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("admin_password")
    @classmethod
    def validate_admin_password_length(cls, v: SecretStr | None) -> SecretStr | None:
        if v is not None and len(v.get_secret_value()) < 8:
            raise ValueError("admin_password must be at least 8 characters")
        return v


class StoreResponse(BaseModel):
    """Store Directory record. The shard id is internal and not exposed."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    store_id: str
    name: str
    prefix: str
    store_number: int | None = None
    is_active: bool
    is_trial_account: bool
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    country: str | None = None
    subscription_start_date: datetime | None = None
    subscription_end_date: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class StoreCreateResponse(BaseModel):
    store: StoreResponse
    admin_username: str | None = None
    provisioned_collections: int = 0


class StoreUpdate(BaseModel):
    """Partial update of a store's mutable fields."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    country: str | None = None
    is_trial_account: bool | None = None

    def to_document(self) -> dict:
        """Set fields only, camelCase as stored."""
        data = self.model_dump(exclude_unset=True)
        if "is_trial_account" in data:
            data["isTrialAccount"] = data.pop("is_trial_account")
        return data


class SubscriptionRenewRequest(BaseModel):
    subscription_duration: SubscriptionDuration | None = None
    subscription_end_date: datetime | None = None


class StoreStatusUpdate(BaseModel):
    is_active: bool

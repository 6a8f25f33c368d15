"""DTOs for store directory and onboarding use cases."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pos_backend.shared.utils.datetime import ensure_utc


@dataclass(frozen=True)
class StoreRecord:
    """Store Directory entry. prefix, store_id and shard_id never change once set."""

    id: str
    store_id: str
    name: str
    prefix: str
    shard_id: int | None
    store_number: int | None = None
    is_active: bool = True
    is_trial_account: bool = False
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    country: str | None = None
    subscription_start_date: datetime | None = None
    subscription_end_date: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> StoreRecord:
        """Map a stores document (camelCase) to a StoreRecord."""
        shard_id = doc.get("shardId")
        return cls(
            id=str(doc["_id"]),
            store_id=doc["storeId"],
            name=doc.get("name", ""),
            prefix=doc["prefix"],
            shard_id=int(shard_id) if shard_id is not None else None,
            store_number=doc.get("storeNumber"),
            is_active=doc.get("isActive", True),
            is_trial_account=doc.get("isTrialAccount", False),
            email=doc.get("email"),
            phone=doc.get("phone"),
            address=doc.get("address"),
            city=doc.get("city"),
            country=doc.get("country"),
            subscription_start_date=ensure_utc(doc.get("subscriptionStartDate")),
            subscription_end_date=ensure_utc(doc.get("subscriptionEndDate")),
            created_at=ensure_utc(doc.get("createdAt")),
            updated_at=ensure_utc(doc.get("updatedAt")),
        )


@dataclass(frozen=True)
class StoreCreate:
    """Input for store onboarding."""

    store_id: str
    name: str
    prefix: str
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    country: str | None = None
    is_trial_account: bool = False
    subscription_duration: str | None = None
    subscription_end_date: datetime | None = None
    create_default_admin: bool = False
    admin_email: str | None = None
    admin_name: str | None = None
    admin_password: str | None = None


@dataclass(frozen=True)
class StoreCreationResult:
    """Result of onboarding: the new record, plus the default admin when one was created.

    Admin password is never included.
    """

    store: StoreRecord
    admin_username: str | None = None
    provisioned_collections: int = 0

"""Store onboarding: directory record, shard placement, collections and default admin."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pymongo.errors import PyMongoError

from pos_backend.application.dtos.store import StoreCreate, StoreCreationResult, StoreRecord
from pos_backend.domain.enums import SubscriptionDuration
from pos_backend.domain.exceptions import (
    DuplicateKeyException,
    PosException,
    StoreAlreadyExistsException,
    ValidationException,
)
from pos_backend.domain.value_objects import (
    StorePrefix,
    collection_name,
    normalize_store_key,
)
from pos_backend.infrastructure.persistence.schemas import sharded_entity_types
from pos_backend.infrastructure.persistence.store_directory import StoreDirectory
from pos_backend.infrastructure.persistence.tenant_models import TenantModelResolver
from pos_backend.infrastructure.persistence.unified import UnifiedCollections
from pos_backend.infrastructure.security.password import (
    generate_secure_password,
    get_password_hash,
)
from pos_backend.shared.utils.datetime import add_months, ensure_utc, epoch_millis, utc_now

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_ROLE = "Manager"
DEFAULT_ADMIN_PERMISSIONS = (
    "dashboard",
    "products",
    "categories",
    "brands",
    "purchases",
    "expenses",
    "salesToday",
    "salesHistory",
    "posRetail",
    "posWholesale",
    "refunds",
    "preferences",
    "users",
)


def subscription_window(
    duration: str | None = None,
    end_date: datetime | None = None,
    now: datetime | None = None,
) -> tuple[datetime, datetime]:
    """Return (start, end) of a subscription starting now.

    An explicit end_date wins over duration; with neither, the window is one month.

    Raises:
        ValidationException: end_date not in the future, or unknown duration.
    """
    start = now or utc_now()
    if end_date is not None:
        end = ensure_utc(end_date)
        if end <= start:
            raise ValidationException(
                "Subscription end date must be in the future", field="subscription_end_date"
            )
        return start, end
    if duration is None:
        return start, add_months(start, 1)
    try:
        months = SubscriptionDuration(duration).months
    except ValueError:
        valid = ", ".join(d.value for d in SubscriptionDuration)
        raise ValidationException(
            f"Invalid subscription duration. Valid options: {valid}",
            field="subscription_duration",
        ) from None
    return start, add_months(start, months)


class StoreService:
    """Creates, updates and removes stores."""

    def __init__(
        self,
        directory: StoreDirectory,
        resolver: TenantModelResolver,
        unified: UnifiedCollections,
    ) -> None:
        self.directory = directory
        self.resolver = resolver
        self.unified = unified

    async def onboard_store(self, data: StoreCreate) -> StoreCreationResult:
        """Create a store on the next shard, provision its collections, optionally add an admin.

        Collection provisioning and default-admin creation are side effects:
        their failures are logged and the store is still created.

        Raises:
            ValidationException: empty store id, bad subscription input.
            InvalidPrefixException: prefix fails the charset rule.
            CollectionNameTooLongException: prefix too long for some entity.
            StoreAlreadyExistsException: store id or prefix taken.
            DuplicateKeyException: default admin email already in use.
        """
        store_id = normalize_store_key(data.store_id)
        if not store_id:
            raise ValidationException("Store ID is required", field="store_id")
        prefix = StorePrefix(normalize_store_key(data.prefix))
        for entity_type in sharded_entity_types():
            collection_name(prefix, entity_type)

        if await self.directory.exists(store_id=store_id):
            raise StoreAlreadyExistsException("storeId", store_id)
        if await self.directory.exists(prefix=prefix.value):
            raise StoreAlreadyExistsException("prefix", prefix.value)
        admin_email = (data.admin_email or "").strip().lower()
        if data.create_default_admin and admin_email:
            taken = await self.unified.users.find_across_stores({"email": admin_email}, limit=1)
            if taken:
                raise DuplicateKeyException("user", "email", admin_email)

        start, end = subscription_window(data.subscription_duration, data.subscription_end_date)
        shard_id = await self.directory.assign_shard_for_new_store()
        store_number = await self.directory.next_store_number()
        logger.info("Assigning new store %r to shard %s", data.name, shard_id)
        record = await self.directory.create_store(
            store_id=store_id,
            name=data.name,
            prefix=prefix.value,
            shard_id=shard_id,
            store_number=store_number,
            email=data.email,
            phone=data.phone,
            address=data.address,
            city=data.city,
            country=data.country,
            isTrialAccount=data.is_trial_account,
            subscriptionStartDate=start,
            subscriptionEndDate=end,
        )

        provisioned = await self._provision_collections(record)
        admin_username = None
        if data.create_default_admin and admin_email:
            admin_username = await self._create_default_admin(record, data, admin_email)
        return StoreCreationResult(
            store=record,
            admin_username=admin_username,
            provisioned_collections=provisioned,
        )

    async def _provision_collections(self, record: StoreRecord) -> int:
        # Side effect: collections are also created lazily on first use.
        try:
            return await self.resolver.provision_store(record.store_id, record.shard_id)
        except (PosException, PyMongoError) as e:
            logger.warning(
                "Collection provisioning failed for store %s: %s", record.store_id, e
            )
            return 0

    async def _create_default_admin(
        self, record: StoreRecord, data: StoreCreate, email: str
    ) -> str | None:
        # Side effect: the store exists whether or not its admin could be created.
        users = self.unified.users
        username = f"{email.split('@')[0]}_{record.prefix}".lower()
        try:
            if await users.find_one(record.store_id, {"username": username}):
                logger.warning(
                    "Username %s already exists for store %s", username, record.store_id
                )
                username = f"{username}_{epoch_millis()}"
            await users.insert_one(
                record.store_id,
                {
                    "fullName": data.admin_name or f"Store Admin - {record.name}",
                    "username": username,
                    "email": email,
                    "passwordHash": get_password_hash(
                        data.admin_password or generate_secure_password()
                    ),
                    "role": DEFAULT_ADMIN_ROLE,
                    "permissions": list(DEFAULT_ADMIN_PERMISSIONS),
                    "status": "Active",
                },
            )
        except (PosException, PyMongoError) as e:
            logger.error(
                "Default admin creation failed for store %s: %s", record.store_id, e
            )
            return None
        logger.info("Default admin %s created for store %s", username, record.store_id)
        return username

    async def get_store(self, store_id_or_prefix: str) -> StoreRecord:
        return await self.directory.get_store(store_id_or_prefix)

    async def list_stores(
        self, skip: int = 0, limit: int = 100, active_only: bool = False
    ) -> list[StoreRecord]:
        return await self.directory.list_stores(skip=skip, limit=limit, active_only=active_only)

    async def update_store(self, store_id_or_prefix: str, updates: dict[str, Any]) -> StoreRecord:
        return await self.directory.update_store(store_id_or_prefix, updates)

    async def renew_subscription(
        self,
        store_id_or_prefix: str,
        duration: str | None = None,
        end_date: datetime | None = None,
    ) -> StoreRecord:
        """Restart a store's subscription now and reactivate it."""
        if duration is None and end_date is None:
            raise ValidationException(
                "Either subscription_duration or subscription_end_date is required",
                field="subscription_duration",
            )
        start, end = subscription_window(duration, end_date)
        return await self.directory.update_store(
            store_id_or_prefix,
            {"subscriptionStartDate": start, "subscriptionEndDate": end, "isActive": True},
        )

    async def set_active(self, store_id_or_prefix: str, is_active: bool) -> StoreRecord:
        return await self.directory.update_store(store_id_or_prefix, {"isActive": is_active})

    async def delete_store(self, store_id_or_prefix: str) -> StoreRecord:
        """Delete the directory record; the store's collections are kept."""
        return await self.directory.delete_store(store_id_or_prefix)

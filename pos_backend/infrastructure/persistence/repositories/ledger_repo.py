"""Points ledger repository: global customers, balances, transactions, store accounts.

All collections live in the control database. Every method takes an
optional session so the points service can run a whole earn/redeem
inside one multi-document transaction.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from pos_backend.core.config import Settings, get_settings
from pos_backend.core.constants import (
    COLLECTION_GLOBAL_CUSTOMERS,
    COLLECTION_POINTS_BALANCES,
    COLLECTION_POINTS_SETTINGS,
    COLLECTION_POINTS_TRANSACTIONS,
    COLLECTION_STORE_POINTS_ACCOUNTS,
    GLOBAL_SETTINGS_STORE_ID,
)
from pos_backend.domain.entities import PointsPolicy, StorePointsAccount
from pos_backend.domain.enums import IdentifierType
from pos_backend.domain.exceptions import ValidationException
from pos_backend.domain.value_objects import normalize_customer_identifier
from pos_backend.infrastructure.persistence.database import DatabaseRegistry
from pos_backend.shared.utils.datetime import utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

_DERIVED_ACCOUNT_FIELDS = (
    "netPointsBalance",
    "totalPointsValueIssued",
    "totalPointsValueRedeemed",
    "netFinancialBalance",
    "amountOwed",
    "lastUpdated",
)


class LedgerRepository:
    """Data access for the cross-store points ledger."""

    def __init__(self, registry: DatabaseRegistry, settings: Settings | None = None) -> None:
        self.registry = registry
        self.settings = settings or get_settings()

    async def _db(self) -> Any:
        return await self.registry.get_control_database()

    async def _coll(self, name: str) -> Any:
        db = await self._db()
        return db[name]

    async def run_in_transaction(self, callback: Callable[[Any], Awaitable[T]]) -> T:
        """Run callback(session) as one multi-document transaction and return its result.

        The driver commits when callback returns, aborts when it raises, and
        reruns the whole callback on TransientTransactionError or
        UnknownTransactionCommitResult, so callback must not keep state
        across attempts. A duplicate key from a concurrent upsert (two first
        earns for one customer) aborts the attempt and is retried once, by
        which time the conflicting document exists. With ledger transactions
        disabled, callback runs once with session=None.
        """
        if not self.settings.ledger_use_transactions:
            return await callback(None)
        connection = await self.registry.get_control_connection()
        async with connection.client.start_session() as session:
            try:
                return await session.with_transaction(callback)
            except DuplicateKeyError as e:
                logger.info("Ledger transaction lost an upsert race, retrying: %s", e)
                return await session.with_transaction(callback)

    async def ensure_indexes(self) -> None:
        customers = await self._coll(COLLECTION_GLOBAL_CUSTOMERS)
        await customers.create_index([("globalCustomerId", ASCENDING)], unique=True)
        await customers.create_index([("stores.storeId", ASCENDING)])
        balances = await self._coll(COLLECTION_POINTS_BALANCES)
        await balances.create_index([("globalCustomerId", ASCENDING)], unique=True)
        transactions = await self._coll(COLLECTION_POINTS_TRANSACTIONS)
        await transactions.create_index(
            [("globalCustomerId", ASCENDING), ("createdAt", DESCENDING)]
        )
        await transactions.create_index([("earningStoreId", ASCENDING)])
        await transactions.create_index([("redeemingStoreId", ASCENDING)])
        accounts = await self._coll(COLLECTION_STORE_POINTS_ACCOUNTS)
        await accounts.create_index([("storeId", ASCENDING)], unique=True)
        settings = await self._coll(COLLECTION_POINTS_SETTINGS)
        await settings.create_index([("storeId", ASCENDING)], unique=True)

    # Global customers

    async def get_or_create_global_customer(
        self,
        store_id: str,
        customer_id: str,
        customer_name: str,
        phone: str | None = None,
        email: str | None = None,
        session: Any = None,
    ) -> dict[str, Any]:
        """Return the global customer for phone (else email), linking store_id once.

        The first writer for an identifier creates the record; later writers
        only append a store link when that store is not linked yet.

        Raises:
            ValidationException: neither phone nor email given.
        """
        phone = (phone or "").strip() or None
        email = (email or "").strip() or None
        identifier = phone or email
        if not identifier:
            raise ValidationException(
                "Either phone or email is required to identify a customer across stores",
                field="phone",
            )
        identifier_type = IdentifierType.PHONE if phone else IdentifierType.EMAIL
        global_customer_id = normalize_customer_identifier(identifier)
        store_id = store_id.lower()
        customers = await self._coll(COLLECTION_GLOBAL_CUSTOMERS)
        on_insert = {
            "globalCustomerId": global_customer_id,
            "identifierType": identifier_type.value,
            "name": customer_name,
            "phone": normalize_customer_identifier(phone) if phone else None,
            "email": normalize_customer_identifier(email) if email else None,
            "stores": [],
            "createdAt": utc_now(),
        }
        try:
            await customers.update_one(
                {"globalCustomerId": global_customer_id},
                {"$setOnInsert": on_insert},
                upsert=True,
                session=session,
            )
        except DuplicateKeyError:
            # The server has aborted any enclosing transaction; let the caller retry it.
            if session is not None:
                raise
            logger.debug("Global customer %s created concurrently", global_customer_id)
        link = {
            "storeId": store_id,
            "customerId": customer_id,
            "customerName": customer_name,
            "registeredAt": utc_now(),
        }
        await customers.update_one(
            {"globalCustomerId": global_customer_id, "stores.storeId": {"$ne": store_id}},
            {"$push": {"stores": link}},
            session=session,
        )
        return await customers.find_one(
            {"globalCustomerId": global_customer_id}, session=session
        )

    async def get_global_customer(
        self, global_customer_id: str, session: Any = None
    ) -> dict[str, Any] | None:
        customers = await self._coll(COLLECTION_GLOBAL_CUSTOMERS)
        return await customers.find_one(
            {"globalCustomerId": normalize_customer_identifier(global_customer_id)},
            session=session,
        )

    # Balances

    async def get_balance(
        self, global_customer_id: str, session: Any = None
    ) -> dict[str, Any] | None:
        balances = await self._coll(COLLECTION_POINTS_BALANCES)
        return await balances.find_one(
            {"globalCustomerId": global_customer_id}, session=session
        )

    async def credit_balance(
        self,
        global_customer: dict[str, Any],
        points: int,
        session: Any = None,
    ) -> dict[str, Any]:
        """Add points to a balance, creating it on first use; return the balance after."""
        balances = await self._coll(COLLECTION_POINTS_BALANCES)
        now = utc_now()
        return await balances.find_one_and_update(
            {"globalCustomerId": global_customer["globalCustomerId"]},
            {
                "$inc": {
                    "totalPoints": points,
                    "availablePoints": points,
                    "lifetimeEarned": points,
                },
                "$set": {
                    "customerName": global_customer.get("name"),
                    "customerPhone": global_customer.get("phone"),
                    "customerEmail": global_customer.get("email"),
                    "lastTransactionDate": now,
                    "updatedAt": now,
                },
                "$setOnInsert": {
                    "globalCustomerId": global_customer["globalCustomerId"],
                    "pendingPoints": 0,
                    "lifetimeSpent": 0,
                    "createdAt": now,
                },
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
            session=session,
        )

    async def debit_balance(
        self, global_customer_id: str, points: int, session: Any = None
    ) -> dict[str, Any] | None:
        """Subtract points if at least that many are available; None otherwise."""
        balances = await self._coll(COLLECTION_POINTS_BALANCES)
        now = utc_now()
        return await balances.find_one_and_update(
            {"globalCustomerId": global_customer_id, "availablePoints": {"$gte": points}},
            {
                "$inc": {
                    "totalPoints": -points,
                    "availablePoints": -points,
                    "lifetimeSpent": points,
                },
                "$set": {"lastTransactionDate": now, "updatedAt": now},
            },
            return_document=ReturnDocument.AFTER,
            session=session,
        )

    # Transactions

    async def insert_transaction(
        self, document: dict[str, Any], session: Any = None
    ) -> dict[str, Any]:
        transactions = await self._coll(COLLECTION_POINTS_TRANSACTIONS)
        doc = {"createdAt": utc_now(), **document}
        result = await transactions.insert_one(doc, session=session)
        doc["_id"] = result.inserted_id
        return doc

    async def list_transactions(
        self, global_customer_id: str, skip: int = 0, limit: int = 20
    ) -> list[dict[str, Any]]:
        transactions = await self._coll(COLLECTION_POINTS_TRANSACTIONS)
        cursor = (
            transactions.find({"globalCustomerId": global_customer_id})
            .sort("createdAt", DESCENDING)
            .skip(skip)
            .limit(limit)
        )
        return await cursor.to_list(length=limit)

    async def count_transactions(self, global_customer_id: str) -> int:
        transactions = await self._coll(COLLECTION_POINTS_TRANSACTIONS)
        return await transactions.count_documents({"globalCustomerId": global_customer_id})

    # Store points accounts

    async def apply_store_account_delta(
        self,
        store_id: str,
        store_name: str,
        points_value_per_point: float,
        *,
        issued: int = 0,
        redeemed: int = 0,
        session: Any = None,
    ) -> StorePointsAccount:
        """Increment a store's issued/redeemed counters and store the recalculated totals."""
        accounts = await self._coll(COLLECTION_STORE_POINTS_ACCOUNTS)
        doc = await accounts.find_one_and_update(
            {"storeId": store_id},
            {
                "$inc": {"totalPointsIssued": issued, "totalPointsRedeemed": redeemed},
                "$setOnInsert": {
                    "storeId": store_id,
                    "storeName": store_name,
                    "pointsValuePerPoint": points_value_per_point,
                },
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
            session=session,
        )
        account = StorePointsAccount.from_document(doc)
        derived = account.to_document()
        await accounts.update_one(
            {"storeId": store_id},
            {"$set": {k: derived[k] for k in _DERIVED_ACCOUNT_FIELDS}},
            session=session,
        )
        return account

    async def get_store_account(self, store_id: str) -> StorePointsAccount | None:
        accounts = await self._coll(COLLECTION_STORE_POINTS_ACCOUNTS)
        doc = await accounts.find_one({"storeId": store_id})
        return StorePointsAccount.from_document(doc) if doc else None

    async def list_store_accounts(
        self, skip: int = 0, limit: int = 100
    ) -> list[StorePointsAccount]:
        accounts = await self._coll(COLLECTION_STORE_POINTS_ACCOUNTS)
        cursor = accounts.find({}).sort("amountOwed", DESCENDING).skip(skip).limit(limit)
        return [StorePointsAccount.from_document(d) for d in await cursor.to_list(length=limit)]

    # Settings

    async def get_points_policy(self, store_id: str | None, session: Any = None) -> PointsPolicy:
        """Effective settings: the store's document, else the global one (created if missing)."""
        settings = await self._coll(COLLECTION_POINTS_SETTINGS)
        if store_id:
            doc = await settings.find_one({"storeId": store_id.lower()}, session=session)
            if doc is not None:
                return PointsPolicy.from_document(doc)
        doc = await settings.find_one_and_update(
            {"storeId": GLOBAL_SETTINGS_STORE_ID},
            {"$setOnInsert": self._default_settings_document()},
            upsert=True,
            return_document=ReturnDocument.AFTER,
            session=session,
        )
        return PointsPolicy.from_document(doc)

    def _default_settings_document(self) -> dict[str, Any]:
        s = self.settings
        now = utc_now()
        return {
            "storeId": GLOBAL_SETTINGS_STORE_ID,
            "userPointsPercentage": s.points_user_percentage,
            "companyProfitPercentage": s.points_company_profit_percentage,
            "defaultThreshold": s.points_default_threshold,
            "pointsValuePerPoint": s.points_value_per_point,
            "createdAt": now,
            "updatedAt": now,
        }

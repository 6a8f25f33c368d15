"""Cross-store loyalty points: earn at one store, redeem at any other.

Earn and redeem each touch three collections (transaction log, balance,
store account). With ledger transactions enabled they commit or abort
together, and transient write conflicts rerun the whole unit. Without them
an earn writes its transaction log entry before the balance, so a partial
failure leaves an auditable entry.
"""

from __future__ import annotations

import logging
import math
from datetime import timedelta
from typing import Any

from bson import ObjectId
from bson.errors import InvalidId

from pos_backend.application.dtos.points import (
    BalanceResult,
    EarnResult,
    PointsTransactionResult,
    RedeemResult,
)
from pos_backend.domain.entities import PointsPolicy, StorePointsAccount
from pos_backend.domain.enums import TransactionType
from pos_backend.domain.exceptions import (
    InsufficientPointsException,
    PointsNotEarnedException,
    ResourceNotFoundException,
    ValidationException,
)
from pos_backend.domain.value_objects import normalize_customer_identifier
from pos_backend.infrastructure.persistence.repositories.ledger_repo import LedgerRepository
from pos_backend.infrastructure.persistence.store_directory import StoreDirectory
from pos_backend.infrastructure.persistence.tenant_models import TenantModelResolver
from pos_backend.shared.utils.datetime import ensure_utc, utc_now

logger = logging.getLogger(__name__)

UNKNOWN_STORE_NAME = "Unknown Store"


def compute_points(purchase_amount: float, percentage: float, policy: PointsPolicy) -> int:
    """Points earned for a purchase under policy.

    Raises:
        PointsNotEarnedException: nothing to earn, or amount below the minimum.
    """
    points = math.floor(purchase_amount * percentage / 100)
    if points <= 0:
        raise PointsNotEarnedException(
            "Purchase amount is too small to earn points", purchase_amount
        )
    if policy.min_purchase_amount and purchase_amount < policy.min_purchase_amount:
        raise PointsNotEarnedException(
            f"Minimum purchase amount of {policy.min_purchase_amount} is required to earn points",
            purchase_amount,
        )
    if policy.max_points_per_transaction:
        points = min(points, int(policy.max_points_per_transaction))
    return points


def _as_object_id(value: str) -> Any:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return value


def _transaction_result(doc: dict[str, Any]) -> PointsTransactionResult:
    return PointsTransactionResult(
        id=str(doc["_id"]),
        global_customer_id=doc["globalCustomerId"],
        transaction_type=doc["transactionType"],
        points=int(doc["points"]),
        earning_store_id=doc.get("earningStoreId"),
        redeeming_store_id=doc.get("redeemingStoreId"),
        invoice_number=doc.get("invoiceNumber"),
        purchase_amount=doc.get("purchaseAmount"),
        points_value=doc.get("pointsValue"),
        description=doc.get("description"),
        expires_at=ensure_utc(doc.get("expiresAt")),
        created_at=ensure_utc(doc.get("createdAt")),
    )


class PointsService:
    """Earn, redeem and query loyalty points across stores."""

    def __init__(
        self,
        ledger: LedgerRepository,
        directory: StoreDirectory,
        resolver: TenantModelResolver,
    ) -> None:
        self.ledger = ledger
        self.directory = directory
        self.resolver = resolver

    async def _canonical_store(self, store_id: str) -> tuple[str, str]:
        """(storeId, name) for a store id or prefix; the input itself when unknown."""
        record = await self.directory.find_store(store_id)
        if record is None:
            return store_id.strip().lower(), UNKNOWN_STORE_NAME
        return record.store_id, record.name

    async def _local_customer(self, store_id: str, customer_id: str) -> dict[str, Any]:
        customers = await self.resolver.get_customer_model_for_store(store_id)
        customer = await customers.find_one({"_id": _as_object_id(customer_id)})
        if customer is None:
            raise ResourceNotFoundException("customer", customer_id)
        return customer

    async def _link_customer(
        self, store_id: str, customer: dict[str, Any], session: Any = None
    ) -> dict[str, Any]:
        return await self.ledger.get_or_create_global_customer(
            store_id,
            str(customer["_id"]),
            customer.get("name", ""),
            phone=customer.get("phone"),
            email=customer.get("email"),
            session=session,
        )

    async def earn_points(
        self,
        earning_store_id: str,
        local_customer_id: str,
        purchase_amount: float,
        percentage: float | None = None,
        invoice_number: str | None = None,
    ) -> EarnResult:
        """Award points for a purchase at earning_store_id.

        Raises:
            ValidationException: purchase amount not positive.
            PointsNotEarnedException: no points for this purchase (nothing written).
            ResourceNotFoundException: local customer not found in the store.
        """
        if purchase_amount is None or purchase_amount <= 0:
            raise ValidationException("Purchase amount must be positive", field="purchase_amount")
        store_id, store_name = await self._canonical_store(earning_store_id)
        policy = await self.ledger.get_points_policy(store_id)
        effective_percentage = percentage or policy.user_points_percentage
        points = compute_points(purchase_amount, effective_percentage, policy)
        customer = await self._local_customer(earning_store_id, local_customer_id)

        expires_at = None
        if policy.points_expiration_days:
            expires_at = utc_now() + timedelta(days=policy.points_expiration_days)
        points_value = points * policy.points_value_per_point
        description = f"Points earned from purchase at {store_id}"
        if invoice_number:
            description += f" (Invoice: {invoice_number})"

        async def record_earn(session: Any) -> tuple[dict[str, Any], ...]:
            global_customer = await self._link_customer(store_id, customer, session)
            transaction = await self.ledger.insert_transaction(
                {
                    "globalCustomerId": global_customer["globalCustomerId"],
                    "customerName": global_customer.get("name"),
                    "earningStoreId": store_id,
                    "invoiceNumber": invoice_number,
                    "transactionType": TransactionType.EARNED.value,
                    "points": points,
                    "purchaseAmount": purchase_amount,
                    "pointsPercentage": effective_percentage,
                    "pointsValue": points_value,
                    "description": description,
                    "expiresAt": expires_at,
                },
                session=session,
            )
            balance = await self.ledger.credit_balance(global_customer, points, session=session)
            await self.ledger.apply_store_account_delta(
                store_id,
                store_name,
                policy.points_value_per_point,
                issued=points,
                session=session,
            )
            return global_customer, transaction, balance

        global_customer, transaction, balance = await self.ledger.run_in_transaction(record_earn)
        gcid = global_customer["globalCustomerId"]
        logger.info("Store %s issued %s points to %s", store_id, points, gcid)
        return EarnResult(
            global_customer_id=gcid,
            points_earned=points,
            total_points=int(balance["totalPoints"]),
            available_points=int(balance["availablePoints"]),
            transaction_id=str(transaction["_id"]),
            expires_at=expires_at,
        )

    async def resolve_global_customer_id(
        self,
        store_id: str | None,
        *,
        global_customer_id: str | None = None,
        phone: str | None = None,
        email: str | None = None,
        local_customer_id: str | None = None,
    ) -> str:
        """Global customer id from the first identifier given, in that order.

        A local customer id is resolved within store_id and linked to its
        global customer (created when missing).

        Raises:
            ValidationException: no identifier given.
            ResourceNotFoundException: local customer not found.
        """
        for value in (global_customer_id, phone, email):
            if value and value.strip():
                return normalize_customer_identifier(value)
        if local_customer_id:
            if not store_id:
                raise ValidationException(
                    "Store ID is required when using a customer id", field="customer_id"
                )
            canonical_id, _ = await self._canonical_store(store_id)
            customer = await self._local_customer(store_id, local_customer_id)
            global_customer = await self._link_customer(canonical_id, customer)
            return global_customer["globalCustomerId"]
        raise ValidationException(
            "Either customer_id, global_customer_id, phone, or email is required",
            field="customer_id",
        )

    async def redeem_points(
        self,
        redeeming_store_id: str,
        points: int,
        *,
        global_customer_id: str | None = None,
        phone: str | None = None,
        email: str | None = None,
        local_customer_id: str | None = None,
        invoice_number: str | None = None,
        description: str | None = None,
    ) -> RedeemResult:
        """Spend points at redeeming_store_id. No partial redemption.

        Raises:
            ValidationException: points not positive, or no customer identifier.
            InsufficientPointsException: fewer points available than requested
                (nothing written).
        """
        if points is None or points <= 0:
            raise ValidationException("Valid points amount is required", field="points")
        store_id, store_name = await self._canonical_store(redeeming_store_id)
        gcid = await self.resolve_global_customer_id(
            redeeming_store_id,
            global_customer_id=global_customer_id,
            phone=phone,
            email=email,
            local_customer_id=local_customer_id,
        )
        balance = await self.ledger.get_balance(gcid)
        available = int(balance["availablePoints"]) if balance else 0
        if available < points:
            raise InsufficientPointsException(gcid, available, points)
        policy = await self.ledger.get_points_policy(store_id)
        points_value = points * policy.points_value_per_point
        if not description:
            description = f"Points used for payment at {store_id}"
            if invoice_number:
                description += f" (Invoice: {invoice_number})"

        async def record_redeem(session: Any) -> tuple[dict[str, Any], dict[str, Any]]:
            updated = await self.ledger.debit_balance(gcid, points, session=session)
            if updated is None:
                # Balance changed since the read above.
                current = await self.ledger.get_balance(gcid, session=session)
                raise InsufficientPointsException(
                    gcid, int(current["availablePoints"]) if current else 0, points
                )
            transaction = await self.ledger.insert_transaction(
                {
                    "globalCustomerId": gcid,
                    "customerName": balance.get("customerName"),
                    "redeemingStoreId": store_id,
                    "invoiceNumber": invoice_number,
                    "transactionType": TransactionType.SPENT.value,
                    "points": -points,
                    "pointsValue": points_value,
                    "description": description,
                },
                session=session,
            )
            await self.ledger.apply_store_account_delta(
                store_id,
                store_name,
                policy.points_value_per_point,
                redeemed=points,
                session=session,
            )
            return updated, transaction

        updated, transaction = await self.ledger.run_in_transaction(record_redeem)
        logger.info("Store %s redeemed %s points from %s", store_id, points, gcid)
        return RedeemResult(
            global_customer_id=gcid,
            points_redeemed=points,
            remaining_points=int(updated["availablePoints"]),
            points_value=points_value,
            transaction_id=str(transaction["_id"]),
        )

    async def get_balance(
        self,
        store_id: str | None,
        *,
        global_customer_id: str | None = None,
        phone: str | None = None,
        email: str | None = None,
        local_customer_id: str | None = None,
    ) -> BalanceResult:
        """Current balance; a customer with no ledger entries has a zero balance."""
        gcid = await self.resolve_global_customer_id(
            store_id,
            global_customer_id=global_customer_id,
            phone=phone,
            email=email,
            local_customer_id=local_customer_id,
        )
        balance = await self.ledger.get_balance(gcid)
        policy = await self.ledger.get_points_policy(store_id)
        if balance is None:
            return BalanceResult(
                global_customer_id=gcid,
                total_points=0,
                available_points=0,
                points_value_per_point=policy.points_value_per_point,
            )
        return BalanceResult(
            global_customer_id=gcid,
            total_points=int(balance.get("totalPoints", 0)),
            available_points=int(balance.get("availablePoints", 0)),
            pending_points=int(balance.get("pendingPoints", 0)),
            lifetime_earned=int(balance.get("lifetimeEarned", 0)),
            lifetime_spent=int(balance.get("lifetimeSpent", 0)),
            points_value_per_point=policy.points_value_per_point,
            customer_name=balance.get("customerName"),
            last_transaction_date=ensure_utc(balance.get("lastTransactionDate")),
        )

    async def get_history(
        self, global_customer_id: str, skip: int = 0, limit: int = 20
    ) -> tuple[list[PointsTransactionResult], int]:
        """Ledger entries across all stores, newest first, with the total count."""
        gcid = normalize_customer_identifier(global_customer_id)
        docs = await self.ledger.list_transactions(gcid, skip=skip, limit=limit)
        total = await self.ledger.count_transactions(gcid)
        return [_transaction_result(d) for d in docs], total

    async def get_store_account(self, store_id: str) -> StorePointsAccount:
        canonical_id, _ = await self._canonical_store(store_id)
        account = await self.ledger.get_store_account(canonical_id)
        if account is None:
            raise ResourceNotFoundException("store points account", canonical_id)
        return account

    async def list_store_accounts(
        self, skip: int = 0, limit: int = 100
    ) -> list[StorePointsAccount]:
        return await self.ledger.list_store_accounts(skip=skip, limit=limit)

    async def get_points_policy(self, store_id: str | None) -> PointsPolicy:
        return await self.ledger.get_points_policy(store_id)

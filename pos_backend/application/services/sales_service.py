"""Sales and returns for one store, with per-store sequential invoice numbers.

Invoice numbers look like INV-1, INV-2, ... and are unique per store
(unique index on the store's sales collection). Two registers can read
the same maximum at once; the loser's insert hits the index and is
retried with a fresh number, a bounded number of times, before falling
back to a timestamp-derived number.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Any

from bson import ObjectId
from bson.errors import InvalidId

from pos_backend.application.services.product_service import ProductService
from pos_backend.core.config import Settings, get_settings
from pos_backend.domain.enums import PaymentMethod, SaleStatus
from pos_backend.domain.exceptions import (
    DuplicateKeyException,
    ResourceNotFoundException,
    ValidationException,
)
from pos_backend.infrastructure.persistence.tenant_models import TenantModel, TenantModelResolver
from pos_backend.shared.utils.datetime import epoch_millis, utc_now
from pos_backend.shared.utils.serialization import to_jsonable

logger = logging.getLogger(__name__)

INVOICE_FIELD = "invoiceNumber"
DEFAULT_UNIT = "piece"
DEFAULT_CUSTOMER_NAME = "Cash Customer"


def _payment_method(value: str | None, field: str = "payment_method") -> str:
    method = (value or "").strip().lower()
    try:
        return PaymentMethod(method).value
    except ValueError:
        valid = ", ".join(m.value for m in PaymentMethod)
        raise ValidationException(
            f"Payment method must be one of: {valid}", field=field
        ) from None


def _sale_status(remaining: float, paid: float) -> str:
    if remaining <= 0:
        return SaleStatus.COMPLETED.value
    if paid > 0:
        return SaleStatus.PARTIAL_PAYMENT.value
    return SaleStatus.PENDING.value


def _normalize_item(item: dict[str, Any]) -> dict[str, Any]:
    return {
        "productId": str(item.get("productId", "")),
        "productName": item.get("productName") or item.get("name") or "",
        "quantity": item.get("quantity") or 0,
        "unitPrice": item.get("unitPrice") or 0,
        "totalPrice": item.get("totalPrice") or item.get("total") or 0,
        "unit": item.get("unit") or DEFAULT_UNIT,
        "discount": item.get("discount") or 0,
        "conversionFactor": item.get("conversionFactor") or 1,
    }


def _object_id(value: str, resource: str) -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ResourceNotFoundException(resource, str(value)) from None


class SalesService:
    """Invoice numbering, sales and returns against a store's sales collection."""

    def __init__(
        self,
        resolver: TenantModelResolver,
        product_service: ProductService,
        settings: Settings | None = None,
    ) -> None:
        self.resolver = resolver
        self.product_service = product_service
        self.settings = settings or get_settings()
        self._invoice_re = re.compile(rf"^{re.escape(self.settings.invoice_prefix)}(\d+)$")

    async def _max_invoice_number(self, sales: TenantModel) -> int:
        highest = 0
        cursor = sales.collection.find({}, {INVOICE_FIELD: 1})
        async for doc in cursor:
            match = self._invoice_re.match(doc.get(INVOICE_FIELD) or "")
            if match:
                highest = max(highest, int(match.group(1)))
        return highest

    async def next_invoice_number(self, store_id: str) -> str:
        """Next sequential invoice number for the store (INV-1 when it has none)."""
        sales = await self.resolver.get_sale_model_for_store(store_id)
        return f"{self.settings.invoice_prefix}{await self._max_invoice_number(sales) + 1}"

    async def _insert_numbered(self, sales: TenantModel, document: dict[str, Any]) -> dict[str, Any]:
        """Insert document under a fresh invoice number, retrying on collisions."""
        for attempt in range(1, self.settings.invoice_max_attempts + 1):
            number = f"{self.settings.invoice_prefix}{await self._max_invoice_number(sales) + 1}"
            try:
                return await sales.insert_one({**document, INVOICE_FIELD: number})
            except DuplicateKeyException as e:
                if e.details.get("field") != INVOICE_FIELD:
                    raise
                logger.info(
                    "Invoice number %s taken in %s (attempt %s)",
                    number,
                    sales.collection_name,
                    attempt,
                )
        number = f"{self.settings.invoice_prefix}{epoch_millis()}"
        logger.warning(
            "Falling back to timestamp invoice number %s in %s", number, sales.collection_name
        )
        return await sales.insert_one({**document, INVOICE_FIELD: number})

    async def create_sale(self, store_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Record a sale.

        A caller-supplied invoice number is used when free. Without one, or
        when another sale already holds it, the next sequential number is
        generated.

        Raises:
            ValidationException: missing customer name or items, bad total or payment method.
        """
        items = data.get("items")
        if not data.get("customerName") or not isinstance(items, list) or not items:
            raise ValidationException(
                "Missing required fields: customerName and items are required", field="items"
            )
        total = data.get("total")
        if total is None or total <= 0:
            raise ValidationException(
                "Total amount is required and must be positive", field="total"
            )
        paid = data.get("paidAmount") or 0
        remaining = data.get("remainingAmount")
        if remaining is None:
            remaining = total - paid
        document = {
            "date": data.get("date") or utc_now(),
            "customerId": data.get("customerId"),
            "customerName": data["customerName"],
            "items": [_normalize_item(i) for i in items],
            "subtotal": data.get("subtotal") or 0,
            "totalItemDiscount": data.get("totalItemDiscount") or 0,
            "invoiceDiscount": data.get("invoiceDiscount") or 0,
            "tax": data.get("tax") or 0,
            "total": total,
            "paidAmount": paid,
            "remainingAmount": remaining,
            "paymentMethod": _payment_method(data.get("paymentMethod")),
            "status": data.get("status") or _sale_status(remaining, paid),
            "seller": data.get("seller") or "Unknown",
            "isReturn": False,
        }
        sales = await self.resolver.get_sale_model_for_store(store_id)
        invoice_number = (data.get(INVOICE_FIELD) or "").strip()
        sale = None
        if invoice_number:
            try:
                sale = await sales.insert_one({**document, INVOICE_FIELD: invoice_number})
            except DuplicateKeyException as e:
                if e.details.get("field") != INVOICE_FIELD:
                    raise
                logger.info(
                    "Invoice number %s already used in store %s; assigning the next one",
                    invoice_number,
                    store_id,
                )
        if sale is None:
            sale = await self._insert_numbered(sales, document)
        logger.info("Sale %s recorded for store %s", sale[INVOICE_FIELD], store_id)
        return to_jsonable(sale)

    async def get_sale(self, store_id: str, sale_id: str) -> dict[str, Any]:
        sales = await self.resolver.get_sale_model_for_store(store_id)
        sale = await sales.find_one({"_id": _object_id(sale_id, "sale")})
        if sale is None:
            raise ResourceNotFoundException("sale", sale_id)
        return to_jsonable(sale)

    async def list_sales(
        self, store_id: str, skip: int = 0, limit: int = 50
    ) -> list[dict[str, Any]]:
        sales = await self.resolver.get_sale_model_for_store(store_id)
        docs = await sales.find_many({}, sort=[("date", -1)], skip=skip, limit=limit)
        return [to_jsonable(d) for d in docs]

    async def create_return(self, store_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Record a return: restock the items and store a negative-total invoice.

        Every item is checked before any stock moves. With an original
        invoice, each returned product must appear on it and the quantity
        may not exceed what was sold.

        Raises:
            ValidationException: no items, bad item, or bad refund method.
            ResourceNotFoundException: original invoice or a product not found.
        """
        return_items = data.get("returnItems")
        if not isinstance(return_items, list) or not return_items:
            raise ValidationException(
                "Missing required fields: returnItems are required", field="returnItems"
            )
        refund_method = _payment_method(data.get("refundMethod") or "cash", "refund_method")
        sales = await self.resolver.get_sale_model_for_store(store_id)
        products = await self.resolver.get_product_model_for_store(store_id)

        original = None
        if data.get("originalInvoiceId"):
            original = await sales.find_one(
                {"_id": _object_id(data["originalInvoiceId"], "sale")}
            )
            if original is None:
                raise ResourceNotFoundException("sale", data["originalInvoiceId"])
        original_items = {
            str(i.get("productId")): i for i in (original or {}).get("items", [])
        }

        planned = []
        for item in return_items:
            product_id = str(item.get("productId") or "")
            quantity = item.get("quantity") or 0
            if not product_id or quantity <= 0:
                raise ValidationException(
                    "Invalid return item: productId and quantity are required",
                    field="returnItems",
                )
            sold = original_items.get(product_id)
            if original is not None:
                if sold is None:
                    raise ValidationException(
                        f"Product {product_id} not found in original invoice",
                        field="returnItems",
                    )
                if quantity > (sold.get("quantity") or 0):
                    raise ValidationException(
                        f"Return quantity ({quantity}) exceeds original quantity "
                        f"({sold.get('quantity')})",
                        field="returnItems",
                    )
            product = await products.find_one({"_id": _object_id(product_id, "product")})
            if product is None:
                raise ResourceNotFoundException("product", product_id)
            planned.append((item, sold or {}, product))

        processed = []
        for item, sold, product in planned:
            quantity = item["quantity"]
            factor = sold.get("conversionFactor") or item.get("conversionFactor") or 1
            restock = math.ceil(quantity / factor) if factor > 1 else quantity
            await self.product_service.adjust_stock(store_id, str(product["_id"]), restock)
            unit_price = item.get("unitPrice") or sold.get("unitPrice") or 0
            discount = item.get("discount") or sold.get("discount") or 0
            processed.append(
                {
                    "productId": str(product["_id"]),
                    "productName": item.get("productName") or product.get("name", ""),
                    "quantity": quantity,
                    "unitPrice": unit_price,
                    "totalPrice": (unit_price - discount) * quantity,
                    "unit": item.get("unit") or sold.get("unit") or DEFAULT_UNIT,
                    "discount": discount,
                    "conversionFactor": factor,
                }
            )

        subtotal = sum(i["totalPrice"] for i in processed)
        document = {
            "date": utc_now(),
            "customerId": data.get("customerId") or (original or {}).get("customerId"),
            "customerName": data.get("customerName")
            or (original or {}).get("customerName")
            or DEFAULT_CUSTOMER_NAME,
            "items": processed,
            "subtotal": -subtotal,
            "totalItemDiscount": -sum(i["discount"] * i["quantity"] for i in processed),
            "invoiceDiscount": 0,
            "tax": 0,
            "total": -subtotal,
            "paidAmount": -subtotal,
            "remainingAmount": 0,
            "paymentMethod": refund_method,
            "status": SaleStatus.REFUNDED.value,
            "seller": data.get("seller") or "Unknown",
            "isReturn": True,
            "originalInvoiceId": str(original["_id"]) if original else None,
            "reason": data.get("reason"),
        }
        sale = await self._insert_numbered(sales, document)
        logger.info(
            "Return %s recorded for store %s (%s items)",
            sale[INVOICE_FIELD],
            store_id,
            len(processed),
        )
        return to_jsonable(sale)


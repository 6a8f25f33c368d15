"""Sales API schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class SaleItem(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    product_id: str = Field(..., alias="productId")
    product_name: str | None = Field(default=None, alias="productName")
    quantity: float = Field(..., gt=0)
    unit_price: float = Field(default=0, alias="unitPrice")
    total_price: float = Field(default=0, alias="totalPrice")
    unit: str | None = None
    discount: float = 0
    conversion_factor: float = Field(default=1, alias="conversionFactor")


class SaleCreateRequest(BaseModel):
    """A sale. Omit invoiceNumber to get the store's next sequential number."""

    model_config = ConfigDict(populate_by_name=True)

    invoice_number: str | None = Field(default=None, alias="invoiceNumber")
    date: datetime | None = None
    customer_id: str | None = Field(default=None, alias="customerId")
    customer_name: str = Field(..., min_length=1, alias="customerName")
    items: list[SaleItem] = Field(..., min_length=1)
    subtotal: float = 0
    total_item_discount: float = Field(default=0, alias="totalItemDiscount")
    invoice_discount: float = Field(default=0, alias="invoiceDiscount")
    tax: float = 0
    total: float = Field(..., gt=0)
    paid_amount: float = Field(default=0, alias="paidAmount")
    remaining_amount: float | None = Field(default=None, alias="remainingAmount")
    payment_method: str = Field(..., alias="paymentMethod")
    status: str | None = None
    seller: str | None = None


class ReturnItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., alias="productId")
    quantity: float = Field(..., gt=0)
    product_name: str | None = Field(default=None, alias="productName")
    unit_price: float | None = Field(default=None, alias="unitPrice")
    discount: float | None = None
    unit: str | None = None
    conversion_factor: float | None = Field(default=None, alias="conversionFactor")


class ReturnCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    original_invoice_id: str | None = Field(default=None, alias="originalInvoiceId")
    return_items: list[ReturnItem] = Field(..., min_length=1, alias="returnItems")
    reason: str | None = None
    refund_method: str = Field(default="cash", alias="refundMethod")
    seller: str | None = None
    customer_name: str | None = Field(default=None, alias="customerName")
    customer_id: str | None = Field(default=None, alias="customerId")


class NextInvoiceResponse(BaseModel):
    invoice_number: str = Field(..., serialization_alias="invoiceNumber")

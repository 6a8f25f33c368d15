"""Product API schemas. Products are free-form documents; only the fields used here are typed."""

from pydantic import BaseModel, ConfigDict, Field


class ProductUnit(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str | None = None
    barcode: str | None = None
    conversion_factor: float | None = Field(default=None, alias="conversionFactor")


class ProductCreate(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str = Field(..., min_length=1)
    barcode: str | None = None
    status: str = "active"
    stock: float = 0
    units: list[ProductUnit] = Field(default_factory=list)


class StockAdjustment(BaseModel):
    delta: float = Field(..., description="Quantity to add; negative to remove")

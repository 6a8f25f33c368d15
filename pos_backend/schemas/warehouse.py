"""Warehouse API schemas."""

from pydantic import BaseModel, ConfigDict, Field


class WarehouseCreate(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = Field(..., min_length=1, max_length=255)
    address: str | None = None
    phone: str | None = None
    status: str = "active"


class WarehouseUpdate(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str | None = Field(default=None, min_length=1, max_length=255)
    address: str | None = None
    phone: str | None = None
    status: str | None = None

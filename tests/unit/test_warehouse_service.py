"""Tests for warehouses and cross-store merchant payments."""

from datetime import UTC, datetime

import pytest

from pos_backend.application.services import WarehouseService
from pos_backend.domain.exceptions import ResourceNotFoundException, ValidationException


@pytest.fixture
def warehouses(unified) -> WarehouseService:
    return WarehouseService(unified)


async def test_create_and_list_per_store(warehouses: WarehouseService) -> None:
    created = await warehouses.create_warehouse("shop-a", {"name": " Main "})
    await warehouses.create_warehouse("shop-b", {"name": "Main"})

    assert created["name"] == "Main"
    assert created["status"] == "active"
    assert created["storeId"] == "shop-a"
    listed = await warehouses.list_warehouses("shop-a")
    assert [w["_id"] for w in listed] == [created["_id"]]


async def test_name_required(warehouses: WarehouseService) -> None:
    with pytest.raises(ValidationException):
        await warehouses.create_warehouse("shop-a", {"name": "  "})


async def test_other_store_cannot_read_update_or_delete(warehouses: WarehouseService) -> None:
    created = await warehouses.create_warehouse("shop-a", {"name": "Main"})

    with pytest.raises(ResourceNotFoundException):
        await warehouses.get_warehouse("shop-b", created["_id"])
    with pytest.raises(ResourceNotFoundException):
        await warehouses.update_warehouse("shop-b", created["_id"], {"name": "Mine"})
    with pytest.raises(ResourceNotFoundException):
        await warehouses.delete_warehouse("shop-b", created["_id"])

    assert (await warehouses.get_warehouse("shop-a", created["_id"]))["name"] == "Main"


async def test_update_and_delete(warehouses: WarehouseService) -> None:
    created = await warehouses.create_warehouse("shop-a", {"name": "Main"})

    updated = await warehouses.update_warehouse("shop-a", created["_id"], {"name": "Back"})
    await warehouses.delete_warehouse("shop-a", created["_id"])

    assert updated["name"] == "Back"
    with pytest.raises(ResourceNotFoundException):
        await warehouses.get_warehouse("shop-a", created["_id"])
    with pytest.raises(ResourceNotFoundException):
        await warehouses.get_warehouse("shop-a", "not-an-id")


async def test_payments_by_merchant_spans_stores(warehouses: WarehouseService, unified) -> None:
    for store_id, day in (("shop-a", 1), ("shop-b", 3), ("shop-a", 2)):
        await unified.payments.insert_one(
            store_id,
            {"merchantId": "m-1", "amount": day * 10, "date": datetime(2026, 5, day, tzinfo=UTC)},
        )
    await unified.payments.insert_one("shop-a", {"merchantId": "m-2", "amount": 1})

    payments = await warehouses.payments_by_merchant("m-1")

    assert [p["amount"] for p in payments] == [30, 20, 10]
    assert {p["storeId"] for p in payments} == {"shop-a", "shop-b"}

"""Tests for StoreDirectory: lookup by id or prefix, caching, repair mode, lifecycle."""

import pytest

from pos_backend.domain.exceptions import (
    InvalidShardIdException,
    ShardNotAssignedException,
    StoreAlreadyExistsException,
    StoreIdRequiredException,
    StoreNotFoundException,
    ValidationException,
)
from pos_backend.infrastructure.persistence.store_directory import StoreDirectory
from tests.conftest import add_store, make_settings


async def test_get_store_by_store_id_or_prefix(directory: StoreDirectory) -> None:
    await add_store(directory, "Acme-Downtown", prefix="acme_dt", shard_id=2)

    by_id = await directory.get_store("acme-downtown")
    by_prefix = await directory.get_store("ACME_DT")

    assert by_id.store_id == "acme-downtown"
    assert by_id.prefix == "acme_dt"
    assert by_id.shard_id == 2
    assert by_prefix == by_id


async def test_prefix_match_wins_over_store_id(directory: StoreDirectory) -> None:
    """A value that is one store's prefix and another's id resolves by prefix."""
    await add_store(directory, "alpha", prefix="beta_store")
    await add_store(directory, "beta_store", prefix="beta_other")

    record = await directory.get_store("beta_store")

    assert record.store_id == "alpha"


async def test_resolution_is_stable(directory: StoreDirectory) -> None:
    await add_store(directory, "shop1", prefix="shop1", shard_id=3)
    results = {
        (await directory.resolve_prefix("shop1"), await directory.resolve_shard_id("shop1"))
        for _ in range(5)
    }
    assert results == {("shop1", 3)}


async def test_unknown_store_raises(directory: StoreDirectory) -> None:
    with pytest.raises(StoreNotFoundException) as exc_info:
        await directory.get_store("ghost")
    assert exc_info.value.error_code == "STORE_NOT_FOUND"
    assert await directory.find_store("ghost") is None


async def test_misses_are_not_cached(directory: StoreDirectory) -> None:
    """A store created after a failed lookup is found on the next one."""
    with pytest.raises(StoreNotFoundException):
        await directory.get_store("late")
    await add_store(directory, "late")
    assert (await directory.get_store("late")).store_id == "late"


async def test_unknown_store_ids_leave_nothing_cached(directory: StoreDirectory) -> None:
    for i in range(1000):
        with pytest.raises(StoreNotFoundException):
            await directory.get_store(f"nope_{i}")

    assert len(directory._records) == 0
    assert directory._records.lock_count() == 0


@pytest.mark.parametrize("value", ["", "   ", None])
async def test_empty_store_id_raises(directory: StoreDirectory, value) -> None:
    with pytest.raises(StoreIdRequiredException):
        await directory.get_store(value)


async def test_resolve_prefix_without_repair_mode_raises(directory: StoreDirectory) -> None:
    with pytest.raises(StoreNotFoundException):
        await directory.resolve_prefix("legacy_store")


async def test_resolve_prefix_repair_mode_uses_valid_value_as_prefix(registry) -> None:
    directory = StoreDirectory(registry, make_settings(prefix_repair_mode=True))

    assert await directory.resolve_prefix("Legacy_Store") == "legacy_store"
    with pytest.raises(StoreNotFoundException):
        await directory.resolve_prefix("not-a-prefix!")
    # The shard still needs a record.
    with pytest.raises(StoreNotFoundException):
        await directory.resolve_shard_id("legacy_store")


async def test_record_without_shard_raises_shard_not_assigned(
    directory: StoreDirectory, registry
) -> None:
    db = await registry.get_control_database()
    await db["stores"].insert_one({"storeId": "orphan", "prefix": "orphan", "name": "Orphan"})

    with pytest.raises(ShardNotAssignedException) as exc_info:
        await directory.resolve_shard_id("orphan")
    assert exc_info.value.error_code == "SHARD_NOT_ASSIGNED"
    assert "details" not in exc_info.value.to_dict()


async def test_create_store_rejects_duplicates(directory: StoreDirectory) -> None:
    await add_store(directory, "one", prefix="p_one")

    with pytest.raises(StoreAlreadyExistsException) as exc_info:
        await add_store(directory, "ONE", prefix="p_two")
    assert exc_info.value.details["field"] == "storeId"

    with pytest.raises(StoreAlreadyExistsException) as exc_info:
        await add_store(directory, "two", prefix="p_one")
    assert exc_info.value.details["field"] == "prefix"


async def test_create_store_validates_shard(directory: StoreDirectory) -> None:
    with pytest.raises(InvalidShardIdException):
        await add_store(directory, "far", shard_id=6)


async def test_assign_shard_for_new_store_follows_store_count(directory: StoreDirectory) -> None:
    for n in range(19):
        await add_store(directory, f"store{n}", store_number=n + 1)
    assert await directory.assign_shard_for_new_store() == 1

    await add_store(directory, "store19", store_number=20)
    assert await directory.assign_shard_for_new_store() == 2


async def test_next_store_number(directory: StoreDirectory) -> None:
    assert await directory.next_store_number() == 1
    await add_store(directory, "a", store_number=1)
    await add_store(directory, "b", store_number=7)
    assert await directory.next_store_number() == 8


async def test_list_stores_orders_by_number_and_filters_active(
    directory: StoreDirectory,
) -> None:
    await add_store(directory, "b", store_number=2)
    await add_store(directory, "a", store_number=1)
    await directory.update_store("b", {"isActive": False})

    assert [r.store_id for r in await directory.list_stores()] == ["a", "b"]
    assert [r.store_id for r in await directory.list_stores(active_only=True)] == ["a"]


async def test_update_store_refreshes_cache(directory: StoreDirectory) -> None:
    await add_store(directory, "shop", name="Old")
    await directory.get_store("shop")

    updated = await directory.update_store("shop", {"name": "New"})

    assert updated.name == "New"
    assert (await directory.get_store("shop")).name == "New"


@pytest.mark.parametrize("field", ["prefix", "shardId", "storeId", "storeNumber"])
async def test_update_store_rejects_routing_fields(directory: StoreDirectory, field: str) -> None:
    await add_store(directory, "shop")
    with pytest.raises(ValidationException):
        await directory.update_store("shop", {field: "x"})


async def test_update_store_rejects_unknown_fields(directory: StoreDirectory) -> None:
    await add_store(directory, "shop")
    with pytest.raises(ValidationException):
        await directory.update_store("shop", {"favouriteColour": "blue"})


async def test_delete_store_evicts_cache(directory: StoreDirectory) -> None:
    await add_store(directory, "gone", prefix="gone_p")
    await directory.get_store("gone")
    await directory.get_store("gone_p")

    await directory.delete_store("gone")

    with pytest.raises(StoreNotFoundException):
        await directory.get_store("gone_p")
    assert not await directory.exists(store_id="gone")

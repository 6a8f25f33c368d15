"""Shard assignment policy for new stores."""


def assign_shard(existing_store_count: int, stores_per_shard: int, shard_count: int) -> int:
    """Shard for the next store: fill shards in order, overflow lands on the last one.

    shard = min(existing_store_count // stores_per_shard + 1, shard_count)

    The count is taken before the new store is created, so with 20 stores
    per shard the 20th store (19 existing) still lands on shard 1 and the
    21st on shard 2.
    """
    if existing_store_count < 0:
        raise ValueError("existing_store_count must be >= 0")
    return min(existing_store_count // stores_per_shard + 1, shard_count)

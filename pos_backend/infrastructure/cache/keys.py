"""Cache key builders. Single place for key format.

Key components (store_id, barcode) must not contain CACHE_KEY_SEP to
avoid ambiguous or colliding keys.
"""

from pos_backend.core.constants import CACHE_KEY_SEP, CACHE_PREFIX_PRODUCT


def _validate_key_component(value: str, name: str) -> None:
    """Raise ValueError if value is empty or contains the cache key separator.

    Args:
        value: String component used in a cache key.
        name: Name of the component (for error message).

    Raises:
        ValueError: If value is empty or contains CACHE_KEY_SEP.
    """
    if not value:
        raise ValueError(f"Cache key component {name!r} must not be empty")
    if CACHE_KEY_SEP in value:
        raise ValueError(
            f"Cache key component {name!r} must not contain separator {CACHE_KEY_SEP!r}"
        )


def product_key(store_id: str, barcode: str) -> str:
    """Cache key for a product looked up by barcode: product:{storeId}:{barcode}."""
    _validate_key_component(store_id, "store_id")
    _validate_key_component(barcode, "barcode")
    return f"{CACHE_PREFIX_PRODUCT}{CACHE_KEY_SEP}{store_id}{CACHE_KEY_SEP}{barcode}"


def store_products_pattern(store_id: str) -> str:
    """SCAN pattern matching every cached product of one store."""
    _validate_key_component(store_id, "store_id")
    return f"{CACHE_PREFIX_PRODUCT}{CACHE_KEY_SEP}{store_id}{CACHE_KEY_SEP}*"

"""Domain exceptions for the POS backend.

Defines domain-level exceptions for tenant routing and ledger rule
violations. These exceptions are independent of infrastructure concerns.
Presentation layer maps them to HTTP responses in exception handlers.
"""

from typing import Any


class PosException(Exception):
    """Base exception for all POS backend errors.

    All custom exceptions should inherit from this class to allow
    consistent error handling and logging. Presentation layer maps
    these to HTTP responses using message, error_code, and details.

    Attributes:
        message: Human-readable error description.
        error_code: Machine-readable error code.
        details: Additional error context (e.g. store_id, shard_id).
        expose_details: False for errors whose details name internal
            placement (shard ids, hosts); responses then omit details.
    """

    expose_details: bool = True

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            error_code: Optional machine-readable code; defaults to class name.
            details: Optional dict of extra context.
        """
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Response body: error code, message and (when exposable) details."""
        body: dict[str, Any] = {"error": self.error_code, "message": self.message}
        if self.expose_details and self.details:
            body["details"] = self.details
        return body


class ValidationException(PosException):
    """Raised when input validation fails (e.g. invalid format or range)."""

    def __init__(self, message: str, field: str | None = None) -> None:
        """Initialize with message and optional field name.

        Args:
            message: Description of the validation failure.
            field: Optional field or attribute that failed validation.
        """
        details = {"field": field} if field else {}
        super().__init__(message, "VALIDATION_ERROR", details)


class ResourceNotFoundException(PosException):
    """Raised when a requested resource is not found."""

    def __init__(self, resource_type: str, resource_id: str) -> None:
        """Initialize with resource type and id.

        Args:
            resource_type: Type of resource (e.g. 'customer', 'product').
            resource_id: The ID that was not found.
        """
        super().__init__(
            f"{resource_type} not found: {resource_id}",
            "RESOURCE_NOT_FOUND",
            {"resource_type": resource_type, "resource_id": resource_id},
        )


class StoreIdRequiredException(PosException):
    """Raised when an entity is requested without a store id."""

    def __init__(self, entity_type: str | None = None) -> None:
        message = "Store ID is required"
        if entity_type:
            message = f"Store ID is required to access {entity_type}"
        super().__init__(message, "STORE_ID_REQUIRED")


class StoreNotFoundException(PosException):
    """Raised when a store id/prefix has no Store Directory record."""

    def __init__(self, store_id: str) -> None:
        """Initialize with the unresolved store identifier.

        Args:
            store_id: Store id or prefix that was looked up.
        """
        super().__init__(
            f"Store not found: {store_id}",
            "STORE_NOT_FOUND",
            {"store_id": store_id},
        )


class StoreAlreadyExistsException(PosException):
    """Raised when onboarding a store whose storeId or prefix is taken."""

    def __init__(self, field: str, value: str) -> None:
        super().__init__(
            f"Store {field} already exists: {value}",
            "STORE_ALREADY_EXISTS",
            {"field": field, "value": value},
        )


class ShardNotAssignedException(PosException):
    """Raised when a store record exists but carries no shard id (data integrity)."""

    expose_details = False

    def __init__(self, store_id: str) -> None:
        super().__init__(
            "Store is not assigned to a database",
            "SHARD_NOT_ASSIGNED",
            {"store_id": store_id},
        )


class InvalidShardIdException(PosException):
    """Raised when a shard id is outside 1..SHARD_COUNT."""

    expose_details = False

    def __init__(self, shard_id: int, shard_count: int) -> None:
        super().__init__(
            f"Invalid shard ID: {shard_id}. Must be between 1 and {shard_count}",
            "INVALID_SHARD_ID",
            {"shard_id": shard_id, "shard_count": shard_count},
        )


class InvalidPrefixException(PosException):
    """Raised when a store prefix does not match the prefix charset."""

    def __init__(self, prefix: str) -> None:
        super().__init__(
            f"Invalid store prefix: {prefix!r}. Prefix can only contain "
            "lowercase letters, numbers, and underscores.",
            "INVALID_PREFIX",
            {"prefix": prefix},
        )


class CollectionNameTooLongException(PosException):
    """Raised when '{prefix}_{entity}' exceeds MongoDB's collection-name limit."""

    def __init__(self, collection_name: str, max_length: int) -> None:
        super().__init__(
            f"Collection name too long ({len(collection_name)} > {max_length})",
            "COLLECTION_NAME_TOO_LONG",
            {"length": len(collection_name), "max_length": max_length},
        )


class ShardConnectionError(PosException):
    """Raised when a shard database is unreachable after retries.

    Distinct from StoreNotFoundException: the store may well exist.
    """

    expose_details = False

    def __init__(self, database_name: str, reason: str) -> None:
        super().__init__(
            "Database temporarily unavailable",
            "SHARD_CONNECTION_ERROR",
            {"database": database_name, "reason": reason},
        )


class InsufficientPointsException(PosException):
    """Raised when a redemption asks for more than the available points. No mutation occurs."""

    def __init__(
        self, global_customer_id: str, available_points: int, requested_points: int
    ) -> None:
        super().__init__(
            "Insufficient points balance",
            "INSUFFICIENT_POINTS",
            {
                "global_customer_id": global_customer_id,
                "available_points": available_points,
                "requested_points": requested_points,
            },
        )


class PointsNotEarnedException(PosException):
    """Raised when a purchase earns no points (too small, or below the minimum amount)."""

    def __init__(self, message: str, purchase_amount: float) -> None:
        super().__init__(
            message,
            "POINTS_NOT_EARNED",
            {"purchase_amount": purchase_amount},
        )


class DuplicateKeyException(PosException):
    """Raised when a unique value (name, invoice number) already exists in a store."""

    def __init__(self, entity_type: str, field: str, value: str) -> None:
        super().__init__(
            f"{entity_type} with {field} '{value}' already exists",
            "DUPLICATE_KEY",
            {"entity_type": entity_type, "field": field, "value": value},
        )

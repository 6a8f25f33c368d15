"""Security glue: password hashing for store users."""

from pos_backend.infrastructure.security.password import (
    generate_secure_password,
    get_password_hash,
    verify_password,
)

__all__ = ["generate_secure_password", "get_password_hash", "verify_password"]

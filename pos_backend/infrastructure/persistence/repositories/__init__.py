"""Persistence repositories. Re-exports for dependency injection."""

from pos_backend.infrastructure.persistence.repositories.ledger_repo import LedgerRepository

__all__ = ["LedgerRepository"]

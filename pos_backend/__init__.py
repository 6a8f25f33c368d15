"""Point-of-sale backend: multi-tenant data routing over sharded MongoDB."""

__version__ = "1.0.0"

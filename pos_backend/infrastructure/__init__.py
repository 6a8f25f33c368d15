"""Infrastructure layer: MongoDB routing, caches, and security glue."""

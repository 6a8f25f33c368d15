"""Request/response models for the HTTP API."""

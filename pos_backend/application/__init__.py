"""Application layer: DTOs and services (store onboarding, points, products, sales).

Depends on domain and on the routing primitives in infrastructure.persistence.
"""

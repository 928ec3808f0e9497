"""
HTTP surface for Project Pulse.

- pagination.py: PagedResult models and paginate()
- router.py: FastAPI router and create_app(engine)

The router is imported explicitly (projectpulse.api.router) because it
depends on the engine, which itself uses pagination.
"""

from .pagination import PagedResult, PaginationMeta, PaginationParams, paginate

__all__ = ["PagedResult", "PaginationMeta", "PaginationParams", "paginate"]

"""
Reusable pagination utilities for Project Pulse.

Features:
- PaginationMeta / PagedResult: Pydantic models for paged query results
- paginate(): Helper to slice and wrap query results, clamping the limit
- pagination_params(): FastAPI dependency for page/limit query parameters
"""

from typing import Any

from fastapi import Query
from pydantic import BaseModel, Field

from projectpulse import config


class PaginationParams(BaseModel):
    """Pagination parameters."""

    page: int = Field(ge=1, default=1, description="Page number (1-indexed)")
    limit: int = Field(
        ge=1,
        le=config.MAX_PAGE_LIMIT,
        default=config.DEFAULT_PAGE_LIMIT,
        description=f"Items per page (1-{config.MAX_PAGE_LIMIT})",
    )


class PaginationMeta(BaseModel):
    """Where a page sits within the full result set."""

    page: int = Field(..., description="Current page number (1-indexed)")
    limit: int = Field(..., description="Items per page after clamping")
    total: int = Field(..., description="Total number of items")
    total_pages: int = Field(..., description="ceil(total / limit)")
    has_next: bool = Field(..., description="Whether there is a next page")
    has_prev: bool = Field(..., description="Whether there is a previous page")
    start_index: int = Field(..., description="Offset of the first item on this page")
    end_index: int = Field(..., description="Offset one past the last item on this page")


class PagedResult(BaseModel):
    """One page of query results plus its pagination metadata."""

    data: list[Any] = Field(..., description="Items on this page")
    pagination: PaginationMeta


def pagination_params(
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(
        config.DEFAULT_PAGE_LIMIT, ge=1, le=config.MAX_PAGE_LIMIT, description="Items per page"
    ),
) -> PaginationParams:
    """FastAPI dependency to extract pagination parameters from query string."""
    return PaginationParams(page=page, limit=limit)


def paginate(
    items: list[Any],
    page: int = 1,
    limit: int = config.DEFAULT_PAGE_LIMIT,
    max_limit: int = config.MAX_PAGE_LIMIT,
) -> PagedResult:
    """
    Slice query results and wrap in PagedResult.

    Args:
        items: Full list of items to paginate
        page: Page number (1-indexed)
        limit: Items per page, clamped to [1, max_limit]
        max_limit: Upper bound for limit

    Returns:
        PagedResult with sliced data and metadata

    Raises:
        ValueError: If page is less than 1
    """
    if page < 1:
        raise ValueError("page must be >= 1")
    limit = min(max(limit, 1), max_limit)

    total = len(items)
    total_pages = (total + limit - 1) // limit
    start_idx = (page - 1) * limit
    end_idx = min(start_idx + limit, total)

    return PagedResult(
        data=items[start_idx:end_idx],
        pagination=PaginationMeta(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
            start_index=min(start_idx, total),
            end_index=end_idx,
        ),
    )

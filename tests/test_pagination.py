"""
Tests for pagination utilities.

Tests cover:
- PaginationParams model validation
- paginate() helper with various page sizes
- Edge cases (empty list, last page, page beyond range, limit clamping)
- PagedResult serialization
"""

import pytest
from pydantic import ValidationError

from projectpulse import config
from projectpulse.api.pagination import PagedResult, PaginationParams, paginate


class TestPaginationParams:
    """Tests for PaginationParams model."""

    def test_default_values(self):
        params = PaginationParams()
        assert params.page == 1
        assert params.limit == config.DEFAULT_PAGE_LIMIT

    def test_page_must_be_positive(self):
        """Test that page must be >= 1."""
        with pytest.raises(ValidationError) as exc_info:
            PaginationParams(page=0)
        assert "greater than or equal to 1" in str(exc_info.value)

    def test_limit_must_not_exceed_max(self):
        with pytest.raises(ValidationError) as exc_info:
            PaginationParams(limit=config.MAX_PAGE_LIMIT + 1)
        assert f"less than or equal to {config.MAX_PAGE_LIMIT}" in str(exc_info.value)


class TestPaginateHelper:
    """Tests for paginate() helper function."""

    def test_paginate_first_page(self):
        result = paginate(list(range(25)), page=1, limit=10)

        assert result.data == list(range(10))
        meta = result.pagination
        assert meta.total == 25
        assert meta.total_pages == 3
        assert meta.has_next is True
        assert meta.has_prev is False
        assert (meta.start_index, meta.end_index) == (0, 10)

    def test_paginate_partial_last_page(self):
        result = paginate(list(range(25)), page=3, limit=10)

        assert result.data == [20, 21, 22, 23, 24]
        assert result.pagination.has_next is False
        assert result.pagination.has_prev is True
        assert result.pagination.end_index == 25

    def test_paginate_exact_page_boundary(self):
        result = paginate(list(range(20)), page=2, limit=10)

        assert result.data == list(range(10, 20))
        assert result.pagination.total_pages == 2
        assert result.pagination.has_next is False

    def test_paginate_empty_list(self):
        result = paginate([], page=1, limit=10)

        assert result.data == []
        assert result.pagination.total == 0
        assert result.pagination.total_pages == 0
        assert result.pagination.has_next is False
        assert (result.pagination.start_index, result.pagination.end_index) == (0, 0)

    def test_paginate_page_beyond_range(self):
        """A page past the end is empty, not an error."""
        result = paginate(list(range(5)), page=4, limit=2)

        assert result.data == []
        assert result.pagination.has_prev is True
        assert result.pagination.start_index == 5
        assert result.pagination.end_index == 5

    @pytest.mark.parametrize("limit, clamped", [(0, 1), (-3, 1), (500, 100)])
    def test_limit_is_clamped(self, limit, clamped):
        result = paginate(list(range(150)), page=1, limit=limit, max_limit=100)
        assert result.pagination.limit == clamped
        assert len(result.data) == clamped

    @pytest.mark.parametrize("page", [0, -1])
    def test_paginate_invalid_page(self, page):
        with pytest.raises(ValueError):
            paginate([1, 2, 3], page=page, limit=10)

    def test_paginate_complex_objects(self):
        items = [{"name": f"project-{i}"} for i in range(3)]
        result = paginate(items, page=1, limit=2)
        assert result.data == items[:2]


class TestPagedResult:
    def test_serialization(self):
        data = paginate(["a", "b", "c"], page=2, limit=2).model_dump()

        assert data["data"] == ["c"]
        assert data["pagination"] == {
            "page": 2,
            "limit": 2,
            "total": 3,
            "total_pages": 2,
            "has_next": False,
            "has_prev": True,
            "start_index": 2,
            "end_index": 3,
        }

    def test_round_trip(self):
        result = paginate([1, 2], page=1, limit=5)
        assert PagedResult.model_validate(result.model_dump()) == result

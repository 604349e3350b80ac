"""Tests for the paginated error-retry log."""

from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from yams_sync.services.error_log import ErrorLog, pages_for


class TestPagesFor:
    @pytest.mark.parametrize(
        ("count", "page_size", "expected"),
        [(0, 10, 0), (1, 10, 1), (10, 10, 1), (11, 10, 2), (25, 10, 3), (5, 0, 0)],
    )
    def test_ceiling(self, count: int, page_size: int, expected: int) -> None:
        assert pages_for(count, page_size) == expected

    @settings(max_examples=200, deadline=None)
    @given(count=st.integers(min_value=1, max_value=10_000), size=st.integers(1, 500))
    def test_pages_cover_every_row_exactly(self, count: int, size: int) -> None:
        pages = pages_for(count, size)
        assert pages * size >= count
        assert (pages - 1) * size < count


class TestMarks:
    @pytest.mark.asyncio
    async def test_add_inserts_then_increments(self, error_log: ErrorLog) -> None:
        await error_log.add("a.jpg")
        assert await error_log.counter("a.jpg") == 0
        await error_log.add("a.jpg")
        await error_log.add("a.jpg")
        assert await error_log.counter("a.jpg") == 2

    @pytest.mark.asyncio
    async def test_set_counter_inserts_and_overwrites(self, error_log: ErrorLog) -> None:
        await error_log.set_counter("a.jpg", 4)
        assert await error_log.counter("a.jpg") == 4
        await error_log.set_counter("a.jpg", 0)
        assert await error_log.counter("a.jpg") == 0

    @pytest.mark.asyncio
    async def test_remove_deletes_mark(self, error_log: ErrorLog) -> None:
        await error_log.add("a.jpg")
        await error_log.remove("a.jpg")
        assert await error_log.counter("a.jpg") is None

    @pytest.mark.asyncio
    async def test_remove_missing_is_noop(self, error_log: ErrorLog) -> None:
        await error_log.remove("missing.jpg")
        assert await error_log.counter("missing.jpg") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "name",
        ["o'brien.jpg", 'quote".jpg', "x; DROP TABLE sync_error; --.jpg", "ünïcødé 画像.jpg"],
    )
    async def test_names_are_stored_verbatim(self, error_log: ErrorLog, name: str) -> None:
        await error_log.add(name)
        await error_log.add(name)
        assert await error_log.counter(name) == 1
        assert await error_log.page(1, 3) == [name]


class TestPaging:
    @pytest.mark.asyncio
    async def test_pages_in_insertion_order(self, error_log: ErrorLog) -> None:
        for name in ("a.jpg", "b.jpg", "c.jpg", "d.jpg", "e.jpg"):
            await error_log.add(name)

        assert await error_log.pages_count(3) == 3
        assert await error_log.page(1, 3) == ["a.jpg", "b.jpg"]
        assert await error_log.page(2, 3) == ["c.jpg", "d.jpg"]
        assert await error_log.page(3, 3) == ["e.jpg"]
        assert await error_log.page(4, 3) == []
        assert await error_log.page(0, 3) == []

    @pytest.mark.asyncio
    async def test_entries_above_tolerance_are_hidden(self, error_log: ErrorLog) -> None:
        await error_log.set_counter("ok.jpg", 3)
        await error_log.set_counter("over.jpg", 4)
        await error_log.set_counter("fresh.jpg", 0)

        assert await error_log.pages_count(3) == 1
        assert await error_log.page(1, 3) == ["ok.jpg", "fresh.jpg"]
        assert await error_log.page(1, 0) == ["fresh.jpg"]

    @pytest.mark.asyncio
    async def test_only_suppressed_entries_give_no_pages(self, error_log: ErrorLog) -> None:
        await error_log.set_counter("c.jpg", 5)
        assert await error_log.pages_count(3) == 0
        assert await error_log.page(1, 3) == []

    @pytest.mark.asyncio
    async def test_empty_log(self, error_log: ErrorLog) -> None:
        assert await error_log.pages_count(3) == 0

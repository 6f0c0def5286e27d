"""Tests for the thread list aggregator."""

import pytest

from conftest import make_client, seed_execution
from threadsync.errors import NetworkError
from threadsync.threads import (
    ThreadListAggregator,
    summary_from_record,
    to_canonical_status,
    to_persistent_status,
)


class TestStatusMapping:
    def test_persistent_to_canonical(self):
        assert to_canonical_status("open") == "idle"
        assert to_canonical_status("paused") == "interrupted"
        # lossy: closed has no canonical counterpart
        assert to_canonical_status("closed") == "idle"

    def test_unknown_status_is_idle(self):
        assert to_canonical_status(None) == "idle"
        assert to_canonical_status("archived") == "idle"

    def test_canonical_to_persistent(self):
        assert to_persistent_status("idle") == "open"
        assert to_persistent_status("busy") == "open"
        assert to_persistent_status("interrupted") == "paused"
        assert to_persistent_status("error") is None
        assert to_persistent_status(None) is None

    def test_summary_from_record(self):
        summary = summary_from_record({
            "id": "t-1",
            "title": "",
            "summary": "About tides",
            "status": "closed",
            "updated_at": "2025-01-15T10:00:00Z",
            "custom_metadata": {"assistant_id": "researcher"},
        })
        assert summary.title == "Untitled Thread"
        assert summary.description == "About tides"
        assert summary.status == "idle"
        assert summary.assistant_id == "researcher"
        assert summary.updated_at.year == 2025


class TestServiceListing:
    @pytest.mark.asyncio
    async def test_pages(self, client, service, execution):
        ids = [service.seed(title=f"Thread {i}") for i in range(3)]
        aggregator = ThreadListAggregator(execution, client, page_size=2)

        first = await aggregator.load_more()
        assert [s.id for s in first] == [ids[2], ids[1]]
        assert aggregator.has_more

        second = await aggregator.load_more()
        assert [s.id for s in second] == [ids[0]]
        assert not aggregator.has_more
        assert len(aggregator.threads) == 3
        assert aggregator.source == "service"

    @pytest.mark.asyncio
    async def test_status_filter(self, client, service, execution):
        service.seed(title="running", status="open")
        paused = service.seed(title="waiting", status="paused")
        aggregator = ThreadListAggregator(execution, client, status="interrupted")

        threads = await aggregator.load_more()

        assert [s.id for s in threads] == [paused]
        assert threads[0].status == "interrupted"

    @pytest.mark.asyncio
    async def test_closed_threads_show_as_idle(self, client, service, execution):
        service.seed(status="closed")
        threads = await ThreadListAggregator(execution, client).load_more()
        assert threads[0].status == "idle"

    @pytest.mark.asyncio
    async def test_error_yields_empty_page(self, client, service, execution):
        await seed_execution(execution, [("human", "Only in execution")])
        service.seed()
        service.failures["GET /threads"] = 500

        aggregator = ThreadListAggregator(execution, client)
        assert await aggregator.load_more() == []
        assert aggregator.threads == []

    @pytest.mark.asyncio
    async def test_unhealthy_service_yields_empty_page(self, client, service, execution):
        service.healthy = False
        service.seed()
        assert await ThreadListAggregator(execution, client).load_more() == []
        assert service.count("GET", "/threads") == 0


class TestRevalidation:
    @pytest.mark.asyncio
    async def test_keeps_page_count(self, client, service, execution):
        for i in range(5):
            service.seed(title=f"Thread {i}")
        aggregator = ThreadListAggregator(execution, client, page_size=2)
        await aggregator.load_more()
        await aggregator.load_more()

        newest = service.seed(title="Newest")
        await aggregator.revalidate()

        assert len(aggregator.pages) == 2
        assert len(aggregator.threads) == 4
        assert aggregator.threads[0].id == newest
        assert service.count("GET", "/threads") == 4

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_held_pages(self, client, service, execution):
        for i in range(5):
            service.seed(title=f"Thread {i}")
        aggregator = ThreadListAggregator(execution, client, page_size=2)
        for _ in range(3):
            await aggregator.load_more()
        held = list(aggregator.threads)

        service.failures["GET /threads"] = 500
        await aggregator.revalidate()

        assert len(aggregator.pages) == 3
        assert aggregator.threads == held
        assert service.count("GET", "/threads") == 6

    @pytest.mark.asyncio
    async def test_partial_failure_replaces_only_loaded_pages(self, client, service, execution):
        for i in range(4):
            service.seed(title=f"Thread {i}")
        aggregator = ThreadListAggregator(execution, client, page_size=2)
        await aggregator.load_more()
        await aggregator.load_more()
        held_second = list(aggregator.pages[1])

        newest = service.seed(title="Newest")
        original = client.list_threads
        calls = 0

        async def flaky_list_threads(*args, **kwargs):
            nonlocal calls
            calls += 1
            if calls == 2:
                raise NetworkError("connection reset")
            return await original(*args, **kwargs)

        client.list_threads = flaky_list_threads
        await aggregator.revalidate()

        assert aggregator.pages[0][0].id == newest
        assert aggregator.pages[1] == held_second

    @pytest.mark.asyncio
    async def test_fresh_aggregator_fetches_one_page(self, client, service, execution):
        service.seed()
        aggregator = ThreadListAggregator(execution, client, page_size=2)
        await aggregator.revalidate()
        assert len(aggregator.pages) == 1

    @pytest.mark.asyncio
    async def test_shrunk_list_drops_trailing_pages(self, client, service, execution):
        ids = [service.seed() for _ in range(4)]
        aggregator = ThreadListAggregator(execution, client, page_size=2)
        await aggregator.load_more()
        await aggregator.load_more()
        await aggregator.load_more()

        for thread_id in ids[:2]:
            del service.threads[thread_id]
        await aggregator.revalidate()

        assert len(aggregator.threads) == 2
        assert aggregator.pages[-1] == []

    @pytest.mark.asyncio
    async def test_status_change_resets_pages(self, client, service, execution):
        service.seed()
        aggregator = ThreadListAggregator(execution, client)
        await aggregator.load_more()
        aggregator.set_status("busy")
        assert aggregator.pages == []


class TestExecutionListing:
    @pytest.mark.asyncio
    async def test_unauthenticated_uses_execution_store(self, service, execution):
        long_question = "Explain the difference between weather and climate in detail please"
        execution_id = await seed_execution(execution, [("human", long_question), ("ai", "x" * 150)])
        service.seed()
        anonymous = make_client(service, token=None)
        try:
            aggregator = ThreadListAggregator(execution, anonymous)
            threads = await aggregator.load_more()
        finally:
            await anonymous.aclose()

        assert aggregator.source == "execution"
        assert [s.id for s in threads] == [execution_id]
        assert threads[0].title == long_question[:50] + "..."
        assert threads[0].description == "x" * 100
        assert service.calls == []

    @pytest.mark.asyncio
    async def test_no_client_uses_execution_store(self, execution):
        execution_id = await seed_execution(execution, [])
        threads = await ThreadListAggregator(execution).load_more()
        assert threads[0].id == execution_id
        assert threads[0].title == "Untitled Thread"

    @pytest.mark.asyncio
    async def test_unreadable_values(self, execution):
        execution_id = await seed_execution(execution, [])
        execution.threads[execution_id]["values"]["messages"] = "garbage"
        threads = await ThreadListAggregator(execution).load_more()
        assert threads[0].title == f"Thread {execution_id[:8]}"

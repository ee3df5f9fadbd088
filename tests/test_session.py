"""
Unit tests for session resolution.

Tests the three resolution cases and the default resource fallback.
"""

from unittest.mock import Mock

import pytest

from fleet_agent.core.session import DEFAULT_RESOURCE_ID, ResolvedSession, SessionResolver


class TestSessionResolver:
    """Test thread/resource resolution rules."""

    @pytest.mark.asyncio
    async def test_both_identifiers_used_verbatim(self):
        """No store lookup when the caller supplies both identifiers."""
        store = Mock()
        resolver = SessionResolver(store)

        session = await resolver.resolve("thread-1", "user-1")

        assert session == ResolvedSession("thread-1", "user-1")
        store.get_thread_by_id.assert_not_called()
        store.list_threads.assert_not_called()
        store.create_thread.assert_not_called()

    @pytest.mark.asyncio
    async def test_thread_only_uses_owner(self, threads):
        thread = threads.create_thread("user-1")
        session = await SessionResolver(threads).resolve(thread_id=thread.id)
        assert session == ResolvedSession(thread.id, "user-1")

    @pytest.mark.asyncio
    async def test_unknown_thread_falls_back_to_default(self, threads):
        session = await SessionResolver(threads).resolve(thread_id="ghost")
        assert session == ResolvedSession("ghost", DEFAULT_RESOURCE_ID)
        # Unknown threads are not created by resolution
        assert threads.get_thread_by_id("ghost") is None

    @pytest.mark.asyncio
    async def test_resource_only_reuses_newest_thread(self, threads):
        threads.create_thread("user-1")
        newest = threads.create_thread("user-1")
        threads.create_thread("user-2")

        session = await SessionResolver(threads).resolve(resource_id="user-1")

        assert session == ResolvedSession(newest.id, "user-1")
        assert len(threads.list_threads("user-1")) == 2

    @pytest.mark.asyncio
    async def test_resource_only_creates_first_thread(self, threads):
        session = await SessionResolver(threads).resolve(resource_id="user-1")

        owned = threads.list_threads("user-1")
        assert len(owned) == 1
        assert session == ResolvedSession(owned[0].id, "user-1")

    @pytest.mark.asyncio
    async def test_neither_identifier_uses_default_resource(self, threads):
        resolver = SessionResolver(threads)

        first = await resolver.resolve()
        second = await resolver.resolve()

        assert first.resource_id == DEFAULT_RESOURCE_ID
        assert first == second
        assert len(threads.list_threads(DEFAULT_RESOURCE_ID)) == 1

    @pytest.mark.asyncio
    async def test_custom_default_resource(self, threads):
        session = await SessionResolver(threads, default_resource_id="cli-user").resolve()
        assert session.resource_id == "cli-user"

    @pytest.mark.asyncio
    async def test_store_errors_propagate(self):
        store = Mock()
        store.list_threads.side_effect = RuntimeError("db down")

        with pytest.raises(RuntimeError, match="db down"):
            await SessionResolver(store).resolve(resource_id="user-1")

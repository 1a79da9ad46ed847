"""Tests for tier2_reliability modules."""
from __future__ import annotations

import asyncio

import pytest

from variant_sdk.tier0_core.errors import ConflictError
from variant_sdk.tier2_reliability.cache import MemoryCache, SingleFlight
from variant_sdk.tier2_reliability.documents import (
    InMemoryDocumentStore,
    LocalDocumentStore,
    build_document_store,
)
from variant_sdk.tier2_reliability.fallback import LastKnownGood, call_with_secondary


# ── cache ──────────────────────────────────────────────────────────────────

class TestMemoryCache:
    def test_set_get_delete(self):
        cache: MemoryCache[str, int] = MemoryCache()
        assert cache.get("k") is None
        cache.set("k", 1)
        assert cache.get("k") == 1
        cache.delete("k")
        assert cache.get("k") is None

    def test_delete_missing_is_noop(self):
        MemoryCache().delete("missing")


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_task(self):
        flights = SingleFlight()
        calls = 0

        async def work():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return "done"

        results = await asyncio.gather(*(flights.run("k", work) for _ in range(10)))
        assert results == ["done"] * 10
        assert calls == 1

    @pytest.mark.asyncio
    async def test_different_keys_run_separately(self):
        flights = SingleFlight()
        seen = []

        async def work(key):
            seen.append(key)
            await asyncio.sleep(0)
            return key

        a, b = await asyncio.gather(
            flights.run("a", lambda: work("a")), flights.run("b", lambda: work("b"))
        )
        assert (a, b) == ("a", "b")
        assert sorted(seen) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_finished_flight_is_forgotten(self):
        flights = SingleFlight()
        calls = 0

        async def work():
            nonlocal calls
            calls += 1
            return calls

        assert await flights.run("k", work) == 1
        assert await flights.run("k", work) == 2

    @pytest.mark.asyncio
    async def test_error_reaches_every_waiter(self):
        flights = SingleFlight()

        async def work():
            await asyncio.sleep(0)
            raise ConnectionError("down")

        results = await asyncio.gather(
            flights.run("k", work), flights.run("k", work), return_exceptions=True
        )
        assert all(isinstance(r, ConnectionError) for r in results)

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        flights = SingleFlight()

        async def slow():
            await asyncio.sleep(60)

        waiter = asyncio.ensure_future(flights.run("k", slow))
        await asyncio.sleep(0.01)
        await flights.cancel_all()
        with pytest.raises(asyncio.CancelledError):
            await waiter


# ── fallback ───────────────────────────────────────────────────────────────

class TestCallWithSecondary:
    @pytest.mark.asyncio
    async def test_primary_success(self):
        async def primary():
            return "primary"

        async def secondary():
            raise AssertionError("secondary must not run")

        assert await call_with_secondary(primary, secondary, operation="t") == ("primary", False)

    @pytest.mark.asyncio
    async def test_falls_back_on_failure(self):
        async def primary():
            raise ConnectionError("down")

        async def secondary():
            return "secondary"

        assert await call_with_secondary(primary, secondary, operation="t") == ("secondary", True)

    @pytest.mark.asyncio
    async def test_both_fail_raises_secondary_error(self):
        async def primary():
            raise ConnectionError("down")

        async def secondary():
            raise KeyError("also down")

        with pytest.raises(KeyError) as info:
            await call_with_secondary(primary, secondary, operation="t")
        assert isinstance(info.value.__context__, ConnectionError)


class TestLastKnownGood:
    def test_empty(self, clock):
        holder = LastKnownGood(clock)
        assert holder.value is None
        assert not holder.has_value
        assert holder.age() is None
        assert not holder.is_fresh(3600)

    def test_freshness_window(self, clock):
        holder = LastKnownGood(clock)
        holder.update("v1")
        clock.advance(3599)
        assert holder.is_fresh(3600)
        clock.advance(1)
        assert not holder.is_fresh(3600)
        assert holder.value == "v1"

    def test_replace_keeps_age(self, clock):
        holder = LastKnownGood(clock)
        holder.update("v1")
        clock.advance(100)
        holder.replace("v1-stale")
        assert holder.value == "v1-stale"
        assert holder.age() == 100

    def test_update_resets_age(self, clock):
        holder = LastKnownGood(clock)
        holder.update("v1")
        clock.advance(100)
        holder.update("v2")
        assert holder.age() == 0


# ── documents ──────────────────────────────────────────────────────────────

class TestInMemoryDocumentStore:
    @pytest.mark.asyncio
    async def test_create_then_get(self):
        store = InMemoryDocumentStore()
        await store.create_document("c", "d1", {"a": 1})
        assert await store.get_document("c", "d1") == {"a": 1}
        assert await store.get_document("c", "missing") is None

    @pytest.mark.asyncio
    async def test_create_conflict(self):
        store = InMemoryDocumentStore()
        await store.create_document("c", "d1", {"a": 1})
        with pytest.raises(ConflictError):
            await store.create_document("c", "d1", {"a": 2})
        assert await store.get_document("c", "d1") == {"a": 1}
        assert store.create_calls == 2

    @pytest.mark.asyncio
    async def test_concurrent_creates_single_winner(self):
        store = InMemoryDocumentStore(latency=0.005)
        results = await asyncio.gather(
            *(store.create_document("c", "d1", {"n": n}) for n in range(5)),
            return_exceptions=True,
        )
        assert sum(r is None for r in results) == 1
        assert sum(isinstance(r, ConflictError) for r in results) == 4
        assert store.count("c") == 1

    @pytest.mark.asyncio
    async def test_list_includes_ids(self):
        store = InMemoryDocumentStore({"c": {"d1": {"a": 1}, "d2": {"a": 2}}})
        docs = await store.list_documents("c")
        assert sorted(d["id"] for d in docs) == ["d1", "d2"]
        assert await store.list_documents("empty") == []

    @pytest.mark.asyncio
    async def test_set_and_delete(self):
        store = InMemoryDocumentStore()
        await store.set_document("c", "d1", {"a": 1})
        await store.set_document("c", "d1", {"a": 2})
        assert await store.get_document("c", "d1") == {"a": 2}
        await store.delete_document("c", "d1")
        assert await store.get_document("c", "d1") is None

    @pytest.mark.asyncio
    async def test_returned_documents_are_copies(self):
        store = InMemoryDocumentStore({"c": {"d1": {"a": 1}}})
        doc = await store.get_document("c", "d1")
        doc["a"] = 99
        assert await store.get_document("c", "d1") == {"a": 1}

    @pytest.mark.asyncio
    async def test_failure_switches(self):
        store = InMemoryDocumentStore()
        store.fail_writes = True
        with pytest.raises(ConnectionError):
            await store.create_document("c", "d1", {})
        store.fail_writes = False
        store.fail_reads = True
        with pytest.raises(ConnectionError):
            await store.get_document("c", "d1")


class TestLocalDocumentStore:
    @pytest.mark.asyncio
    async def test_create_get_list(self, tmp_path):
        store = LocalDocumentStore(str(tmp_path))
        await store.create_document("userExperimentAssignments", "u1_pricing_v2", {"variantId": "A"})
        assert await store.get_document("userExperimentAssignments", "u1_pricing_v2") == {"variantId": "A"}
        docs = await store.list_documents("userExperimentAssignments")
        assert docs == [{"id": "u1_pricing_v2", "variantId": "A"}]

    @pytest.mark.asyncio
    async def test_create_conflict(self, tmp_path):
        store = LocalDocumentStore(str(tmp_path))
        await store.create_document("c", "d1", {"a": 1})
        with pytest.raises(ConflictError):
            await store.create_document("c", "d1", {"a": 2})
        assert await store.get_document("c", "d1") == {"a": 1}

    @pytest.mark.asyncio
    async def test_survives_new_instance(self, tmp_path):
        await LocalDocumentStore(str(tmp_path)).create_document("c", "d1", {"a": 1})
        assert await LocalDocumentStore(str(tmp_path)).get_document("c", "d1") == {"a": 1}

    @pytest.mark.asyncio
    async def test_ids_with_separators(self, tmp_path):
        store = LocalDocumentStore(str(tmp_path))
        await store.set_document("c", "user/1", {"a": 1})
        assert await store.get_document("c", "user/1") == {"a": 1}
        docs = await store.list_documents("c")
        assert docs[0]["id"] == "user/1"

    @pytest.mark.asyncio
    async def test_set_and_delete(self, tmp_path):
        store = LocalDocumentStore(str(tmp_path))
        await store.set_document("c", "d1", {"a": 1})
        await store.set_document("c", "d1", {"a": 2})
        assert await store.get_document("c", "d1") == {"a": 2}
        await store.delete_document("c", "d1")
        await store.delete_document("c", "d1")
        assert await store.get_document("c", "d1") is None

    def test_no_temp_files_left(self, tmp_path):
        store = LocalDocumentStore(str(tmp_path))
        asyncio.run(store.create_document("c", "d1", {"a": 1}))
        with pytest.raises(ConflictError):
            asyncio.run(store.create_document("c", "d1", {"a": 1}))
        assert [p.name for p in (tmp_path / "c").iterdir()] == ["d1.json"]


class TestBuildDocumentStore:
    def test_memory_backend_from_env(self):
        assert isinstance(build_document_store(), InMemoryDocumentStore)

    def test_local_backend(self, monkeypatch, tmp_path):
        from variant_sdk.tier0_core.config import _reset_settings

        monkeypatch.setenv("VARIANT_DOCUMENTS_BACKEND", "local")
        monkeypatch.setenv("VARIANT_DOCUMENTS_PATH", str(tmp_path))
        _reset_settings()
        assert isinstance(build_document_store(), LocalDocumentStore)

    def test_unknown_backend(self, monkeypatch):
        from variant_sdk.tier0_core.config import _reset_settings

        monkeypatch.setenv("VARIANT_DOCUMENTS_BACKEND", "cassandra")
        _reset_settings()
        with pytest.raises(ValueError):
            build_document_store()

import asyncio
import json
import sys
from pathlib import Path

import httpx
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from family_manager.core.storage import JsonRecordStore, OwnerScopedStore, RestRecordStore, StoreError


def test_json_store_crud(tmp_path):
    store = JsonRecordStore(str(tmp_path), "families")

    async def scenario():
        assert await store.fetch_all() == []
        assert (await store.insert({"id": "f1", "name": "Netflix", "owner_password": "x"})).success
        dup = await store.insert({"id": "f1", "name": "again"})
        assert not dup.success and "duplicate" in dup.error

        assert (await store.update_by_id("f1", {"name": "Netflix Family"})).success
        missing = await store.update_by_id("nope", {"name": "x"})
        assert not missing.success

        rows = await store.fetch_all(["owner_password"])
        assert rows == [{"id": "f1", "owner_password": "x"}]

        assert (await store.upsert([{"id": "f1", "notes": "n"}, {"id": "f2", "name": "Spotify"}])).success
        assert len(await store.fetch_all()) == 2
        assert (await store.fetch_all(filters={"id": "f1"}))[0]["notes"] == "n"

        assert (await store.delete_by_id("f2")).success
        assert not (await store.delete_by_id("f2")).success
        return await store.fetch_all()

    rows = asyncio.run(scenario())
    assert rows == [{"id": "f1", "name": "Netflix Family", "owner_password": "x", "notes": "n"}]
    on_disk = json.loads((tmp_path / "tables" / "families.json").read_text())
    assert on_disk == rows


def test_json_store_corrupt_table_raises_on_read(tmp_path):
    store = JsonRecordStore(str(tmp_path), "families")
    (tmp_path / "tables" / "families.json").write_text("{not json")
    with pytest.raises(StoreError):
        asyncio.run(store.fetch_all())
    result = asyncio.run(store.update_by_id("f1", {"name": "x"}))
    assert not result.success


def test_owner_scoped_store(tmp_path):
    inner = JsonRecordStore(str(tmp_path), "families")
    mine = OwnerScopedStore(inner, "alice")
    theirs = OwnerScopedStore(inner, "bob")

    async def scenario():
        await mine.insert({"id": "a1", "name": "A"})
        await theirs.insert({"id": "b1", "name": "B"})
        assert [r["id"] for r in await mine.fetch_all()] == ["a1"]
        assert not (await mine.update_by_id("b1", {"name": "hijack"})).success
        assert not (await mine.delete_by_id("b1")).success
        assert (await mine.update_by_id("a1", {"name": "A2"})).success
        return await inner.fetch_all()

    rows = {r["id"]: r for r in asyncio.run(scenario())}
    assert rows["a1"]["user_id"] == "alice"
    assert rows["a1"]["name"] == "A2"
    assert rows["b1"]["name"] == "B"


def _rest_store(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RestRecordStore("https://db.example.test/", "anon-key", "families", client=client)


def test_rest_store_fetch_projection_and_filters():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = request.url
        seen["apikey"] = request.headers["apikey"]
        return httpx.Response(200, json=[{"id": "f1", "owner_password": "pw"}])

    store = _rest_store(handler)
    rows = asyncio.run(store.fetch_all(["id", "owner_password"], {"user_id": "u1"}))
    assert rows == [{"id": "f1", "owner_password": "pw"}]
    assert seen["url"].path == "/rest/v1/families"
    assert seen["url"].params["select"] == "id,owner_password"
    assert seen["url"].params["user_id"] == "eq.u1"
    assert seen["apikey"] == "anon-key"


def test_rest_store_update_reports_missing_row_and_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "PATCH"
        if request.url.params["id"] == "eq.gone":
            return httpx.Response(200, json=[])
        if request.url.params["id"] == "eq.bad":
            return httpx.Response(500, text="boom")
        assert json.loads(request.content) == {"owner_password": "env"}
        return httpx.Response(200, json=[{"id": "f1"}])

    store = _rest_store(handler)
    assert asyncio.run(store.update_by_id("f1", {"owner_password": "env"})).success
    assert "not found" in asyncio.run(store.update_by_id("gone", {"owner_password": "env"})).error
    assert asyncio.run(store.update_by_id("bad", {"owner_password": "env"})).error.startswith("500")


def test_rest_store_upsert_and_read_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            assert request.headers["Prefer"] == "resolution=merge-duplicates"
            return httpx.Response(201)
        return httpx.Response(503, text="unavailable")

    store = _rest_store(handler)
    assert asyncio.run(store.upsert([{"id": "f1"}])).success
    with pytest.raises(StoreError):
        asyncio.run(store.fetch_all())


def test_rest_store_requires_configuration():
    with pytest.raises(StoreError):
        RestRecordStore("", "", "families")


def test_owner_scoped_upsert_cannot_take_over_other_rows(tmp_path):
    inner = JsonRecordStore(str(tmp_path), "families")
    alice = OwnerScopedStore(inner, "alice")
    bob = OwnerScopedStore(inner, "bob")

    async def scenario():
        await alice.insert({"id": "fam-1", "name": "A", "owner_password": "alice-env"})
        result = await bob.upsert([{"id": "fam-1", "name": "hijack", "owner_password": "bob-env"}])
        assert not result.success
        assert "another owner" in result.error
        assert (await bob.upsert([{"id": "fam-2", "name": "B"}])).success
        return await inner.fetch_all()

    rows = {r["id"]: r for r in asyncio.run(scenario())}
    assert rows["fam-1"]["user_id"] == "alice"
    assert rows["fam-1"]["owner_password"] == "alice-env"
    assert rows["fam-2"]["user_id"] == "bob"


def test_claim_orphans_takes_only_unowned_rows(tmp_path):
    inner = JsonRecordStore(str(tmp_path), "families")
    asyncio.run(
        inner.upsert(
            [
                {"id": "orphan-1", "name": "no owner key"},
                {"id": "orphan-2", "name": "null owner", "user_id": None},
                {"id": "taken", "name": "bob's", "user_id": "bob"},
            ]
        )
    )
    mine = OwnerScopedStore(inner, "alice")

    assert asyncio.run(mine.claim_orphans()) == 2
    assert asyncio.run(mine.claim_orphans()) == 0
    owners = {r["id"]: r["user_id"] for r in asyncio.run(inner.fetch_all())}
    assert owners == {"orphan-1": "alice", "orphan-2": "alice", "taken": "bob"}


def test_rest_store_sends_null_filter():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["user_id"] = request.url.params["user_id"]
        return httpx.Response(200, json=[])

    store = _rest_store(handler)
    assert asyncio.run(store.fetch_all(["id"], {"user_id": None})) == []
    assert seen["user_id"] == "is.null"

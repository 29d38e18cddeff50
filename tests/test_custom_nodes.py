"""Package description lookup and the custom node catalogue."""

from __future__ import annotations

import httpx
import pytest

from conftest import Recorder, json_response
from semantic_flow.custom_nodes import CustomNodeStore, PackageInfoResolver, description_from_registry


def _resolver(handler, **kwargs) -> PackageInfoResolver:
    return PackageInfoResolver(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)), **kwargs)


class TestDescriptionFromRegistry:
    def test_latest_version_wins(self):
        data = {
            "description": "top",
            "dist-tags": {"latest": "2.0.0"},
            "versions": {"1.0.0": {"description": "old"}, "2.0.0": {"description": "new"}},
        }
        assert description_from_registry(data) == "new"

    def test_falls_back_to_top_level(self):
        assert description_from_registry({"description": "top", "dist-tags": {"latest": "9.9.9"}}) == "top"
        assert description_from_registry({"description": "top"}) == "top"
        assert description_from_registry([]) == ""


class TestPackageInfoResolver:
    @pytest.mark.asyncio
    async def test_npm_lookup_cached(self):
        rec = Recorder(json_response({"dist-tags": {"latest": "1.0.0"}, "versions": {"1.0.0": {"description": "Mail"}}}))
        resolver = _resolver(rec)
        assert await resolver.describe("@scope/mail") == "Mail"
        assert await resolver.describe("@scope/mail") == "Mail"
        assert len(rec.requests) == 1
        assert str(rec.requests[0].url) == "https://registry.npmjs.org/%40scope%2Fmail"

    @pytest.mark.asyncio
    async def test_unpkg_fallback(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "unpkg.com":
                return json_response({"description": "From unpkg"})
            return httpx.Response(404)

        assert await _resolver(handler).describe("node-red-x") == "From unpkg"

    @pytest.mark.asyncio
    async def test_unresolvable_is_empty(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("offline", request=request)

        resolver = _resolver(handler)
        assert await resolver.describe("node-red-y") == ""
        assert resolver.cached("node-red-y") == ""

    @pytest.mark.asyncio
    async def test_empty_name(self):
        rec = Recorder(json_response({}))
        assert await _resolver(rec).describe("") == ""
        assert await _resolver(rec).describe(None) == ""
        assert rec.requests == []

    @pytest.mark.asyncio
    async def test_seed_short_circuits(self):
        rec = Recorder(json_response({}))
        resolver = _resolver(rec, seed=[{"name": "pkg", "description": "Seeded"}, {"description": "no name"}])
        assert await resolver.describe("pkg") == "Seeded"
        assert rec.requests == []

    @pytest.mark.asyncio
    async def test_cache_url_loaded_once(self):
        rec = Recorder(json_response([{"name": "pkg", "description": "Remote"}]))
        resolver = _resolver(rec, cache_url="https://cache.example/packages.json")
        assert await resolver.describe("pkg") == "Remote"
        await resolver.load_cache()
        assert [str(r.url) for r in rec.requests] == ["https://cache.example/packages.json"]

    @pytest.mark.asyncio
    async def test_cache_url_failure_tolerated(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "cache.example":
                return httpx.Response(500)
            return json_response({"description": "Live"})

        resolver = _resolver(handler, cache_url="https://cache.example/packages.json")
        assert await resolver.describe("pkg") == "Live"


class TestCustomNodeStore:
    @pytest.mark.asyncio
    async def test_replace_resolves_and_drops_package_name(self):
        resolver = _resolver(Recorder(json_response({})), seed=[{"name": "node-red-node-email", "description": "Mail"}])
        store = CustomNodeStore(resolver)
        count = await store.replace([
            {"name": "email out", "packageName": "node-red-node-email", "schema": {"server": {}, "port": {}}},
            {"name": "bare"},
            "not a node",
        ])
        assert count == 2 == len(store)
        assert store.nodes[0] == {"name": "email out", "schema": {"server": {}, "port": {}}, "description": "Mail"}
        assert store.nodes[1]["description"] == ""
        assert store.summarized() == [
            {"name": "email out", "fields": ["server", "port"]},
            {"name": "bare", "fields": []},
        ]

    @pytest.mark.asyncio
    async def test_replace_is_total(self):
        store = CustomNodeStore(_resolver(Recorder(json_response({}))))
        await store.replace([{"name": "a"}])
        await store.replace([])
        assert len(store) == 0

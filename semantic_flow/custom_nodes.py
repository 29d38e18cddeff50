"""Custom node catalogue.

The editor posts the custom node types installed by the user. Each entry
names its npm package; the package description is resolved once and cached,
first from the configured cache (inline list and/or URL), then from the npm
registry, then from unpkg. Lookups never fail a request: an unresolvable
package simply has an empty description.

Only a compact summary (name + schema field names) ever reaches a prompt.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable
from urllib.parse import quote

import httpx

from semantic_flow.prompts import summarize_custom_nodes

logger = logging.getLogger("semantic_flow.custom_nodes")

NPM_REGISTRY_URL = "https://registry.npmjs.org"
UNPKG_URL = "https://unpkg.com"
DEFAULT_TIMEOUT = 5.0


def description_from_registry(data: Any) -> str:
    """Description of the latest dist-tag, else the top-level one."""
    if not isinstance(data, dict):
        return ""
    latest = (data.get("dist-tags") or {}).get("latest")
    versions = data.get("versions") or {}
    info = versions.get(latest) if latest and isinstance(versions, dict) else data
    desc = (info or {}).get("description") if isinstance(info, dict) else None
    return desc or data.get("description") or ""


class PackageInfoResolver:
    """Resolves and caches npm package descriptions."""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        cache_url: str = "",
        seed: Iterable[dict[str, Any]] | None = None,
    ) -> None:
        self._client = http_client or httpx.AsyncClient()
        self._timeout = timeout
        self._cache_url = cache_url
        self._cache: dict[str, str] = {}
        self._loaded = False
        if seed:
            self.seed(seed)

    def seed(self, entries: Iterable[dict[str, Any]]) -> None:
        for entry in entries or []:
            if isinstance(entry, dict) and entry.get("name"):
                self._cache[str(entry["name"])] = entry.get("description") or ""

    def cached(self, name: str) -> str | None:
        return self._cache.get(name)

    async def load_cache(self) -> None:
        """Fetch the remote cache list once; failures leave the cache as is."""
        if self._loaded:
            return
        self._loaded = True
        if not self._cache_url:
            return
        try:
            r = await self._client.get(self._cache_url, timeout=self._timeout)
            r.raise_for_status()
            data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Package info cache %s unavailable: %s", self._cache_url, e)
            return
        if isinstance(data, list):
            self.seed(data)
            logger.info("Loaded %d package descriptions from %s", len(data), self._cache_url)

    async def _get_json(self, url: str) -> Any:
        r = await self._client.get(url, timeout=self._timeout)
        r.raise_for_status()
        return r.json()

    async def describe(self, name: str | None) -> str:
        if not name:
            return ""
        await self.load_cache()
        cached = self._cache.get(name)
        if cached:
            return cached

        try:
            description = description_from_registry(
                await self._get_json(f"{NPM_REGISTRY_URL}/{quote(name, safe='')}")
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.debug("npm registry lookup for %s failed: %s", name, e)
            try:
                info = await self._get_json(f"{UNPKG_URL}/{name}/package.json")
                description = (info.get("description") if isinstance(info, dict) else "") or ""
            except (httpx.HTTPError, ValueError) as e2:
                logger.debug("unpkg lookup for %s failed: %s", name, e2)
                description = ""

        self._cache[name] = description
        return description

    async def close(self) -> None:
        await self._client.aclose()


class CustomNodeStore:
    """The custom node types last posted by the editor."""

    def __init__(self, resolver: PackageInfoResolver | None = None) -> None:
        self.resolver = resolver or PackageInfoResolver()
        self._nodes: list[dict[str, Any]] = []

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def nodes(self) -> list[dict[str, Any]]:
        return list(self._nodes)

    async def replace(self, nodes: list[dict[str, Any]]) -> int:
        """Store nodes, each with a resolved description and no packageName."""
        entries = [dict(n) for n in nodes if isinstance(n, dict)]
        descriptions = await asyncio.gather(
            *(self.resolver.describe(n.pop("packageName", None)) for n in entries)
        )
        for entry, description in zip(entries, descriptions):
            entry["description"] = description
        self._nodes = entries
        logger.info("Stored %d custom nodes", len(entries))
        return len(entries)

    def summarized(self) -> list[dict[str, Any]]:
        return summarize_custom_nodes(self._nodes)

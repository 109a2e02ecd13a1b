"""Request interception and per-class caching strategies.

``CacheRouter`` is an httpx transport: give it to an ``httpx.AsyncClient``
and every request the client sends is classified and answered from the
network, a named cache, or both. Classification looks only at the request
origin and its ``Sec-Fetch-Mode`` / ``Sec-Fetch-Dest`` headers.
"""

import asyncio
import hashlib
import logging
import sqlite3
from dataclasses import dataclass
from typing import Callable

import httpx

from swipefeed.cache_storage import CacheStorage, ExpirationPolicy, QuotaExceededError

logger = logging.getLogger(__name__)

DAY = 60 * 60 * 24

REMOTE_IMAGE_ORIGIN = "https://firebasestorage.googleapis.com"
FONT_STYLESHEET_ORIGIN = "https://fonts.googleapis.com"
FONT_FILE_ORIGIN = "https://fonts.gstatic.com"

APP_SHELL_CACHE = "app-shell"
IMAGES_CACHE = "images"
REMOTE_IMAGES_CACHE = "remote-images"
FONT_STYLESHEETS_CACHE = "font-stylesheets"
FONT_FILES_CACHE = "font-files"
OFFLINE_FALLBACK_CACHE = "offline-fallbacks"
PRECACHE_PREFIX = "precache-"

OFFLINE_PATH = "/offline.html"
FALLBACK_IMAGE_PATH = "/fallback-image.jpg"

APP_SHELL_POLICY = ExpirationPolicy(max_entries=1, max_age_seconds=DAY)
IMAGES_POLICY = ExpirationPolicy(
    max_entries=100, max_age_seconds=30 * DAY, purge_on_quota_error=True
)
REMOTE_IMAGES_POLICY = ExpirationPolicy(
    max_entries=200, max_age_seconds=30 * DAY, purge_on_quota_error=True
)
FONT_FILES_POLICY = ExpirationPolicy(max_entries=30, max_age_seconds=365 * DAY)

# Only successful full responses are written to any cache.
CACHEABLE_STATUS = 200


def origin_of(url: httpx.URL) -> str:
    """scheme://host[:port] of a URL, port omitted when default."""
    origin = f"{url.scheme}://{url.host}"
    if url.port is not None:
        origin += f":{url.port}"
    return origin


def is_navigation(request: httpx.Request) -> bool:
    return request.headers.get("sec-fetch-mode", "").lower() == "navigate"


def is_image(request: httpx.Request) -> bool:
    return request.headers.get("sec-fetch-dest", "").lower() == "image"


def from_origin(origin: str) -> Callable[[httpx.Request], bool]:
    def matches(request: httpx.Request) -> bool:
        return origin_of(request.url) == origin
    return matches


# --- Strategies ---


class Strategy:
    """How one class of request is answered."""

    def __init__(self, cache_name: str, policy: ExpirationPolicy | None = None):
        self.cache_name = cache_name
        self.policy = policy

    def cache_key(self, request: httpx.Request) -> str:
        return str(request.url)

    async def handle(self, router: "CacheRouter", request: httpx.Request) -> httpx.Response:
        raise NotImplementedError


class Precache(Strategy):
    """Serve manifest assets stored at install time; anything else goes to the network."""

    def cache_key(self, request: httpx.Request) -> str:
        return f"{origin_of(request.url)}{request.url.path}"

    async def handle(self, router, request):
        cached = await router.storage.match(self.cache_name, self.cache_key(request))
        if cached is not None:
            return cached
        logger.debug("Precache miss for %s, using network", request.url)
        return await router.fetch(request)


class NetworkFirst(Strategy):
    """Try the network; serve the cached copy only when the network fails."""

    def __init__(
        self,
        cache_name: str,
        policy: ExpirationPolicy | None = None,
        key: Callable[[httpx.Request], str] | None = None,
    ):
        super().__init__(cache_name, policy)
        self._key = key

    def cache_key(self, request: httpx.Request) -> str:
        if self._key is not None:
            return self._key(request)
        return super().cache_key(request)

    async def handle(self, router, request):
        key = self.cache_key(request)
        try:
            response = await router.fetch(request)
        except httpx.TransportError as e:
            cached = await router.storage.match(self.cache_name, key, self.policy)
            if cached is None:
                raise
            logger.info("Network failed for %s (%s), serving %s", request.url, e, self.cache_name)
            return cached
        await router.store(self.cache_name, key, response, self.policy)
        return response


class CacheFirst(Strategy):
    """Serve from cache when present, otherwise fetch and store."""

    async def handle(self, router, request):
        key = self.cache_key(request)
        cached = await router.storage.match(self.cache_name, key, self.policy)
        if cached is not None:
            return cached
        response = await router.fetch(request)
        await router.store(self.cache_name, key, response, self.policy)
        return response


class StaleWhileRevalidate(Strategy):
    """Serve the cached copy at once and refresh it in the background."""

    async def handle(self, router, request):
        key = self.cache_key(request)
        cached = await router.storage.match(self.cache_name, key, self.policy)
        if cached is not None:
            router.spawn(self._revalidate(router, request, key))
            return cached
        response = await router.fetch(request)
        await router.store(self.cache_name, key, response, self.policy)
        return response

    async def _revalidate(self, router, request, key):
        try:
            response = await router.fetch(request)
        except httpx.TransportError as e:
            logger.warning("Background refresh of %s failed: %s", request.url, e)
            return
        await router.store(self.cache_name, key, response, self.policy)


@dataclass(frozen=True)
class Route:
    name: str
    match: Callable[[httpx.Request], bool]
    strategy: Strategy
    fallback_path: str | None = None


def precache_name(manifest: dict[str, str]) -> str:
    """Cache name derived from the manifest contents and revisions."""
    digest = hashlib.sha1()
    for path, revision in sorted(manifest.items()):
        digest.update(f"{path}@{revision}\n".encode())
    return PRECACHE_PREFIX + digest.hexdigest()[:12]


def build_routes(
    app_origin: str,
    manifest: dict[str, str],
    remote_image_origin: str = REMOTE_IMAGE_ORIGIN,
) -> list[Route]:
    """The ordered route table; the first matching route wins."""
    shell_key = f"{app_origin}/"
    precached = {f"{app_origin}{path}" for path in manifest}

    def is_precached(request: httpx.Request) -> bool:
        return f"{origin_of(request.url)}{request.url.path}" in precached

    return [
        Route(
            "navigation",
            is_navigation,
            NetworkFirst(APP_SHELL_CACHE, APP_SHELL_POLICY, key=lambda _: shell_key),
            fallback_path=OFFLINE_PATH,
        ),
        Route(
            "image",
            is_image,
            CacheFirst(IMAGES_CACHE, IMAGES_POLICY),
            fallback_path=FALLBACK_IMAGE_PATH,
        ),
        Route(
            "remote-image",
            from_origin(remote_image_origin),
            CacheFirst(REMOTE_IMAGES_CACHE, REMOTE_IMAGES_POLICY),
            fallback_path=FALLBACK_IMAGE_PATH,
        ),
        Route(
            "font-stylesheet",
            from_origin(FONT_STYLESHEET_ORIGIN),
            StaleWhileRevalidate(FONT_STYLESHEETS_CACHE),
        ),
        Route(
            "font-file",
            from_origin(FONT_FILE_ORIGIN),
            CacheFirst(FONT_FILES_CACHE, FONT_FILES_POLICY),
        ),
        Route("precache", is_precached, Precache(precache_name(manifest))),
    ]


class CacheRouter(httpx.AsyncBaseTransport):
    """Transport that answers each request with the strategy of its route.

    Args:
        storage: Connected CacheStorage holding every named cache.
        app_origin: Origin the application shell is served from.
        manifest: Same-origin asset paths mapped to their revision, precached by install().
        transport: Transport used for the network; defaults to a real HTTP transport.
        remote_image_origin: Origin whose images get their own cache.
    """

    def __init__(
        self,
        storage: CacheStorage,
        app_origin: str,
        manifest: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        remote_image_origin: str = REMOTE_IMAGE_ORIGIN,
    ):
        self.storage = storage
        self.app_origin = app_origin.rstrip("/")
        self.manifest = dict(manifest or {})
        self.precache_name = precache_name(self.manifest)
        self.routes = build_routes(self.app_origin, self.manifest, remote_image_origin)
        self._transport = transport or httpx.AsyncHTTPTransport()
        self._background: set[asyncio.Task] = set()

    def classify(self, request: httpx.Request) -> Route | None:
        if request.method != "GET":
            return None
        for route in self.routes:
            if route.match(request):
                return route
        return None

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        route = self.classify(request)
        if route is None:
            return await self._transport.handle_async_request(request)

        try:
            return await route.strategy.handle(self, request)
        except httpx.TransportError as e:
            if route.fallback_path is None:
                raise
            fallback = await self.storage.match(
                OFFLINE_FALLBACK_CACHE, f"{self.app_origin}{route.fallback_path}"
            )
            if fallback is None:
                raise
            logger.warning("Serving %s for %s: %s", route.fallback_path, request.url, e)
            return fallback

    async def fetch(self, request: httpx.Request) -> httpx.Response:
        """Send to the network and return a fully read response."""
        response = await self._transport.handle_async_request(request)
        try:
            body = await response.aread()
        finally:
            await response.aclose()
        return httpx.Response(
            status_code=response.status_code,
            headers=[
                (k, v)
                for k, v in response.headers.multi_items()
                if k.lower() not in ("content-encoding", "content-length", "transfer-encoding")
            ],
            content=body,
            request=request,
        )

    async def store(
        self,
        cache_name: str,
        key: str,
        response: httpx.Response,
        policy: ExpirationPolicy | None = None,
    ) -> bool:
        """Write a response to a named cache. Failures are logged, never raised."""
        if response.status_code != CACHEABLE_STATUS:
            return False
        try:
            await self.storage.put(cache_name, key, response, policy)
        except QuotaExceededError as e:
            logger.warning("Not caching %s: %s", key, e)
            if policy and policy.purge_on_quota_error:
                purged = await self.storage.purge(cache_name)
                logger.warning("Purged %d entries from %s after quota error", purged, cache_name)
            return False
        except sqlite3.Error as e:
            logger.warning("Cache write to %s failed: %s", cache_name, e)
            return False
        return True

    def spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self) -> None:
        """Wait for background revalidations to finish."""
        while self._background:
            await asyncio.gather(*list(self._background))

    # --- Install lifecycle ---

    async def install(self) -> int:
        """Precache every manifest asset and the offline fallbacks.

        Returns:
            Number of assets stored.

        Raises:
            httpx.HTTPError: If a manifest asset or the offline page cannot be fetched.
        """
        stored = 0
        for path in sorted(self.manifest):
            response = await self._fetch_asset(path)
            await self.storage.put(self.precache_name, f"{self.app_origin}{path}", response)
            stored += 1

        response = await self._fetch_asset(OFFLINE_PATH)
        await self.storage.put(OFFLINE_FALLBACK_CACHE, f"{self.app_origin}{OFFLINE_PATH}", response)
        stored += 1

        try:
            response = await self._fetch_asset(FALLBACK_IMAGE_PATH)
        except httpx.HTTPError as e:
            logger.warning("No fallback image available: %s", e)
        else:
            await self.storage.put(
                OFFLINE_FALLBACK_CACHE, f"{self.app_origin}{FALLBACK_IMAGE_PATH}", response
            )
            stored += 1

        logger.info("Installed %d assets into %s", stored, self.precache_name)
        return stored

    async def cleanup_outdated_caches(self) -> list[str]:
        """Delete precaches left by earlier manifests."""
        removed = []
        for name in self.storage.cache_names():
            if name.startswith(PRECACHE_PREFIX) and name != self.precache_name:
                await self.storage.delete_cache(name)
                removed.append(name)
        if removed:
            logger.info("Removed outdated caches: %s", ", ".join(removed))
        return removed

    async def _fetch_asset(self, path: str) -> httpx.Response:
        request = httpx.Request("GET", f"{self.app_origin}{path}")
        response = await self.fetch(request)
        response.raise_for_status()
        return response

    async def aclose(self) -> None:
        await self.drain()
        await self._transport.aclose()

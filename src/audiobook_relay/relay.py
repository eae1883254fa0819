"""Allowlisted, range-aware byte relay for audio and cover images.

Browsers cannot play or seek cross-origin audio from hosts that refuse
CORS or range requests. The relay fetches the bytes server-side and
streams them back same-origin:

- targets must be on the host allowlist (403 otherwise, before any fetch)
- an incoming Range header is forwarded; upstream 206 is mirrored as 206
- content headers are copied; permissive CORS headers are added
- non-2xx upstream statuses are mirrored with an empty body
- transport failures become 502

The image variant additionally refuses (415) anything whose upstream
Content-Type is not ``image/*``.
"""

import re
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from dataclasses import dataclass

import httpx
from loguru import logger

from .errors import InputValidationError, SourceUnavailable, UpstreamRejection
from .sanitize import to_https

log = logger.bind(stage="relay")

SOURCE = "relay"

ALLOWED_HOSTS: frozenset[str] = frozenset(
    {
        "archive.org",
        "www.archive.org",
        "covers.openlibrary.org",
        "librivox.org",
        "www.librivox.org",
    }
)
SCRAPED_SITE_HOSTS: frozenset[str] = frozenset({"audioaz.com", "www.audioaz.com"})
STORAGE_NODE_RE = re.compile(r"^ia\d{3,}\.us\.archive\.org$")

PASS_THROUGH_HEADERS = (
    "content-type",
    "content-length",
    "accept-ranges",
    "content-disposition",
    "content-range",
)
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Timing-Allow-Origin": "*",
}
PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,HEAD,OPTIONS",
    "Access-Control-Allow-Headers": "Range, Content-Type",
}


class HostAllowlist:
    """Exact host names plus host patterns. Read-only once built."""

    def __init__(self, hosts: Iterable[str], patterns: Iterable[re.Pattern[str]] = ()) -> None:
        self.hosts = frozenset(h.lower() for h in hosts)
        self.patterns = tuple(patterns)

    @classmethod
    def default(cls, allow_scraped_site_media: bool = True) -> "HostAllowlist":
        hosts = set(ALLOWED_HOSTS)
        if allow_scraped_site_media:
            hosts |= SCRAPED_SITE_HOSTS
        return cls(hosts, (STORAGE_NODE_RE,))

    def allows(self, url: str) -> bool:
        try:
            parsed = httpx.URL(url)
        except httpx.InvalidURL:
            return False
        if parsed.scheme not in ("http", "https"):
            return False
        if parsed.port not in (None, 80, 443):
            return False
        host = parsed.host.lower()
        if host in self.hosts:
            return True
        return any(p.match(host) for p in self.patterns)


@dataclass
class RelayResponse:
    """An open upstream response ready to stream downstream."""

    status_code: int
    headers: dict[str, str]
    body: AsyncIterator[bytes]
    close: Callable[[], Awaitable[None]]
    url: str = ""


class StreamingRelay:
    """Stateless per request; shares one AsyncClient."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        allowlist: HostAllowlist | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.client = client
        self.allowlist = allowlist or HostAllowlist.default()
        self.timeout = timeout

    def check_target(self, target: str | None) -> str:
        """Validated https target URL. Raises InputValidationError (400/403)."""
        if not target or not target.strip():
            raise InputValidationError("missing u", status_code=400)
        url = to_https(target)
        if not self.allowlist.allows(url):
            log.warning(f"Refusing relay target {url}")
            raise InputValidationError("host not allowed", status_code=403)
        return url

    async def open(
        self, target: str | None, range_header: str | None = None, method: str = "GET",
    ) -> RelayResponse:
        """Open the binary relay for ``target``, forwarding ``range_header``.

        ``method="HEAD"`` asks upstream for headers only; the body is then empty.
        """
        url = self.check_target(target)
        headers = {"Accept-Encoding": "identity"}
        if range_header:
            headers["Range"] = range_header

        upstream = await self._send(url, headers, method=method)
        log.debug(f"Relay {url} range={range_header!r} -> {upstream.status_code}")
        return self._wrap(upstream, url)

    async def open_image(self, target: str | None) -> RelayResponse:
        """Open the image relay; anything but image/* is refused with 415."""
        url = self.check_target(target)
        upstream = await self._send(url, {"Accept-Encoding": "identity"})

        content_type = upstream.headers.get("content-type", "")
        if not content_type.lower().startswith("image/"):
            await upstream.aclose()
            log.warning(f"Image relay refused {url}: content-type {content_type!r}")
            raise InputValidationError("unsupported media type", status_code=415)
        return self._wrap(upstream, url)

    async def _send(self, url: str, headers: dict[str, str], method: str = "GET") -> httpx.Response:
        request = self.client.build_request(method, url, headers=headers, timeout=self.timeout)
        try:
            upstream = await self.client.send(request, stream=True)
        except httpx.HTTPError as e:
            log.error(f"Relay fetch failed for {url}: {e}")
            raise SourceUnavailable(SOURCE, f"{type(e).__name__}: {e}") from e

        if upstream.status_code != 206 and not upstream.is_success:
            await upstream.aclose()
            log.info(f"Relay upstream {upstream.status_code} for {url}")
            raise UpstreamRejection(upstream.status_code, url)
        return upstream

    @staticmethod
    def _wrap(upstream: httpx.Response, url: str) -> RelayResponse:
        headers = {
            name: upstream.headers[name]
            for name in PASS_THROUGH_HEADERS
            if name in upstream.headers
        }
        headers.update(CORS_HEADERS)
        return RelayResponse(
            status_code=206 if upstream.status_code == 206 else 200,
            headers=headers,
            body=upstream.aiter_raw(),
            close=upstream.aclose,
            url=url,
        )

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence
from urllib.parse import urlparse

import httpx
import trafilatura

from janeproxy.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SEED_URLS = (
    "https://en.wikipedia.org/wiki/Cognitive_behavioral_therapy",
    "https://en.wikipedia.org/wiki/Dialectical_behavior_therapy",
    "https://cmha.ca/find-info/mental-health/",
    "https://www.nimh.nih.gov/health/topics/attention-deficit-hyperactivity-disorder-adhd",
    "https://www.hopeforwellness.ca",
)

PAGE_CHAR_LIMIT = 4000
CONTEXT_CHAR_LIMIT = 9000
MAX_SOURCES = 3

_WHITESPACE = re.compile(r"\s+")


def html_to_text(html: str, *, limit: int = PAGE_CHAR_LIMIT) -> str:
    """Main readable text of an HTML page, whitespace-collapsed and truncated.

    Scripts, styles, comments and tables are dropped and entities decoded.
    Pages with no extractable text yield an empty string.
    """
    extracted = trafilatura.extract(html, include_comments=False, include_tables=False)
    if not extracted:
        return ""
    return _WHITESPACE.sub(" ", extracted).strip()[:limit]


@dataclass
class WebContext:
    text: str = ""
    sources: List[str] = field(default_factory=list)


class WebContextFetcher:
    """Best-effort reference text from allow-listed pages.

    A disallowed origin, malformed URL, network error, bad status or page with
    no readable text yields ``None`` for that page; ``augment`` never raises.
    """

    def __init__(
        self,
        *,
        enabled: bool = False,
        allow_list: Sequence[str] = (),
        seeds: Sequence[str] = DEFAULT_SEED_URLS,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.enabled = enabled
        self.allow_list = tuple(allow_list)
        self.seeds = tuple(seeds)
        self.timeout = timeout
        self._transport = transport

    def is_allowed(self, url: str) -> bool:
        try:
            parsed = urlparse(url)
        except ValueError:
            return False
        if not parsed.scheme or not parsed.netloc:
            return False
        origin = f"{parsed.scheme}://{parsed.netloc}".lower()
        target = f"{origin}{parsed.path}"
        for prefix in self.allow_list:
            prefix = prefix.rstrip("/").lower()
            # prefixes match a whole origin or whole path segments
            if origin == prefix or target.startswith(prefix + "/"):
                return True
        return False

    async def fetch(self, url: str, client: Optional[httpx.AsyncClient] = None) -> Optional[str]:
        if not self.is_allowed(url):
            return None
        try:
            if client is None:
                async with self._client() as owned:
                    response = await owned.get(url)
            else:
                response = await client.get(url)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.info("web_context_fetch_failed", url=url, error_type=type(exc).__name__)
            return None
        return html_to_text(response.text) or None

    async def augment(self) -> WebContext:
        if not self.enabled or not self.allow_list:
            return WebContext()
        chunks: List[str] = []
        used: List[str] = []
        async with self._client() as client:
            for url in self.seeds:
                text = await self.fetch(url, client)
                if text:
                    chunks.append(f"SOURCE {url}:\n{text}\n")
                    used.append(url)
                if len(chunks) >= MAX_SOURCES:
                    break
        logger.info("web_context_collected", sources=len(used))
        return WebContext(text="\n---\n".join(chunks)[:CONTEXT_CHAR_LIMIT], sources=used)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            headers={"Accept": "text/html,application/xhtml+xml"},
            follow_redirects=False,
            transport=self._transport,
        )

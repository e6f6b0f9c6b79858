import asyncio
import logging
from html.parser import HTMLParser
from typing import Any, Dict, List, Optional

import httpx

from ipwatch.core.config import settings
from ipwatch.schemas.monitoring import MonitoringConfig, ProtectedContent, RawCandidate

logger = logging.getLogger(__name__)

RESULT_CLASSES = {"search-result", "result-item", "content-item"}
TITLE_CLASSES = {"title", "name"}
DESCRIPTION_CLASSES = {"description", "summary"}
VOID_TAGS = {
    "area", "base", "br", "col", "embed", "hr", "img", "input",
    "link", "meta", "param", "source", "track", "wbr"
}
# Opening any of these closes an open <p>
P_CLOSING_TAGS = {
    "address", "article", "aside", "blockquote", "details", "div", "dl", "fieldset",
    "figure", "footer", "form", "h1", "h2", "h3", "h4", "h5", "h6", "header",
    "li", "main", "nav", "ol", "p", "pre", "section", "table", "ul"
}
SCOPE_TAGS = {"html", "table", "td", "th", "button"}
LIST_TAGS = {"ul", "ol"}


class SearchResultParser(HTMLParser):
    """
    Pulls {title, description, link} out of search result containers
    (`.search-result`, `.result-item`, `.content-item`).

    Open elements are tracked on a stack; unterminated <p> and <li> are
    closed the way a browser closes them.
    """

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.results: List[Dict[str, Any]] = []
        self._stack: List[str] = []
        self._current: Optional[Dict[str, Any]] = None
        self._container_at = -1
        self._capture: List[tuple] = []

    def _find_open(self, tag: str, boundaries=frozenset()) -> int:
        for index in range(len(self._stack) - 1, -1, -1):
            name = self._stack[index]
            if name == tag:
                return index
            if name in boundaries:
                break
        return -1

    def _close_from(self, index: int) -> None:
        del self._stack[index:]
        self._capture = [c for c in self._capture if c[1] < index]
        if self._current is not None and index <= self._container_at:
            self._finish()

    def handle_starttag(self, tag, attrs):
        if tag in VOID_TAGS:
            return
        if tag in P_CLOSING_TAGS:
            index = self._find_open("p", SCOPE_TAGS)
            if index >= 0:
                self._close_from(index)
        if tag == "li":
            index = self._find_open("li", SCOPE_TAGS | LIST_TAGS)
            if index >= 0:
                self._close_from(index)

        attrs_map = dict(attrs)
        classes = set((attrs_map.get("class") or "").split())
        level = len(self._stack)
        self._stack.append(tag)
        if self._current is None:
            if classes & RESULT_CLASSES:
                self._current = {"title": [], "description": [], "link": None}
                self._container_at = level
            return
        href = (attrs_map.get("href") or "").strip()
        if tag == "a" and self._current["link"] is None and href:
            self._current["link"] = href
        if tag == "h3" or classes & TITLE_CLASSES:
            self._capture.append(("title", level))
        elif classes & DESCRIPTION_CLASSES:
            self._capture.append(("description", level))

    def handle_endtag(self, tag):
        if tag in VOID_TAGS:
            return
        index = self._find_open(tag)
        if index >= 0:
            self._close_from(index)

    def handle_data(self, data):
        if self._current is None or not self._capture:
            return
        field = self._capture[-1][0]
        self._current[field].append(data)

    def close(self):
        super().close()
        if self._current is not None:
            self._finish()

    def _finish(self) -> None:
        current = self._current or {}
        self.results.append({
            "title": " ".join("".join(current.get("title") or []).split()),
            "description": " ".join("".join(current.get("description") or []).split()),
            "link": current.get("link")
        })
        self._current = None
        self._container_at = -1
        self._capture = []


def parse_search_results(html: str) -> List[Dict[str, Any]]:
    parser = SearchResultParser()
    parser.feed(html or "")
    parser.close()
    return parser.results


def match_keywords(keywords: List[str], *texts: Optional[str]) -> List[str]:
    haystack = [str(t or "").lower() for t in texts]
    matched = []
    for keyword in keywords:
        needle = str(keyword or "").strip().lower()
        if needle and any(needle in text for text in haystack):
            matched.append(keyword)
    return matched


class BaseCollector:
    """
    One external source. `collect` returns raw candidates and handles its own
    partial failures; anything it does raise is isolated by the pipeline.
    """

    name: str = "base"
    source: str = "other"

    async def collect(self, config: MonitoringConfig) -> List[RawCandidate]:
        raise NotImplementedError()


SIMULATED_ALERT_FEED = [
    {
        "title": "Signing Naturally Unit 5 Found on Educational Platform",
        "description": "Potential unauthorized use of DSP content detected",
        "source_url": "https://example-oer.org/signing-naturally-unit-5",
        "source_domain": "example-oer.org",
        "detected_content": "Signing Naturally Unit 5: Family and Relationships",
        "matched_keywords": ["Signing Naturally"],
        "confidence": 85,
        "protected_content": {"title": "Signing Naturally Unit 5", "content_type": "book"},
        "metadata": {"platform": "OER Commons", "language": "en", "country": "US"}
    }
]

SIMULATED_BRAND_MENTIONS = [
    {
        "title": "DawnSignPress Logo Used Without Permission",
        "description": "Company logo found on unauthorized website",
        "source_url": "https://unauthorized-site.com/about",
        "source_domain": "unauthorized-site.com",
        "detected_content": "DawnSignPress logo and branding materials",
        "matched_keywords": ["DawnSignPress"],
        "confidence": 90,
        "protected_content": {"title": "DawnSignPress Logo", "content_type": "other"},
        "metadata": {"platform": "Website", "language": "en", "country": "US"}
    }
]


class AlertFeedCollector(BaseCollector):
    name = "alert_feed"
    source = "alert_feed"

    def __init__(self, entries: Optional[List[Dict[str, Any]]] = None):
        self.entries = SIMULATED_ALERT_FEED if entries is None else entries

    async def collect(self, config: MonitoringConfig) -> List[RawCandidate]:
        return [RawCandidate(**{"source": self.source, **entry}) for entry in self.entries]


class BrandMentionCollector(AlertFeedCollector):
    name = "brand_mentions"
    source = "brand_mentions"

    def __init__(self, entries: Optional[List[Dict[str, Any]]] = None):
        super().__init__(SIMULATED_BRAND_MENTIONS if entries is None else entries)


class ActiveScanCollector(BaseCollector):
    name = "active_scan"
    source = "active_scan"
    search_url = "https://{domain}/search"

    def __init__(
        self,
        timeout: Optional[float] = None,
        concurrency: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.timeout = float(timeout or settings.MONITORING_FETCH_TIMEOUT_SECONDS)
        self.concurrency = max(1, int(concurrency or settings.MONITORING_SCAN_CONCURRENCY))
        self.transport = transport

    async def collect(self, config: MonitoringConfig) -> List[RawCandidate]:
        keywords = [k for k in config.keywords if k and k.strip()]
        domains = [d.strip() for d in config.domains if d and d.strip()]
        if not keywords or not domains:
            logger.info("active scan skipped (no keywords or domains)")
            return []

        semaphore = asyncio.Semaphore(self.concurrency)
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport, follow_redirects=True) as client:
            batches = await asyncio.gather(
                *[self._scan_domain(client, semaphore, domain, keywords) for domain in domains]
            )
        return [candidate for batch in batches for candidate in batch]

    async def _scan_domain(
        self,
        client: httpx.AsyncClient,
        semaphore: asyncio.Semaphore,
        domain: str,
        keywords: List[str]
    ) -> List[RawCandidate]:
        async with semaphore:
            try:
                r = await client.get(
                    self.search_url.format(domain=domain),
                    params={"q": " OR ".join(keywords), "limit": 10}
                )
                r.raise_for_status()
                entries = parse_search_results(r.text)
            except httpx.HTTPError as exc:
                logger.warning("domain scan failed", extra={"domain": domain, "error": str(exc) or type(exc).__name__})
                return []
            except Exception:
                logger.exception("domain scan parse failed", extra={"domain": domain})
                return []

        candidates = []
        for entry in entries:
            title = entry.get("title")
            link = entry.get("link")
            if not title or not link:
                continue
            description = entry.get("description") or ""
            matched = match_keywords(keywords, title, description)
            if not matched:
                continue
            candidates.append(self._build_candidate(domain, title, description, link, matched))
        logger.info("domain scanned", extra={"domain": domain, "results": len(entries), "candidates": len(candidates)})
        return candidates

    def _build_candidate(
        self,
        domain: str,
        title: str,
        description: str,
        link: str,
        matched: List[str]
    ) -> RawCandidate:
        if link.startswith("http"):
            url = link
        else:
            url = f"https://{domain}{link if link.startswith('/') else '/' + link}"
        return RawCandidate(
            title=f"Potential protected content found: {title}",
            description=description or "Content found during automated scan",
            source=self.source,
            source_url=url,
            source_domain=domain,
            detected_content=title,
            matched_keywords=matched,
            protected_content=ProtectedContent(title=title, content_type="other"),
            metadata={"platform": domain, "language": "en", "country": "US"}
        )


def default_collectors() -> List[BaseCollector]:
    return [AlertFeedCollector(), BrandMentionCollector(), ActiveScanCollector()]

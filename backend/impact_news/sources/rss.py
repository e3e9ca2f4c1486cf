"""
RSS/Atom crawler for crypto news sites.

Handles fetching and parsing RSS 2.0 and Atom feeds from a configured
list of sites. A site that fails is recorded and skipped; the source
only fails as a whole when no site could be fetched or parsed.
"""

import hashlib
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional
from xml.etree import ElementTree
import logging

import httpx

from impact_news.core.errors import AuthenticationError, MalformedPayloadError, UpstreamError
from impact_news.core.taxonomy import CRYPTO_TAG_KEYWORDS
from impact_news.services.data_ingestion.rate_limiter import RetryPolicy, Sleep
from impact_news.sources.base import (
    CandidateArticle,
    FetchParams,
    SourceAdapter,
    is_valid_article,
)

logger = logging.getLogger(__name__)

ATOM_NS = "{http://www.w3.org/2005/Atom}"
CONTENT_NS = "{http://purl.org/rss/1.0/modules/content/}"
MEDIA_NS = "{http://search.yahoo.com/mrss/}"

IMG_SRC = re.compile(r"""<img[^>]+src=["']([^"']+)["']""", re.IGNORECASE)
WEB3_MARKERS = ("bitcoin", "ethereum", "blockchain")
USER_AGENT = "ImpactNews/1.0 (News Aggregator)"


class RSSCrawlerAdapter(SourceAdapter):
    """
    Crawls a list of feed URLs and normalizes their items.

    The payload keeps the raw XML per site so it can be cached and
    re-parsed without another network round trip.
    """

    source_id = "crypto_rss"
    name = "Crypto RSS"

    def __init__(
        self,
        sites: Optional[list[str]] = None,
        enabled: bool = True,
        items_per_site: int = 10,
        policy: Optional[RetryPolicy] = None,
        sleep: Optional[Sleep] = None,
    ):
        super().__init__(policy=policy, sleep=sleep)
        self.sites = sites or []
        self.enabled = enabled
        self.items_per_site = items_per_site

    def is_configured(self) -> bool:
        return self.enabled and bool(self.sites)

    async def fetch_batch(self, client: httpx.AsyncClient, params: FetchParams) -> dict[str, Any]:
        feeds = []
        errors = []
        last_error: Optional[UpstreamError] = None

        for site in self.sites:
            try:
                response = await self._request(
                    client,
                    "GET",
                    site,
                    headers={"User-Agent": USER_AGENT},
                    follow_redirects=True,
                )
            except AuthenticationError:
                raise
            except UpstreamError as e:
                logger.warning(f"Feed fetch failed for {site}: {e}")
                errors.append({"site": site, "error": str(e)})
                last_error = e
                continue

            feeds.append({"site": site, "xml": response.text})

        if not feeds and last_error is not None:
            raise last_error

        return {"feeds": feeds, "errors": errors}

    def to_candidates(self, payload: dict[str, Any]) -> list[CandidateArticle]:
        feeds = payload.get("feeds")
        if not isinstance(feeds, list):
            raise MalformedPayloadError(self.source_id, "payload missing 'feeds' list")

        candidates: list[CandidateArticle] = []
        parsed_sites = 0
        for feed in feeds:
            site = feed.get("site", "")
            try:
                items = self.parse_feed(feed.get("xml") or "", site)
            except ElementTree.ParseError as e:
                logger.error(f"Failed to parse feed from {site}: {e}")
                continue
            parsed_sites += 1
            candidates.extend(items[: self.items_per_site])

        if feeds and parsed_sites == 0:
            raise MalformedPayloadError(self.source_id, "no feed could be parsed")

        return candidates

    def parse_feed(self, xml_content: str, site: str) -> list[CandidateArticle]:
        """Parse an RSS 2.0 or Atom document. Raises ElementTree.ParseError."""
        root = ElementTree.fromstring(xml_content)
        source_name = self._source_name(root, site)

        if root.tag == f"{ATOM_NS}feed":
            entries = root.findall(f"{ATOM_NS}entry")
            parse = self._parse_atom_entry
        else:
            entries = root.findall(".//item")
            parse = self._parse_rss_item

        articles = []
        for entry in entries:
            article = parse(entry, source_name)
            if article:
                articles.append(article)
        return articles

    def _source_name(self, root: ElementTree.Element, site: str) -> str:
        title = root.findtext("channel/title") or root.findtext(f"{ATOM_NS}title")
        if title and title.strip():
            return title.strip()
        return re.sub(r"^https?://(www\.)?", "", site).split("/")[0] or self.name

    def _parse_rss_item(self, item: ElementTree.Element, source_name: str) -> Optional[CandidateArticle]:
        """Parse a single RSS item."""
        title = (item.findtext("title") or "").strip()
        link = (item.findtext("link") or "").strip()
        raw_description = item.findtext("description") or ""
        raw_content = item.findtext(f"{CONTENT_NS}encoded") or ""
        published_at = self._parse_rss_date(item.findtext("pubDate"))

        description = self._clean_html(raw_description)
        content = self._clean_html(raw_content) or description
        if not is_valid_article(title, link, published_at, content, description):
            return None

        guid = (item.findtext("guid") or "").strip() or link
        categories = [cat.text.strip() for cat in item.findall("category") if cat.text and cat.text.strip()]

        image_url = None
        enclosure = item.find("enclosure")
        if enclosure is not None and (enclosure.get("type") or "").startswith("image"):
            image_url = enclosure.get("url")
        if not image_url:
            media = item.find(f"{MEDIA_NS}content")
            if media is not None:
                image_url = media.get("url")
        if not image_url:
            match = IMG_SRC.search(raw_content or raw_description)
            if match:
                image_url = match.group(1)

        return self._candidate(title, link, guid, description, content, image_url, published_at, categories, source_name)

    def _parse_atom_entry(self, entry: ElementTree.Element, source_name: str) -> Optional[CandidateArticle]:
        """Parse a single Atom entry."""
        title = (entry.findtext(f"{ATOM_NS}title") or "").strip()

        link = None
        for link_elem in entry.findall(f"{ATOM_NS}link"):
            if link_elem.get("rel", "alternate") == "alternate":
                link = link_elem.get("href")
                break

        raw_summary = entry.findtext(f"{ATOM_NS}summary") or ""
        raw_content = entry.findtext(f"{ATOM_NS}content") or ""
        description = self._clean_html(raw_summary)
        content = self._clean_html(raw_content) or description
        published_at = self._parse_atom_date(
            entry.findtext(f"{ATOM_NS}published") or entry.findtext(f"{ATOM_NS}updated")
        )
        if not is_valid_article(title, link, published_at, content, description):
            return None

        guid = (entry.findtext(f"{ATOM_NS}id") or "").strip() or link
        categories = []
        for cat in entry.findall(f"{ATOM_NS}category"):
            term = cat.get("term") or cat.get("label")
            if term:
                categories.append(term)

        image_url = None
        match = IMG_SRC.search(raw_content or raw_summary)
        if match:
            image_url = match.group(1)

        return self._candidate(title, link, guid, description, content, image_url, published_at, categories, source_name)

    def _candidate(
        self,
        title: str,
        link: str,
        guid: str,
        description: str,
        content: str,
        image_url: Optional[str],
        published_at: datetime,
        categories: list[str],
        source_name: str,
    ) -> CandidateArticle:
        lowered = [c.lower() for c in categories]
        joined = " ".join(lowered)
        category = "web3" if any(marker in joined for marker in WEB3_MARKERS) else "crypto"

        tags = set(lowered)
        title_lower = title.lower()
        tags.update(keyword for keyword in CRYPTO_TAG_KEYWORDS if keyword in title_lower)

        # Long GUIDs (full URLs with query strings) are hashed to keep the key compact
        if len(guid) > 255:
            guid = hashlib.md5(guid.encode()).hexdigest()

        return CandidateArticle(
            title=title,
            url=link.strip(),
            source_name=source_name,
            source_id=self.source_id,
            published_at=published_at,
            content=content,
            description=description or None,
            image_url=image_url,
            guid=guid,
            language="en",
            category=category,
            tags=sorted(tags),
        )

    def _clean_html(self, html: str) -> str:
        """Strip HTML tags from content."""
        if not html:
            return ""

        clean = re.sub(r"<[^>]+>", " ", html)
        clean = " ".join(clean.split())
        clean = clean.replace("&amp;", "&")
        clean = clean.replace("&lt;", "<")
        clean = clean.replace("&gt;", ">")
        clean = clean.replace("&quot;", '"')
        clean = clean.replace("&#39;", "'")
        clean = clean.replace("&nbsp;", " ")

        return clean.strip()

    def _parse_rss_date(self, date_str: Optional[str]) -> Optional[datetime]:
        """Parse RSS date format (RFC 822)."""
        if not date_str:
            return None

        try:
            parsed = parsedate_to_datetime(date_str)
        except (ValueError, TypeError):
            return self._parse_atom_date(date_str)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

    def _parse_atom_date(self, date_str: Optional[str]) -> Optional[datetime]:
        """Parse Atom/ISO date format."""
        if not date_str:
            return None

        try:
            parsed = datetime.fromisoformat(date_str.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

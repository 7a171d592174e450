"""Source adapters: one per source kind, each turning a native response into
``RawArticle`` candidates.

Every adapter swallows its own failures: a network error, a malformed payload
or an unexpected structure is logged and turns into an empty list for that
source, so one broken upstream never aborts an ingest run.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from urllib.parse import urljoin

import certifi
import feedparser
import httpx
from bs4 import BeautifulSoup

from ..config import DEFAULT_USER_AGENT
from ..schemas import SourceConfig, SourceKind
from .peril import Peril, classify

logger = logging.getLogger(__name__)

FEED_SUMMARY_LIMIT = 300
HTML_SUMMARY_LIMIT = 200
HTML_ITEM_SELECTOR = "article, .post"
HTML_TITLE_SELECTOR = "h2, .title"

utcnow = lambda: dt.datetime.now(dt.timezone.utc)


@dataclass
class RawArticle:
    title: str
    url: str
    summary: str
    published_at: dt.datetime
    source_peril: Peril
    source_id: str | None = None
    lat: float | None = None
    lng: float | None = None
    location_text: str | None = None
    fetched_at: dt.datetime = field(default_factory=utcnow)


# ---------- HTTP ----------

def _headers(user_agent: str, accept: str) -> dict:
    return {"User-Agent": user_agent, "Accept": accept}


def _http_get(url: str, *, timeout: float, headers: dict) -> httpx.Response:
    with httpx.Client(follow_redirects=True, timeout=timeout, verify=certifi.where(), headers=headers) as c:
        r = c.get(url)
    r.raise_for_status()
    return r


def _text_of(html: str | None) -> str:
    if not html:
        return ""
    return BeautifulSoup(html, "html.parser").get_text(" ", strip=True)


# ---------- ADAPTERS ----------

class SourceAdapter:
    """Base adapter. Subclasses implement ``_parse(source, response)``."""

    tag = "src"
    accept = "*/*"

    def __init__(self, timeout: float = 20.0, user_agent: str = DEFAULT_USER_AGENT):
        self.timeout = timeout
        self.user_agent = user_agent

    def fetch(self, source: SourceConfig) -> list[RawArticle]:
        try:
            r = _http_get(source.base_url, timeout=self.timeout,
                          headers=_headers(self.user_agent, self.accept))
            items = self._parse(source, r)
        except Exception as e:
            logger.warning("[%s][ERR] %s %s: %s", self.tag, source.id, source.base_url, e)
            return []
        logger.info("[%s] %s -> items=%d", self.tag, source.id, len(items))
        return items

    def _parse(self, source: SourceConfig, r: httpx.Response) -> list[RawArticle]:
        raise NotImplementedError


class FeedAdapter(SourceAdapter):
    """RSS/Atom syndication feeds."""

    tag = "feed"
    accept = "application/rss+xml, application/atom+xml, application/xml;q=0.9, */*;q=0.7"

    def _parse(self, source, r):
        fp = feedparser.parse(r.content)
        if getattr(fp, "bozo", False) and not fp.entries:
            raise ValueError(f"unparseable feed: {fp.get('bozo_exception')}")
        now = utcnow()
        out: list[RawArticle] = []
        for entry in fp.entries:
            title = (entry.get("title") or "").strip()
            link = (entry.get("link") or "").strip()
            if not title or not link:
                continue
            snippet = _text_of(entry.get("summary") or entry.get("description"))
            out.append(RawArticle(
                title=title,
                url=link,
                summary=snippet[:FEED_SUMMARY_LIMIT],
                published_at=_entry_published(entry) or now,
                source_peril=classify(f"{title} {snippet}"),
                source_id=source.id,
                fetched_at=now,
            ))
        return out


def _entry_published(entry) -> dt.datetime | None:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if not parsed:
        return None
    try:
        return dt.datetime(*parsed[:6], tzinfo=dt.timezone.utc)
    except Exception:
        return None


def _fmt_mag(mag) -> str:
    if mag is None:
        return "?"
    if isinstance(mag, float) and mag.is_integer():
        return str(int(mag))
    return str(mag)


class StructuredApiAdapter(SourceAdapter):
    """GeoJSON hazard feeds (seismic monitoring style ``features`` list)."""

    tag = "api"
    accept = "application/geo+json, application/json;q=0.9, */*;q=0.5"

    def _parse(self, source, r):
        data = r.json()
        now = utcnow()
        out: list[RawArticle] = []
        for feature in data["features"]:
            props = feature["properties"]
            lng, lat = feature["geometry"]["coordinates"][:2]
            place = props.get("place") or ""
            mag = _fmt_mag(props.get("mag"))
            url = (props.get("url") or "").strip()
            if not url:
                continue
            ts = props.get("time")
            published = dt.datetime.fromtimestamp(ts / 1000, tz=dt.timezone.utc) if ts is not None else now
            out.append(RawArticle(
                title=f"M{mag} Earthquake - {place}",
                url=url,
                summary=f"Magnitude {mag} near {place}.",
                published_at=published,
                source_peril=Peril.EARTHQUAKE,
                source_id=source.id,
                lat=float(lat),
                lng=float(lng),
                location_text=place or None,
                fetched_at=now,
            ))
        return out


class HtmlScrapeAdapter(SourceAdapter):
    """Best-effort scrape of article-like blocks on a listing page."""

    tag = "html"
    accept = "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8"

    def _parse(self, source, r):
        soup = BeautifulSoup(r.text, "html.parser")
        base = str(r.url)
        now = utcnow()
        out: list[RawArticle] = []
        for el in soup.select(HTML_ITEM_SELECTOR):
            heading = el.select_one(HTML_TITLE_SELECTOR)
            title = heading.get_text(" ", strip=True) if heading else ""
            anchor = el.find("a")
            href = (anchor.get("href") or "").strip() if anchor else ""
            if not title or not href:
                continue
            text = el.get_text(" ", strip=True)
            out.append(RawArticle(
                title=title,
                url=urljoin(base, href),
                summary=text[:HTML_SUMMARY_LIMIT].strip(),
                published_at=now,
                source_peril=classify(title),
                source_id=source.id,
                fetched_at=now,
            ))
        return out


ADAPTERS: dict[SourceKind, type[SourceAdapter]] = {
    SourceKind.FEED: FeedAdapter,
    SourceKind.STRUCTURED_API: StructuredApiAdapter,
    SourceKind.HTML_SCRAPE: HtmlScrapeAdapter,
}


def build_adapters(timeout: float, user_agent: str) -> dict[SourceKind, SourceAdapter]:
    return {kind: cls(timeout=timeout, user_agent=user_agent) for kind, cls in ADAPTERS.items()}

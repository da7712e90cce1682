import re
from typing import Any, List, Optional, Sequence, Tuple

import feedparser

from sentinel_aggregator.clients.http_client import SourceHttpClient
from sentinel_aggregator.domain import Record, RefreshParams, SourceErrorReason, SourceKey
from sentinel_aggregator.sources.base import SourceAdapter, text
from sentinel_aggregator.utils.errors import SourceError


def _strip_html(value: str) -> str:
    if not value:
        return ""
    return re.sub(r"<[^>]+>", "", value).strip()


def normalize_entry(entry: Any, feed_title: str) -> Optional[Record]:
    title = text(entry.get("title"))
    if not title:
        return None
    return {
        "title": title,
        "summary": _strip_html(text(entry.get("summary"))),
        "link": text(entry.get("link")),
        "published_at": text(entry.get("published") or entry.get("updated")),
        "feed": feed_title,
    }


class SocialAlertsAdapter(SourceAdapter):
    """RSS/Atom alert feeds; every configured feed must parse or the source fails."""

    key = SourceKey.SOCIAL_ALERTS

    def __init__(
        self,
        feeds: Sequence[str],
        limit_per_feed: int = 25,
        client: Optional[SourceHttpClient] = None,
        timeout: float = 10.0,
    ):
        super().__init__(client=client, timeout=timeout)
        self.feeds = tuple(feeds)
        self.limit_per_feed = limit_per_feed

    def _fetch(self, params: RefreshParams) -> Tuple[Record, ...]:
        if not self.feeds:
            raise SourceError(SourceErrorReason.UNAVAILABLE, "No alert feeds configured")
        records: List[Record] = []
        for url in self.feeds:
            # Raw bytes so feedparser reads the charset from the XML prolog.
            parsed = feedparser.parse(self.client.get_bytes(url))
            if parsed.bozo and not parsed.entries:
                raise SourceError(SourceErrorReason.PARSE_ERROR, f"Feed {url} could not be parsed")
            feed_title = text(parsed.feed.get("title")) or url
            for entry in parsed.entries[: self.limit_per_feed]:
                record = normalize_entry(entry, feed_title)
                if record:
                    records.append(record)
        return tuple(records)

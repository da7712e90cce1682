from typing import Any, Dict, List, Optional, Tuple

from sentinel_aggregator.clients.http_client import SourceHttpClient
from sentinel_aggregator.domain import Record, RefreshParams, SourceErrorReason, SourceKey
from sentinel_aggregator.sources.base import SourceAdapter, text
from sentinel_aggregator.utils.errors import SourceError

NEWSAPI_ENDPOINT = "https://newsapi.org/v2/everything"


def normalize_article(item: Dict[str, Any]) -> Optional[Record]:
    title = text(item.get("title"))
    if not title:
        return None
    source = item.get("source")
    return {
        "title": title,
        "description": text(item.get("description")),
        "link": text(item.get("url")),
        "source": text(source.get("name")) if isinstance(source, dict) else "",
        "published_at": text(item.get("publishedAt")),
    }


class NewsAdapter(SourceAdapter):
    key = SourceKey.NEWS

    def __init__(
        self,
        api_key: Optional[str],
        query: str = "global threats",
        page_size: int = 50,
        endpoint: str = NEWSAPI_ENDPOINT,
        client: Optional[SourceHttpClient] = None,
        timeout: float = 10.0,
    ):
        super().__init__(client=client, timeout=timeout)
        self.api_key = api_key
        self.query = query
        self.page_size = page_size
        self.endpoint = endpoint

    def _fetch(self, params: RefreshParams) -> Tuple[Record, ...]:
        if not self.api_key:
            raise SourceError(SourceErrorReason.DENIED, "News API key not configured")
        data = self.client.get_json(
            self.endpoint,
            params={"q": self.query, "pageSize": self.page_size, "sortBy": "publishedAt"},
            headers={"X-Api-Key": self.api_key},
        )
        if not isinstance(data, dict) or data.get("status") == "error":
            message = data.get("message") if isinstance(data, dict) else "unexpected payload"
            raise SourceError(SourceErrorReason.PARSE_ERROR, f"News API returned an error: {message}")
        articles = data.get("articles")
        if not isinstance(articles, list):
            raise SourceError(SourceErrorReason.PARSE_ERROR, "News payload has no article list")
        records: List[Record] = []
        for item in articles:
            if not isinstance(item, dict):
                continue
            record = normalize_article(item)
            if record:
                records.append(record)
        return tuple(records)

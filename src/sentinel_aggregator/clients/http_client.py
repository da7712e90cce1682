from typing import Any, Dict, Optional

import requests

from sentinel_aggregator.domain import SourceErrorReason
from sentinel_aggregator.utils.errors import SourceError

USER_AGENT = "sentinel-aggregator/0.1"

DENIED_STATUSES = (401, 403)


class SourceHttpClient:
    """Outbound GET helper for source adapters.

    Every transport and HTTP failure is raised as a ``SourceError`` carrying the
    reason tag the aggregator reports. There is no retry loop: a failed call is
    retried by the next scheduled refresh.
    """

    def __init__(self, timeout: float = 10.0, headers: Optional[Dict[str, str]] = None):
        self.timeout = timeout
        self.headers = {"User-Agent": USER_AGENT}
        self.headers.update(headers or {})

    def _request(
        self, method: str, url: str, params: Optional[Dict[str, Any]] = None, headers: Optional[Dict[str, str]] = None
    ) -> requests.Response:
        merged = dict(self.headers)
        merged.update(headers or {})
        try:
            response = requests.request(method, url, headers=merged, params=params, timeout=self.timeout)
        except requests.Timeout as exc:
            raise SourceError(SourceErrorReason.TIMEOUT, f"Request to {url} timed out") from exc
        except requests.RequestException as exc:
            raise SourceError(SourceErrorReason.UNAVAILABLE, f"Request to {url} failed: {exc}") from exc
        if response.status_code in DENIED_STATUSES:
            raise SourceError(
                SourceErrorReason.DENIED, f"Upstream denied access: {response.status_code}", status_code=response.status_code
            )
        if response.status_code >= 400:
            raise SourceError(
                SourceErrorReason.UNAVAILABLE,
                f"Upstream error {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    def get_json(
        self, url: str, params: Optional[Dict[str, Any]] = None, headers: Optional[Dict[str, str]] = None
    ) -> Any:
        response = self._request("GET", url, params=params, headers=headers)
        try:
            return response.json()
        except ValueError as exc:
            raise SourceError(SourceErrorReason.PARSE_ERROR, f"Invalid JSON from {url}") from exc

    def get_bytes(
        self, url: str, params: Optional[Dict[str, Any]] = None, headers: Optional[Dict[str, str]] = None
    ) -> bytes:
        return self._request("GET", url, params=params, headers=headers).content

from typing import Any, Dict, Optional, Sequence, Tuple

from sentinel_aggregator.clients.http_client import SourceHttpClient
from sentinel_aggregator.domain import Record, RefreshParams, SourceErrorReason, SourceKey
from sentinel_aggregator.sources.base import SourceAdapter, text
from sentinel_aggregator.utils.errors import SourceError

ABUSEIPDB_CHECK_ENDPOINT = "https://api.abuseipdb.com/api/v2/check"


def normalize_indicator(data: Dict[str, Any]) -> Record:
    ip = text(data["ipAddress"])
    usage = text(data.get("usageType"))
    domain = text(data.get("domain"))
    reports = int(data.get("totalReports") or 0)
    description = f"{reports} abuse reports"
    if usage:
        description += f", {usage}"
    if domain:
        description += f" ({domain})"
    return {
        "signature": ip,
        "first_seen": text(data.get("firstReportedAt")),
        "last_seen": text(data.get("lastReportedAt")),
        "confidence": int(data.get("abuseConfidenceScore") or 0),
        "country": text(data.get("countryCode")),
        "description": description,
    }


class ThreatIntelAdapter(SourceAdapter):
    """AbuseIPDB reputation lookups for a fixed watch list of addresses."""

    key = SourceKey.THREAT_INTEL

    def __init__(
        self,
        api_key: Optional[str],
        addresses: Sequence[str] = ("8.8.8.8",),
        max_age_days: int = 30,
        endpoint: str = ABUSEIPDB_CHECK_ENDPOINT,
        client: Optional[SourceHttpClient] = None,
        timeout: float = 10.0,
    ):
        super().__init__(client=client, timeout=timeout)
        self.api_key = api_key
        self.addresses = tuple(addresses)
        self.max_age_days = max_age_days
        self.endpoint = endpoint

    def _fetch(self, params: RefreshParams) -> Tuple[Record, ...]:
        if not self.api_key:
            raise SourceError(SourceErrorReason.DENIED, "AbuseIPDB API key not configured")
        records = []
        for address in self.addresses:
            payload = self.client.get_json(
                self.endpoint,
                params={"ipAddress": address, "maxAgeInDays": self.max_age_days},
                headers={"Key": self.api_key, "Accept": "application/json"},
            )
            if not isinstance(payload, dict) or not isinstance(payload.get("data"), dict):
                raise SourceError(SourceErrorReason.PARSE_ERROR, f"Unexpected AbuseIPDB payload for {address}")
            records.append(normalize_indicator(payload["data"]))
        return tuple(records)

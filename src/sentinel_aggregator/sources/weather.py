from typing import Any, Dict, Optional

from sentinel_aggregator.clients.http_client import SourceHttpClient
from sentinel_aggregator.domain import RefreshParams, SourceErrorReason, SourceKey, WeatherReading
from sentinel_aggregator.sources.base import SourceAdapter
from sentinel_aggregator.utils.errors import SourceError

OPEN_METEO_ENDPOINT = "https://api.open-meteo.com/v1/forecast"


def _number(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value)


def normalize_weather(payload: Dict[str, Any], params: RefreshParams) -> WeatherReading:
    current = payload.get("current_weather")
    if not isinstance(current, dict):
        raise SourceError(SourceErrorReason.PARSE_ERROR, "Weather payload has no current_weather block")
    code = current.get("weathercode")
    return WeatherReading(
        latitude=_number(payload.get("latitude", params.latitude)),
        longitude=_number(payload.get("longitude", params.longitude)),
        temperature=_number(current.get("temperature")),
        windspeed=_number(current.get("windspeed")),
        winddirection=_number(current.get("winddirection")),
        weathercode=int(code) if code is not None else None,
        observed_at=current.get("time"),
        available=True,
    )


class WeatherAdapter(SourceAdapter):
    key = SourceKey.WEATHER
    parameterized = True

    def __init__(
        self,
        endpoint: str = OPEN_METEO_ENDPOINT,
        client: Optional[SourceHttpClient] = None,
        timeout: float = 10.0,
    ):
        super().__init__(client=client, timeout=timeout)
        self.endpoint = endpoint

    def _fetch(self, params: RefreshParams) -> WeatherReading:
        payload = self.client.get_json(
            self.endpoint,
            params={"latitude": params.latitude, "longitude": params.longitude, "current_weather": "true"},
        )
        if not isinstance(payload, dict):
            raise SourceError(SourceErrorReason.PARSE_ERROR, "Unexpected weather payload")
        return normalize_weather(payload, params)

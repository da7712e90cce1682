import logging
from abc import ABC, abstractmethod
from typing import Any, Hashable, Optional

from sentinel_aggregator.clients.http_client import SourceHttpClient
from sentinel_aggregator.domain import RefreshParams, SourceErrorReason, SourceKey, SourceResult
from sentinel_aggregator.utils.errors import SourceError

logger = logging.getLogger(__name__)

# Open-Meteo snaps to a grid coarser than this, so nearby coordinates share one cache entry.
COORDINATE_PRECISION = 2


def text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


class SourceAdapter(ABC):
    """Fetches and normalizes one external feed.

    Subclasses implement ``_fetch`` and may raise anything; ``fetch`` collapses
    every failure into a ``SourceResult`` with a reason tag so callers never
    see an exception from an adapter.
    """

    key: SourceKey
    # Sources whose result depends on RefreshParams are cached per parameter set.
    parameterized: bool = False

    def __init__(self, client: Optional[SourceHttpClient] = None, timeout: float = 10.0):
        self.client = client or SourceHttpClient(timeout=timeout)

    def cache_key(self, params: RefreshParams) -> Hashable:
        if self.parameterized:
            return (
                self.key,
                round(params.latitude, COORDINATE_PRECISION),
                round(params.longitude, COORDINATE_PRECISION),
            )
        return self.key

    @abstractmethod
    def _fetch(self, params: RefreshParams) -> Any:
        raise NotImplementedError

    def fetch(self, params: RefreshParams) -> SourceResult:
        try:
            return SourceResult.success(self.key, self._fetch(params))
        except SourceError as exc:
            reason, detail = exc.reason, str(exc)
        except (KeyError, TypeError, ValueError) as exc:
            reason, detail = SourceErrorReason.PARSE_ERROR, f"Malformed payload: {exc}"
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected adapter failure", extra={"source": self.key.value})
            reason, detail = SourceErrorReason.UNAVAILABLE, str(exc)
        logger.warning(
            "Source fetch failed", extra={"source": self.key.value, "reason": reason.value, "error": detail}
        )
        return SourceResult.failure(self.key, reason, detail)

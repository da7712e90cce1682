from typing import Dict

from sentinel_aggregator.config import AppConfig
from sentinel_aggregator.domain import SourceKey
from sentinel_aggregator.sources.base import SourceAdapter
from sentinel_aggregator.sources.news import NewsAdapter
from sentinel_aggregator.sources.social_alerts import SocialAlertsAdapter
from sentinel_aggregator.sources.threat_intel import ThreatIntelAdapter
from sentinel_aggregator.sources.weather import WeatherAdapter
from sentinel_aggregator.utils.secrets import SecretsProvider


def build_adapters(config: AppConfig, secrets: SecretsProvider) -> Dict[SourceKey, SourceAdapter]:
    return {
        SourceKey.NEWS: NewsAdapter(
            secrets.get_api_key(SourceKey.NEWS),
            query=config.news_query,
            timeout=config.timeout_for(SourceKey.NEWS),
        ),
        SourceKey.THREAT_INTEL: ThreatIntelAdapter(
            secrets.get_api_key(SourceKey.THREAT_INTEL),
            addresses=config.threat_intel_ips,
            max_age_days=config.threat_intel_max_age_days,
            timeout=config.timeout_for(SourceKey.THREAT_INTEL),
        ),
        SourceKey.WEATHER: WeatherAdapter(timeout=config.timeout_for(SourceKey.WEATHER)),
        SourceKey.SOCIAL_ALERTS: SocialAlertsAdapter(
            config.social_alert_feeds,
            timeout=config.timeout_for(SourceKey.SOCIAL_ALERTS),
        ),
    }

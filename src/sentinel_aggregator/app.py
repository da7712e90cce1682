import logging
import os
from datetime import datetime
from functools import partial
from typing import Mapping, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from flask import Flask, jsonify, request

from sentinel_aggregator import __version__
from sentinel_aggregator.config import AppConfig
from sentinel_aggregator.domain import RefreshParams, SourceKey
from sentinel_aggregator.services.aggregator import Aggregator
from sentinel_aggregator.services.cache import TtlCache
from sentinel_aggregator.services.dispatcher import Dispatcher
from sentinel_aggregator.services.history import history_listener, recent_runs
from sentinel_aggregator.services.scorer import assess, build_rules, load_rules
from sentinel_aggregator.sources.base import SourceAdapter
from sentinel_aggregator.sources.registry import build_adapters
from sentinel_aggregator.utils.db import init_db, session_scope
from sentinel_aggregator.utils.errors import NotReadyError
from sentinel_aggregator.utils.logging_config import configure_logging, ensure_request_id
from sentinel_aggregator.utils.secrets import EnvSecretsProvider

logger = logging.getLogger(__name__)

MAX_HISTORY_LIMIT = 200

SECTION_ROUTES = {
    "news": SourceKey.NEWS,
    "threats": SourceKey.THREAT_INTEL,
    "weather": SourceKey.WEATHER,
    "alerts": SourceKey.SOCIAL_ALERTS,
}


class InvalidParams(ValueError):
    pass


def parse_coordinate(name: str, limit: float) -> Optional[float]:
    value = request.args.get(name)
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except ValueError as exc:
        raise InvalidParams(f"{name} must be a number") from exc
    if not -limit <= number <= limit:
        raise InvalidParams(f"{name} must be between {-limit} and {limit}")
    return number


def parse_refresh_params(default: RefreshParams) -> Optional[RefreshParams]:
    lat = parse_coordinate("lat", 90.0)
    lon = parse_coordinate("lon", 180.0)
    if lat is None and lon is None:
        return None
    return RefreshParams(
        latitude=default.latitude if lat is None else lat,
        longitude=default.longitude if lon is None else lon,
    )


def create_app(
    config: Optional[AppConfig] = None, adapters: Optional[Mapping[SourceKey, SourceAdapter]] = None
) -> Flask:
    config = config or AppConfig.from_env()
    configure_logging(config.log_level)
    app = Flask(__name__)
    Session = init_db(config)
    if adapters is None:
        adapters = build_adapters(config, EnvSecretsProvider())
    cache = TtlCache(default_ttl=config.default_ttl, ttls={s: config.ttl_for(s) for s in SourceKey})
    aggregator = Aggregator(adapters, cache, config)
    if config.rules_path and os.path.exists(config.rules_path):
        rules = load_rules(config.rules_path)
    else:
        rules = build_rules(config)
    dispatcher = Dispatcher(
        aggregator,
        partial(assess, rules=rules),
        default_params=RefreshParams(config.default_latitude, config.default_longitude),
        listeners=[history_listener(Session)],
    )
    scheduler = BackgroundScheduler()
    app.extensions["sentinel"] = {"dispatcher": dispatcher, "cache": cache, "scheduler": scheduler}

    @app.before_request
    def before_request():
        ensure_request_id()

    @app.errorhandler(NotReadyError)
    def not_ready(exc: NotReadyError):
        return jsonify({"error": "not ready", "detail": str(exc)}), 503

    @app.errorhandler(InvalidParams)
    def invalid_params(exc: InvalidParams):
        return jsonify({"error": str(exc)}), 400

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "ready": dispatcher.ready})

    @app.route("/version")
    def version():
        return jsonify({"version": __version__})

    @app.route("/sources")
    def sources():
        return jsonify({"sources": config.sources_summary(), "refresh_interval": config.refresh_interval})

    @app.route("/metrics")
    def metrics():
        return jsonify(
            {
                "cache": dict(cache.stats),
                "aggregator": dict(aggregator.metrics),
                "dispatcher": dict(dispatcher.metrics),
            }
        )

    @app.route("/api/snapshot")
    def snapshot():
        params = parse_refresh_params(dispatcher.default_params)
        return jsonify(dispatcher.view(params).to_dict())

    @app.route("/api/refresh", methods=["POST"])
    def refresh_now():
        params = parse_refresh_params(dispatcher.default_params)
        return jsonify(dispatcher.refresh(params).to_dict())

    @app.route("/api/<section>")
    def section(section: str):
        source = SECTION_ROUTES.get(section)
        if source is None:
            return jsonify({"error": "not found"}), 404
        scored = dispatcher.current()
        value = scored.snapshot.section(source)
        data = value.to_dict() if source == SourceKey.WEATHER else [dict(r) for r in value]
        reason = scored.snapshot.error_reasons.get(source)
        return jsonify(
            {
                section: data,
                "fetched_at": scored.snapshot.fetched_at.isoformat(),
                "error": reason.value if reason else None,
                "stale": source in scored.snapshot.stale_sources,
            }
        )

    @app.route("/history")
    def history():
        limit = request.args.get("limit", 20, type=int)
        limit = min(max(limit, 1), MAX_HISTORY_LIMIT)
        with session_scope(Session) as session:
            return jsonify(recent_runs(session, limit))

    def scheduled_job():
        try:
            dispatcher.refresh(trigger="scheduled")
        except Exception as exc:  # noqa: BLE001
            logger.error("Scheduled refresh failed", extra={"trigger": "scheduled", "error": str(exc)})

    if config.scheduler_enabled:
        scheduler.add_job(
            scheduled_job,
            "interval",
            seconds=config.refresh_interval,
            id="snapshot_refresh",
            next_run_time=datetime.now(),
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()

    return app

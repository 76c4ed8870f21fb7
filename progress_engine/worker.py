"""
ARQ worker: domain event listeners.

Runs as a separate process from whatever produces the events. Each job
carries one serialized domain event; the worker rebuilds it, runs its
listeners and publishes whatever those listeners record.

Start:  arq progress_engine.worker.WorkerSettings
"""
from __future__ import annotations

import logging
from typing import Any

from arq.connections import RedisSettings

from progress_engine.config import Settings
from progress_engine.events.publishers import redis_settings_from_url

logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(name)s: %(message)s")
logger = logging.getLogger("progress.worker")

DEDUP_KEY_PREFIX = "progress:event:done:"


# ── Startup / shutdown hooks ────────────────────────────────────────────────


async def startup(ctx: dict[str, Any]) -> None:
    """Called once when the worker process starts."""
    from progress_engine.context import build_context
    from progress_engine.database import init_db
    from progress_engine.events.publishers import ArqEventPublisher
    from shared.database import ProcessedEventStore, get_redis_client

    settings = Settings()
    logging.getLogger().setLevel(settings.log_level)
    ctx["settings"] = settings

    init_db(settings.progress_database_url)
    ctx["engine"] = build_context(settings)
    ctx["publisher"] = await ArqEventPublisher.connect(
        settings.redis_url, settings.event_queue_name
    )
    ctx["dedup"] = ProcessedEventStore(
        get_redis_client(settings.redis_url),
        prefix=DEDUP_KEY_PREFIX,
        ttl_secs=settings.event_dedup_ttl_secs,
    )

    logger.info(
        "Worker started (env=%s, calculator=%s, prerequisites=%s)",
        settings.env_name,
        settings.progress_calculator,
        settings.default_prerequisite_mode,
    )


async def shutdown(ctx: dict[str, Any]) -> None:
    """Called once when the worker process stops."""
    publisher = ctx.get("publisher")
    if publisher is not None:
        await publisher.close()
    dedup = ctx.get("dedup")
    if dedup is not None:
        await dedup.close()
    logger.info("Worker shutting down")


# ── Event handling task ─────────────────────────────────────────────────────


async def handle_domain_event(ctx: dict[str, Any], payload: dict[str, Any]) -> str:
    """
    Run the listeners for one event.

    A handled event id is remembered in Redis for ``event_dedup_ttl_secs``
    so a redelivered event is skipped. The marker is written only after
    every listener committed, so a failed attempt is retried in full.
    """
    from progress_engine.database import get_session_factory
    from progress_engine.events.dispatcher import dispatch
    from shared.events.schemas import parse_event

    event = parse_event(payload)
    dedup = ctx["dedup"]

    if await dedup.seen(event.event_id):
        logger.info("Event %s (%s) already handled, skipping", event.event_name, event.event_id)
        return "duplicate"

    try:
        ran = await dispatch(event, get_session_factory(), ctx["publisher"], ctx["engine"])
    except Exception:
        logger.exception(
            "Listener failed for %s (%s), attempt %s",
            event.event_name, event.event_id, ctx.get("job_try"),
        )
        raise  # Let ARQ retry the job

    await dedup.mark(event.event_id)
    logger.info("Handled %s (%s) with %d listener(s)", event.event_name, event.event_id, ran)
    return "ok"


# ── ARQ worker configuration ──────────────────────────────────────────────


def _redis_settings() -> RedisSettings:
    return redis_settings_from_url(Settings().redis_url)


class WorkerSettings:
    """ARQ reads this class to configure the worker process."""
    functions = [handle_domain_event]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = _redis_settings()
    queue_name = Settings().event_queue_name
    max_tries = Settings().event_max_tries
    # Listener jobs are short database transactions
    max_jobs = 20
    job_timeout = 120
    keep_result = 3600

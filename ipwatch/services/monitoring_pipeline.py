import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ipwatch.core.config import settings
from ipwatch.database.db import SessionLocal
from ipwatch.schemas.monitoring import MonitoringConfig, RawCandidate
from ipwatch.services.alert_service import persist_candidate
from ipwatch.services.collectors import BaseCollector, default_collectors
from ipwatch.services.errors import DuplicateAlert

logger = logging.getLogger(__name__)


def get_monitoring_config() -> MonitoringConfig:
    return MonitoringConfig(
        keywords=list(settings.MONITORING_KEYWORDS),
        domains=list(settings.MONITORING_DOMAINS),
        frequency=settings.MONITORING_FREQUENCY,
        enabled=settings.MONITORING_ENABLED
    )


def _coerce_candidate(item: Any, collector: BaseCollector) -> Optional[RawCandidate]:
    if isinstance(item, RawCandidate):
        return item
    if isinstance(item, dict):
        try:
            return RawCandidate(**{"source": collector.source, **item})
        except ValidationError:
            logger.warning("invalid candidate dropped", extra={"collector": collector.name})
            return None
    logger.warning("unexpected candidate type dropped", extra={"collector": collector.name, "type": type(item).__name__})
    return None


async def _invoke(collector: BaseCollector, config: MonitoringConfig, timeout: float) -> List[Any]:
    return list(await asyncio.wait_for(collector.collect(config), timeout) or [])


async def collect_candidates(
    collectors: List[BaseCollector],
    config: MonitoringConfig,
    run_timeout: Optional[float] = None,
    collector_timeout: Optional[float] = None
) -> Tuple[List[RawCandidate], List[str]]:
    """
    Runs every collector concurrently and merges their output in collector order.
    A collector that raises, exceeds `collector_timeout` or is still running at
    `run_timeout` contributes nothing and is reported in the returned failure list.
    """
    if not collectors:
        return [], []
    run_timeout = float(run_timeout or settings.MONITORING_RUN_TIMEOUT_SECONDS)
    collector_timeout = float(collector_timeout or settings.MONITORING_COLLECTOR_TIMEOUT_SECONDS)

    tasks = {asyncio.ensure_future(_invoke(c, config, collector_timeout)): c for c in collectors}
    done, pending = await asyncio.wait(list(tasks.keys()), timeout=run_timeout)

    failed: List[str] = []
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)

    candidates: List[RawCandidate] = []
    for task, collector in tasks.items():
        if task in pending:
            failed.append(collector.name)
            logger.warning("collector timed out", extra={"collector": collector.name, "timeout": run_timeout})
            continue
        exc = task.exception()
        if exc is not None:
            failed.append(collector.name)
            logger.error(
                "collector failed",
                extra={"collector": collector.name, "error": str(exc) or type(exc).__name__},
                exc_info=exc
            )
            continue
        items = task.result()
        kept = [c for c in (_coerce_candidate(item, collector) for item in items) if c is not None]
        logger.info("collector finished", extra={"collector": collector.name, "candidates": len(kept)})
        candidates.extend(kept)
    return candidates, failed


def run_monitoring_once(
    db: Session,
    collectors: Optional[List[BaseCollector]] = None,
    config: Optional[MonitoringConfig] = None,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    One full pass: collect -> score -> dedup -> persist, sequential per candidate.
    Synchronous; must not be called from inside a running event loop.
    """
    config = config or get_monitoring_config()
    collectors = default_collectors() if collectors is None else collectors
    now = now or datetime.now(timezone.utc)

    candidates, failed = asyncio.run(collect_candidates(collectors, config))

    created = 0
    duplicates = 0
    for candidate in candidates:
        try:
            persist_candidate(db, candidate, config=config, now=now)
        except DuplicateAlert:
            duplicates += 1
            continue
        except SQLAlchemyError:
            db.rollback()
            logger.exception("alert persist failed", extra={"source_url": candidate.source_url})
            continue
        created += 1

    logger.info(
        "monitoring run completed",
        extra={
            "alerts_found": len(candidates),
            "alerts_created": created,
            "duplicates_skipped": duplicates,
            "failed_collectors": failed
        }
    )
    return {
        "alerts_found": len(candidates),
        "alerts": [c.model_dump() for c in candidates],
        "alerts_created": created,
        "duplicates_skipped": duplicates,
        "failed_collectors": failed
    }


def scheduled_monitoring_job() -> Optional[Dict[str, Any]]:
    config = get_monitoring_config()
    if not config.enabled:
        logger.info("scheduled monitoring skipped (disabled)")
        return None
    db = SessionLocal()
    try:
        return run_monitoring_once(db, config=config)
    finally:
        db.close()

import hashlib
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from ipwatch.core.config import settings
from ipwatch.models.monitoring_alert import MonitoringAlert
from ipwatch.schemas.monitoring import RawCandidate

logger = logging.getLogger(__name__)


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _bucket_time(ts: datetime, bucket_seconds: int) -> str:
    epoch = int(_ensure_utc(ts).timestamp())
    bucket = epoch - (epoch % max(1, bucket_seconds))
    return datetime.fromtimestamp(bucket, tz=timezone.utc).isoformat()


def normalize_url(url: Optional[str]) -> str:
    return str(url or "").strip()


def dedup_key(
    source_url: Optional[str],
    detected_at: datetime,
    bucket_seconds: Optional[int] = None
) -> Optional[str]:
    """
    Fingerprint of the URL and its window-sized time bucket. Detections that
    share a bucket are less than one window apart.
    """
    url = normalize_url(source_url)
    if not url:
        return None
    bucket_seconds = int(bucket_seconds or settings.MONITORING_DEDUP_WINDOW_SECONDS)
    payload = f"{url}|{_bucket_time(detected_at, bucket_seconds)}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class DedupGate:
    """
    Best-effort pre-filter: rejects a candidate whose source URL already has an
    alert detected within the window around now. The unique `dedup_key` column is
    the authoritative guard against concurrent inserts.
    """

    def __init__(self, db: Session, window_seconds: Optional[int] = None, now: Optional[datetime] = None):
        self.db = db
        self.window_seconds = int(window_seconds or settings.MONITORING_DEDUP_WINDOW_SECONDS)
        self.now = now

    def _now(self) -> datetime:
        return _ensure_utc(self.now) if self.now else datetime.now(timezone.utc)

    def find_recent(self, source_url: Optional[str]) -> Optional[MonitoringAlert]:
        url = normalize_url(source_url)
        if not url:
            return None
        now = self._now()
        window = timedelta(seconds=self.window_seconds)
        # Window is symmetric around now
        return (
            self.db.query(MonitoringAlert)
            .filter(
                MonitoringAlert.source_url == url,
                MonitoringAlert.detected_at > now - window,
                MonitoringAlert.detected_at < now + window
            )
            .order_by(MonitoringAlert.detected_at.desc())
            .first()
        )

    def admit(self, candidate: RawCandidate) -> bool:
        existing = self.find_recent(candidate.source_url)
        if existing:
            logger.info(
                "duplicate detection skipped",
                extra={"source_url": candidate.source_url, "existing_alert_id": existing.id}
            )
            return False
        return True

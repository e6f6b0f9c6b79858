import json
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import case, extract, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ipwatch.models.monitoring_alert import MonitoringAlert
from ipwatch.schemas.monitoring import MonitoringConfig, RawCandidate
from ipwatch.services.alert_state import ALERT_STATUSES, TERMINAL_STATUSES, apply_status
from ipwatch.services.collaborators import UserDirectory
from ipwatch.services.dedup import DedupGate, dedup_key, normalize_url
from ipwatch.services.errors import AlertNotFound, DuplicateAlert, InvalidAction, InvalidUser
from ipwatch.services.scoring import score_candidate

logger = logging.getLogger(__name__)

ACTION_TYPES = {"investigate", "create_incident", "send_cease_desist", "dmca_takedown", "abuse_report", "ignore"}
PRIORITY_RANK = {"low": 0, "medium": 1, "high": 2, "critical": 3}
MAX_PAGE_SIZE = 100


def _parse_json(value: Optional[str], fallback: Any) -> Any:
    if not value:
        return fallback
    try:
        return json.loads(value)
    except Exception:
        return fallback


def _ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    ts = _ensure_utc(value)
    return ts.isoformat() if ts else None


def serialize_alert(alert: MonitoringAlert) -> Dict[str, Any]:
    return {
        "id": alert.id,
        "title": alert.title,
        "description": alert.description,
        "source": alert.source,
        "source_url": alert.source_url,
        "source_domain": alert.source_domain,
        "detected_content": alert.detected_content,
        "matched_keywords": _parse_json(alert.matched_keywords_json, []),
        "confidence": alert.confidence,
        "protected_content": _parse_json(alert.protected_content_json, None),
        "metadata": _parse_json(alert.metadata_json, {}),
        "status": alert.status,
        "priority": alert.priority,
        "assigned_to": alert.assigned_to,
        "reviewed_by": alert.reviewed_by,
        "detected_at": _iso(alert.detected_at),
        "reviewed_at": _iso(alert.reviewed_at),
        "resolved_at": _iso(alert.resolved_at),
        "incident_id": alert.incident_id,
        "screenshots": _parse_json(alert.screenshots_json, []),
        "evidence_urls": _parse_json(alert.evidence_urls_json, []),
        "actions": _parse_json(alert.actions_json, []),
        "notes": _parse_json(alert.notes_json, []),
        "monitoring_config": _parse_json(alert.monitoring_config_json, None)
    }


def build_alert(
    candidate: RawCandidate,
    config: Optional[MonitoringConfig] = None,
    now: Optional[datetime] = None
) -> MonitoringAlert:
    detected_at = _ensure_utc(now) or datetime.now(timezone.utc)
    source_url = normalize_url(candidate.source_url) or None
    protected = candidate.protected_content.model_dump() if candidate.protected_content else None
    return MonitoringAlert(
        title=candidate.title,
        description=candidate.description,
        source=candidate.source,
        source_url=source_url,
        source_domain=candidate.source_domain,
        detected_content=candidate.detected_content,
        matched_keywords_json=json.dumps(candidate.matched_keywords),
        confidence=score_candidate(candidate),
        protected_content_json=json.dumps(protected) if protected else None,
        metadata_json=json.dumps(candidate.metadata or {}),
        status="new",
        priority=candidate.priority,
        detected_at=detected_at,
        screenshots_json=json.dumps(candidate.screenshots),
        evidence_urls_json=json.dumps(candidate.evidence_urls),
        actions_json=json.dumps([]),
        notes_json=json.dumps([]),
        monitoring_config_json=json.dumps(config.model_dump()) if config else None,
        dedup_key=dedup_key(source_url, detected_at)
    )


def persist_candidate(
    db: Session,
    candidate: RawCandidate,
    config: Optional[MonitoringConfig] = None,
    now: Optional[datetime] = None
) -> MonitoringAlert:
    """
    Scores, dedups and inserts one candidate as a `new` alert.
    Raises DuplicateAlert when either the gate or the unique dedup key rejects it.
    """
    detected_at = _ensure_utc(now) or datetime.now(timezone.utc)
    if not DedupGate(db, now=detected_at).admit(candidate):
        raise DuplicateAlert(f"Alert already recorded for {candidate.source_url}")

    alert = build_alert(candidate, config=config, now=detected_at)
    db.add(alert)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("duplicate rejected by dedup key", extra={"source_url": candidate.source_url})
        raise DuplicateAlert(f"Alert already recorded for {candidate.source_url}")
    db.refresh(alert)
    logger.info(
        "alert created",
        extra={"alert_id": alert.id, "source": alert.source, "confidence": alert.confidence}
    )
    return alert


def create_manual_alert(
    db: Session,
    candidate: RawCandidate,
    acting_user: Optional[str] = None,
    now: Optional[datetime] = None
) -> MonitoringAlert:
    alert = persist_candidate(db, candidate, now=now)
    if acting_user:
        add_note(db, alert.id, "Alert recorded manually", acting_user, now=now)
        db.refresh(alert)
    return alert


def get_alert(db: Session, alert_id: str) -> MonitoringAlert:
    alert = db.query(MonitoringAlert).filter(MonitoringAlert.id == alert_id).first()
    if not alert:
        raise AlertNotFound(f"Alert {alert_id} not found")
    return alert


def _commit(db: Session, alert: MonitoringAlert) -> MonitoringAlert:
    alert_id = alert.id
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("alert update failed", extra={"alert_id": alert_id})
        raise
    db.refresh(alert)
    return alert


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _apply_filters(query, filters: Dict[str, Any]):
    if filters.get("status"):
        query = query.filter(MonitoringAlert.status == filters["status"])
    if filters.get("source"):
        query = query.filter(MonitoringAlert.source == filters["source"])
    if filters.get("priority"):
        query = query.filter(MonitoringAlert.priority == filters["priority"])
    if filters.get("assigned_to"):
        query = query.filter(MonitoringAlert.assigned_to == filters["assigned_to"])
    date_from = _ensure_utc(filters.get("date_from"))
    if date_from:
        query = query.filter(MonitoringAlert.detected_at >= date_from)
    date_to = _ensure_utc(filters.get("date_to"))
    if date_to:
        query = query.filter(MonitoringAlert.detected_at <= date_to)
    search = str(filters.get("search") or "").strip()
    if search:
        pattern = f"%{_escape_like(search)}%"
        query = query.filter(
            or_(
                MonitoringAlert.title.ilike(pattern, escape="\\"),
                MonitoringAlert.description.ilike(pattern, escape="\\"),
                MonitoringAlert.detected_content.ilike(pattern, escape="\\"),
                MonitoringAlert.matched_keywords_json.ilike(pattern, escape="\\")
            )
        )
    return query


def _sort_column(sort_by: str):
    if sort_by == "priority":
        return case(PRIORITY_RANK, value=MonitoringAlert.priority, else_=-1)
    columns = {
        "detected_at": MonitoringAlert.detected_at,
        "confidence": MonitoringAlert.confidence,
        "status": MonitoringAlert.status,
        "title": MonitoringAlert.title
    }
    return columns.get(sort_by, MonitoringAlert.detected_at)


def list_alerts(
    db: Session,
    filters: Optional[Dict[str, Any]] = None,
    page: int = 1,
    page_size: int = 20,
    sort_by: str = "detected_at",
    sort_order: str = "desc"
) -> Dict[str, Any]:
    page = max(1, int(page or 1))
    page_size = max(1, min(MAX_PAGE_SIZE, int(page_size or 20)))
    query = _apply_filters(db.query(MonitoringAlert), filters or {})
    total = query.count()

    column = _sort_column(sort_by)
    ordering = column.asc() if str(sort_order).lower() == "asc" else column.desc()
    rows = (
        query.order_by(ordering, MonitoringAlert.id.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return {
        "alerts": [serialize_alert(r) for r in rows],
        "pagination": {
            "current": page,
            "pages": math.ceil(total / page_size) if total else 0,
            "total": total,
            "limit": page_size
        }
    }


def list_high_priority(db: Session) -> List[MonitoringAlert]:
    return (
        db.query(MonitoringAlert)
        .filter(
            MonitoringAlert.priority.in_(["high", "critical"]),
            MonitoringAlert.status.notin_(list(TERMINAL_STATUSES))
        )
        .order_by(MonitoringAlert.detected_at.desc())
        .all()
    )


def assign_alert(db: Session, alert_id: str, user_id: str, users: UserDirectory) -> MonitoringAlert:
    alert = get_alert(db, alert_id)
    user = users.get_user_by_id(user_id) if user_id else None
    if not user or not getattr(user, "is_active", False):
        logger.info("assignment rejected (unknown or inactive user)", extra={"alert_id": alert_id, "user_id": user_id})
        raise InvalidUser(f"User {user_id} is not an active user")
    alert.assigned_to = user.id
    db.add(alert)
    _commit(db, alert)
    logger.info("alert assigned", extra={"alert_id": alert.id, "user_id": user.id})
    return alert


def update_status(
    db: Session,
    alert_id: str,
    new_status: str,
    acting_user: Optional[str] = None,
    now: Optional[datetime] = None
) -> MonitoringAlert:
    alert = get_alert(db, alert_id)
    previous = alert.status
    apply_status(alert, new_status, acting_user, now=_ensure_utc(now))
    db.add(alert)
    _commit(db, alert)
    logger.info("alert status updated", extra={"alert_id": alert.id, "from_status": previous, "to_status": alert.status})
    return alert


def _append_entry(alert: MonitoringAlert, attribute: str, entry: Dict[str, Any]) -> None:
    entries = _parse_json(getattr(alert, attribute), [])
    entries.append(entry)
    setattr(alert, attribute, json.dumps(entries))


def add_note(
    db: Session,
    alert_id: str,
    content: str,
    author: Optional[str] = None,
    now: Optional[datetime] = None
) -> MonitoringAlert:
    alert = get_alert(db, alert_id)
    created_at = _ensure_utc(now) or datetime.now(timezone.utc)
    _append_entry(alert, "notes_json", {"content": content, "author": author, "created_at": created_at.isoformat()})
    db.add(alert)
    return _commit(db, alert)


def action_entry(
    action_type: str,
    description: Optional[str] = None,
    taken_by: Optional[str] = None,
    result: Optional[str] = None,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    if action_type not in ACTION_TYPES:
        raise InvalidAction(f"Invalid action type: {action_type!r}")
    taken_at = _ensure_utc(now) or datetime.now(timezone.utc)
    return {
        "action_type": action_type,
        "description": description,
        "taken_by": taken_by,
        "taken_at": taken_at.isoformat(),
        "result": result
    }


def add_action(
    db: Session,
    alert_id: str,
    action_type: str,
    description: Optional[str] = None,
    taken_by: Optional[str] = None,
    result: Optional[str] = None,
    now: Optional[datetime] = None
) -> MonitoringAlert:
    alert = get_alert(db, alert_id)
    entry = action_entry(action_type, description, taken_by, result, now)
    _append_entry(alert, "actions_json", entry)
    db.add(alert)
    _commit(db, alert)
    logger.info("alert action recorded", extra={"alert_id": alert.id, "action_type": action_type})
    return alert


def stats_overview(db: Session) -> Dict[str, Any]:
    overview = {"total": 0, **{s: 0 for s in ALERT_STATUSES}}
    for status, count in db.query(MonitoringAlert.status, func.count(MonitoringAlert.id)).group_by(MonitoringAlert.status).all():
        overview[status] = overview.get(status, 0) + count
        overview["total"] += count

    by_source = [
        {"source": source, "count": count}
        for source, count in (
            db.query(MonitoringAlert.source, func.count(MonitoringAlert.id))
            .group_by(MonitoringAlert.source)
            .all()
        )
    ]
    by_source.sort(key=lambda item: (-item["count"], item["source"]))

    # detected_at is stored as UTC
    year = extract("year", MonitoringAlert.detected_at)
    month = extract("month", MonitoringAlert.detected_at)
    rows = (
        db.query(year, month, func.count(MonitoringAlert.id))
        .filter(MonitoringAlert.detected_at.isnot(None))
        .group_by(year, month)
        .order_by(year.desc(), month.desc())
        .limit(12)
        .all()
    )
    monthly = [{"year": int(y), "month": int(m), "count": count} for y, m, count in rows]
    return {"overview": overview, "by_source": by_source, "monthly": monthly}

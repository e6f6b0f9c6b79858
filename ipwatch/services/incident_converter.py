import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ipwatch.models.monitoring_alert import MonitoringAlert
from ipwatch.services.alert_service import _parse_json, action_entry, get_alert
from ipwatch.services.alert_state import apply_status
from ipwatch.services.collaborators import IncidentStore
from ipwatch.services.errors import AlertAlreadyConverted, ConversionFailed

logger = logging.getLogger(__name__)

INCIDENT_TYPE = "copyright_infringement"
UNKNOWN_CONTENT = "Unknown protected content"


def _severity_for_priority(priority: Optional[str]) -> str:
    value = str(priority or "").strip().lower()
    if value in {"critical", "high"}:
        return value
    return "medium"


def build_incident_payload(alert: MonitoringAlert, acting_user: str) -> Dict[str, Any]:
    protected = _parse_json(alert.protected_content_json, None) or {}
    metadata = _parse_json(alert.metadata_json, {}) or {}
    description = alert.description or alert.detected_content or alert.title
    infringed_urls = []
    if alert.source_url:
        infringed_urls.append({"url": alert.source_url, "description": description, "verified": True})
    return {
        "title": alert.title,
        "description": description,
        "reporter_id": acting_user,
        "incident_type": INCIDENT_TYPE,
        "severity": _severity_for_priority(alert.priority),
        "infringed_content": protected.get("title") or UNKNOWN_CONTENT,
        "infringed_urls": infringed_urls,
        "infringer_info": {
            "name": metadata.get("platform") or "Unknown",
            "website": alert.source_domain
        },
        "monitoring_source": alert.source,
        "evidence": [
            {"type": "screenshot", "filename": s, "description": "Screenshot from monitoring alert"}
            for s in _parse_json(alert.screenshots_json, [])
        ]
    }


def convert_alert_to_incident(
    db: Session,
    alert_id: str,
    acting_user: str,
    incident_store: IncidentStore,
    now: Optional[datetime] = None
) -> Any:
    """
    Materializes an incident from the alert, links it and moves the alert to
    action_taken. Any failure rolls back and leaves the alert as it was.
    """
    alert = get_alert(db, alert_id)
    if alert.incident_id:
        raise AlertAlreadyConverted(f"Alert {alert_id} already linked to incident {alert.incident_id}")

    now = now or datetime.now(timezone.utc)
    payload = build_incident_payload(alert, acting_user)
    try:
        incident = incident_store.create_incident(payload)
        incident_id = str(getattr(incident, "id", None) or "")
        if not incident_id:
            raise ValueError("incident store returned no id")
        alert.incident_id = incident_id
        apply_status(alert, "action_taken", acting_user, now=now)
        actions = _parse_json(alert.actions_json, [])
        actions.append(action_entry(
            "create_incident",
            description="Incident created from monitoring alert",
            taken_by=acting_user,
            result=incident_id,
            now=now
        ))
        alert.actions_json = json.dumps(actions)
        db.add(alert)
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.exception("incident conversion failed", extra={"alert_id": alert_id})
        raise ConversionFailed(f"Incident creation failed for alert {alert_id}: {exc}") from exc

    db.refresh(alert)
    logger.info("incident created from alert", extra={"alert_id": alert.id, "incident_id": incident_id})
    return incident

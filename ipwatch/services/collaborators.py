import json
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ipwatch.models.incident import Incident
from ipwatch.models.user import User


class UserDirectory:
    """Looks up users for assignment and review."""

    def get_user_by_id(self, user_id: str) -> Optional[Any]:
        raise NotImplementedError()


class IncidentStore:
    """Creates incident records. Either the incident exists afterwards or it does not."""

    def create_incident(self, payload: Dict[str, Any]) -> Any:
        raise NotImplementedError()


class SqlUserDirectory(UserDirectory):
    def __init__(self, db: Session):
        self.db = db

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        if not user_id:
            return None
        return self.db.query(User).filter(User.id == str(user_id)).first()


class SqlIncidentStore(IncidentStore):
    """
    Adds the incident to the caller's session and flushes it; the caller's
    commit makes the incident and the alert linkage durable together.
    """

    def __init__(self, db: Session):
        self.db = db

    def create_incident(self, payload: Dict[str, Any]) -> Incident:
        for field in ("title", "description", "reporter_id", "incident_type", "infringed_content"):
            if not payload.get(field):
                raise ValueError(f"Incident field {field} is required")
        incident = Incident(
            title=payload["title"],
            description=payload["description"],
            reporter_id=payload["reporter_id"],
            incident_type=payload["incident_type"],
            severity=payload.get("severity") or "medium",
            status="reported",
            infringed_content=payload["infringed_content"],
            infringed_urls_json=json.dumps(payload.get("infringed_urls") or []),
            infringer_info_json=json.dumps(payload.get("infringer_info") or {}),
            monitoring_source=payload.get("monitoring_source"),
            evidence_json=json.dumps(payload.get("evidence") or [])
        )
        self.db.add(incident)
        self.db.flush()
        return incident

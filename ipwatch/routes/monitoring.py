from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session

from ipwatch.database.db import get_db
from ipwatch.schemas.monitoring import (
    ActionCreate,
    AlertListResponse,
    AlertResponse,
    AssignRequest,
    ManualAlertCreate,
    NoteCreate,
    ScanResponse,
    StatusUpdateRequest
)
from ipwatch.services import alert_service
from ipwatch.services.alert_service import _parse_json
from ipwatch.services.collaborators import IncidentStore, SqlIncidentStore, SqlUserDirectory, UserDirectory
from ipwatch.services.collectors import BaseCollector, default_collectors
from ipwatch.services.errors import (
    AlertAlreadyConverted,
    AlertNotFound,
    ConversionFailed,
    DuplicateAlert,
    InvalidAction,
    InvalidStatus,
    InvalidUser,
    ScanInProgress
)
from ipwatch.services.incident_converter import convert_alert_to_incident
from ipwatch.services.monitoring_pipeline import run_monitoring_once
from ipwatch.services.monitoring_scheduler import MonitoringScheduler, monitoring_scheduler

router = APIRouter()


def get_user_directory(db: Session = Depends(get_db)) -> UserDirectory:
    return SqlUserDirectory(db)


def get_incident_store(db: Session = Depends(get_db)) -> IncidentStore:
    return SqlIncidentStore(db)


def get_collectors() -> List[BaseCollector]:
    return default_collectors()


def get_scheduler() -> MonitoringScheduler:
    return monitoring_scheduler


def get_acting_user(x_user_id: Optional[str] = Header(default=None)) -> Optional[str]:
    return x_user_id


def require_acting_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header required")
    return x_user_id


def _load_alert(db: Session, alert_id: str):
    try:
        return alert_service.get_alert(db, alert_id)
    except AlertNotFound:
        raise HTTPException(status_code=404, detail="Alert not found")


def _map_incident(incident: Any) -> Dict[str, Any]:
    created_at = getattr(incident, "created_at", None)
    return {
        "id": incident.id,
        "created_at": created_at.isoformat() if created_at else None,
        "title": incident.title,
        "description": incident.description,
        "reporter_id": incident.reporter_id,
        "incident_type": incident.incident_type,
        "severity": incident.severity,
        "status": incident.status,
        "infringed_content": incident.infringed_content,
        "infringed_urls": _parse_json(incident.infringed_urls_json, []),
        "infringer_info": _parse_json(incident.infringer_info_json, {}),
        "monitoring_source": incident.monitoring_source,
        "evidence": _parse_json(incident.evidence_json, [])
    }


@router.get("/monitoring/alerts", response_model=AlertListResponse)
def list_alerts(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = None,
    source: Optional[str] = None,
    priority: Optional[str] = None,
    assigned_to: Optional[str] = None,
    search: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    sort_by: str = Query("detected_at"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db)
):
    filters = {
        "status": status,
        "source": source,
        "priority": priority,
        "assigned_to": assigned_to,
        "search": search,
        "date_from": date_from,
        "date_to": date_to
    }
    return alert_service.list_alerts(db, filters, page=page, page_size=limit, sort_by=sort_by, sort_order=sort_order)


@router.get("/monitoring/alerts/high-priority", response_model=List[AlertResponse])
def list_high_priority_alerts(db: Session = Depends(get_db)):
    return [alert_service.serialize_alert(a) for a in alert_service.list_high_priority(db)]


@router.get("/monitoring/alerts/{alert_id}", response_model=AlertResponse)
def get_alert(alert_id: str, db: Session = Depends(get_db)):
    return alert_service.serialize_alert(_load_alert(db, alert_id))


@router.post("/monitoring/alerts", response_model=AlertResponse, status_code=201)
def create_manual_alert(
    payload: ManualAlertCreate,
    acting_user: Optional[str] = Depends(get_acting_user),
    db: Session = Depends(get_db)
):
    try:
        alert = alert_service.create_manual_alert(db, payload, acting_user)
    except DuplicateAlert:
        raise HTTPException(status_code=409, detail="Alert already recorded for this URL within the dedup window")
    return alert_service.serialize_alert(alert)


@router.post("/monitoring/alerts/{alert_id}/assign", response_model=AlertResponse)
def assign_alert(
    alert_id: str,
    payload: AssignRequest,
    users: UserDirectory = Depends(get_user_directory),
    db: Session = Depends(get_db)
):
    _load_alert(db, alert_id)
    try:
        alert = alert_service.assign_alert(db, alert_id, payload.assigned_to, users)
    except InvalidUser:
        raise HTTPException(status_code=400, detail="Invalid user")
    return alert_service.serialize_alert(alert)


@router.put("/monitoring/alerts/{alert_id}/status", response_model=AlertResponse)
def update_alert_status(
    alert_id: str,
    payload: StatusUpdateRequest,
    acting_user: Optional[str] = Depends(get_acting_user),
    db: Session = Depends(get_db)
):
    _load_alert(db, alert_id)
    try:
        alert = alert_service.update_status(db, alert_id, payload.status, acting_user)
    except InvalidStatus as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return alert_service.serialize_alert(alert)


@router.post("/monitoring/alerts/{alert_id}/notes", response_model=AlertResponse)
def add_alert_note(
    alert_id: str,
    payload: NoteCreate,
    acting_user: Optional[str] = Depends(get_acting_user),
    db: Session = Depends(get_db)
):
    _load_alert(db, alert_id)
    alert = alert_service.add_note(db, alert_id, payload.content, acting_user)
    return alert_service.serialize_alert(alert)


@router.post("/monitoring/alerts/{alert_id}/actions", response_model=AlertResponse)
def add_alert_action(
    alert_id: str,
    payload: ActionCreate,
    acting_user: Optional[str] = Depends(get_acting_user),
    db: Session = Depends(get_db)
):
    _load_alert(db, alert_id)
    try:
        alert = alert_service.add_action(
            db, alert_id, payload.action_type, payload.description, acting_user, payload.result
        )
    except InvalidAction as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return alert_service.serialize_alert(alert)


@router.post("/monitoring/alerts/{alert_id}/create-incident", response_model=Dict[str, Any])
def create_incident_from_alert(
    alert_id: str,
    acting_user: str = Depends(require_acting_user),
    incident_store: IncidentStore = Depends(get_incident_store),
    db: Session = Depends(get_db)
):
    _load_alert(db, alert_id)
    try:
        incident = convert_alert_to_incident(db, alert_id, acting_user, incident_store)
    except AlertAlreadyConverted as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ConversionFailed:
        raise HTTPException(status_code=502, detail="Incident creation failed")
    return {
        "incident": _map_incident(incident),
        "alert": alert_service.serialize_alert(alert_service.get_alert(db, alert_id))
    }


@router.post("/monitoring/scan", response_model=ScanResponse)
def trigger_scan(
    collectors: List[BaseCollector] = Depends(get_collectors),
    scheduler: MonitoringScheduler = Depends(get_scheduler),
    db: Session = Depends(get_db)
):
    try:
        return scheduler.run_now(lambda: run_monitoring_once(db, collectors=collectors))
    except ScanInProgress:
        raise HTTPException(status_code=409, detail="A monitoring run is already in progress")


@router.get("/monitoring/stats/overview", response_model=Dict[str, Any])
def stats_overview(db: Session = Depends(get_db)):
    return alert_service.stats_overview(db)


@router.get("/monitoring/scheduler", response_model=Dict[str, Any])
def scheduler_status(scheduler: MonitoringScheduler = Depends(get_scheduler)):
    return scheduler.status()

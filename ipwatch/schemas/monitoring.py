from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


AlertSource = Literal["alert_feed", "brand_mentions", "active_scan", "manual", "other"]
ContentType = Literal["book", "video", "software", "website", "other"]
Priority = Literal["low", "medium", "high", "critical"]
Frequency = Literal["hourly", "daily", "weekly", "monthly"]


class ProtectedContent(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    isbn: Optional[str] = None
    publication_date: Optional[str] = None
    content_type: Optional[ContentType] = None


class MonitoringConfig(BaseModel):
    keywords: List[str] = Field(default_factory=list)
    domains: List[str] = Field(default_factory=list)
    frequency: Frequency = "daily"
    enabled: bool = True


class RawCandidate(BaseModel):
    """
    Unpersisted detection produced by a collector, before scoring and dedup.
    """
    title: str
    description: Optional[str] = None
    source: AlertSource
    source_url: Optional[str] = None
    source_domain: Optional[str] = None
    detected_content: str
    matched_keywords: List[str] = Field(default_factory=list)
    confidence: Optional[int] = None
    protected_content: Optional[ProtectedContent] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    priority: Priority = "medium"
    screenshots: List[str] = Field(default_factory=list)
    evidence_urls: List[str] = Field(default_factory=list)


class ManualAlertCreate(RawCandidate):
    source: AlertSource = "manual"


class AlertAction(BaseModel):
    action_type: str
    description: Optional[str] = None
    taken_by: Optional[str] = None
    taken_at: Optional[str] = None
    result: Optional[str] = None


class AlertNote(BaseModel):
    content: str
    author: Optional[str] = None
    created_at: Optional[str] = None


class AlertResponse(BaseModel):
    id: str
    title: str
    description: Optional[str]
    source: str
    source_url: Optional[str]
    source_domain: Optional[str]
    detected_content: str
    matched_keywords: List[str]
    confidence: int
    protected_content: Optional[ProtectedContent]
    metadata: Dict[str, Any]
    status: str
    priority: str
    assigned_to: Optional[str]
    reviewed_by: Optional[str]
    detected_at: Optional[str]
    reviewed_at: Optional[str]
    resolved_at: Optional[str]
    incident_id: Optional[str]
    screenshots: List[str]
    evidence_urls: List[str]
    actions: List[AlertAction]
    notes: List[AlertNote]
    monitoring_config: Optional[MonitoringConfig]


class Pagination(BaseModel):
    current: int
    pages: int
    total: int
    limit: int


class AlertListResponse(BaseModel):
    alerts: List[AlertResponse]
    pagination: Pagination


class AssignRequest(BaseModel):
    assigned_to: str


class StatusUpdateRequest(BaseModel):
    status: str


class NoteCreate(BaseModel):
    content: str = Field(min_length=1)


class ActionCreate(BaseModel):
    action_type: str
    description: Optional[str] = None
    result: Optional[str] = None


class ScanResponse(BaseModel):
    alerts_found: int
    alerts: List[RawCandidate]
    alerts_created: int
    duplicates_skipped: int
    failed_collectors: List[str]

import uuid

from sqlalchemy import Column, Integer, String, DateTime, Text, Index
from sqlalchemy.sql import func

from ipwatch.database.db import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class MonitoringAlert(Base):
    __tablename__ = "monitoring_alerts"
    __table_args__ = (
        Index("ix_monitoring_alerts_status_detected", "status", "detected_at"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)

    # Detection
    title = Column(String, nullable=False)
    description = Column(Text)
    source = Column(String, nullable=False, index=True)  # alert_feed, brand_mentions, active_scan, manual, other
    source_url = Column(String, index=True)
    source_domain = Column(String)
    detected_content = Column(Text, nullable=False)
    matched_keywords_json = Column(Text)
    confidence = Column(Integer, nullable=False, default=50)
    protected_content_json = Column(Text)
    metadata_json = Column(Text)

    # Lifecycle
    status = Column(String, nullable=False, default="new")
    priority = Column(String, nullable=False, default="medium")
    assigned_to = Column(String, index=True)
    reviewed_by = Column(String)
    detected_at = Column(DateTime(timezone=True), nullable=False, index=True)
    reviewed_at = Column(DateTime(timezone=True))
    resolved_at = Column(DateTime(timezone=True))

    # Linkage
    incident_id = Column(String(36))

    # Evidence and logs
    screenshots_json = Column(Text)
    evidence_urls_json = Column(Text)
    actions_json = Column(Text)
    notes_json = Column(Text)
    monitoring_config_json = Column(Text)

    # sha256(source_url | day bucket); NULL when the alert has no source URL
    dedup_key = Column(String(64), unique=True, index=True, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

import uuid

from sqlalchemy import Column, String, DateTime, Text
from sqlalchemy.sql import func

from ipwatch.database.db import Base


class Incident(Base):
    __tablename__ = "incidents"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    reporter_id = Column(String, nullable=False)
    incident_type = Column(String, nullable=False)
    severity = Column(String, nullable=False, default="medium")
    status = Column(String, nullable=False, default="reported")
    infringed_content = Column(Text, nullable=False)
    infringed_urls_json = Column(Text)
    infringer_info_json = Column(Text)
    monitoring_source = Column(String)
    evidence_json = Column(Text)

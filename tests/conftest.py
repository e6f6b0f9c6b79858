"""Shared fixtures for the monitoring pipeline tests."""

from __future__ import annotations

import asyncio
import os
from datetime import datetime, timezone
from typing import List

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("APP_ENV", "testing")

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ipwatch.database.db import Base, get_db
from ipwatch.models.incident import Incident  # noqa: F401  (table registration)
from ipwatch.models.monitoring_alert import MonitoringAlert
from ipwatch.models.user import User  # noqa: F401
from ipwatch.schemas.monitoring import MonitoringConfig, ProtectedContent, RawCandidate
from ipwatch.seed import seed_users
from ipwatch.services.alert_service import build_alert
from ipwatch.services.collectors import BaseCollector
from ipwatch.services.monitoring_scheduler import MonitoringScheduler

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
ACTIVE_USER = "user-analyst-1"
INACTIVE_USER = "user-former-1"


# ── Helpers ─────────────────────────────────────────────────────────────


def make_candidate(
    *,
    title: str = "Signing Naturally Unit 5 on OER site",
    source: str = "active_scan",
    source_url: str = "https://oer.example.org/signing-naturally-5",
    source_domain: str = "oer.example.org",
    detected_content: str = "Signing Naturally Unit 5",
    matched_keywords: List[str] | None = None,
    confidence: int | None = None,
    protected_title: str | None = "Signing Naturally Unit 5",
    priority: str = "medium",
    screenshots: List[str] | None = None,
    metadata: dict | None = None,
) -> RawCandidate:
    return RawCandidate(
        title=title,
        description="Potential unauthorized copy",
        source=source,
        source_url=source_url,
        source_domain=source_domain,
        detected_content=detected_content,
        matched_keywords=["Signing Naturally"] if matched_keywords is None else matched_keywords,
        confidence=confidence,
        protected_content=ProtectedContent(title=protected_title, content_type="book") if protected_title else None,
        priority=priority,
        screenshots=screenshots or [],
        metadata={"platform": "OER Commons"} if metadata is None else metadata,
    )


def make_config(**overrides) -> MonitoringConfig:
    data = {
        "keywords": ["Signing Naturally", "DawnSignPress"],
        "domains": ["oer.example.org"],
        "frequency": "daily",
        "enabled": True,
    }
    data.update(overrides)
    return MonitoringConfig(**data)


def make_alert(db, *, detected_at: datetime = NOW, status: str = "new", **candidate_kwargs) -> MonitoringAlert:
    alert = build_alert(make_candidate(**candidate_kwargs), config=make_config(), now=detected_at)
    alert.status = status
    db.add(alert)
    db.commit()
    db.refresh(alert)
    return alert


class StaticCollector(BaseCollector):
    def __init__(self, name: str, candidates: List[RawCandidate], source: str = "other"):
        self.name = name
        self.source = source
        self.candidates = candidates

    async def collect(self, config):
        return list(self.candidates)


class FailingCollector(BaseCollector):
    def __init__(self, name: str = "failing", exc: Exception | None = None):
        self.name = name
        self.exc = exc or httpx.ConnectTimeout("timed out")

    async def collect(self, config):
        raise self.exc


class SlowCollector(BaseCollector):
    def __init__(self, name: str = "slow", delay: float = 5.0):
        self.name = name
        self.delay = delay

    async def collect(self, config):
        await asyncio.sleep(self.delay)
        return []


# ── Fixtures ────────────────────────────────────────────────────────────


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def users(db_session):
    seed_users(db_session)
    return db_session


@pytest.fixture
def scan_collectors():
    return [
        StaticCollector("feed", [make_candidate(source="alert_feed", source_url="https://a.example/1", confidence=85)]),
        StaticCollector("scan", [make_candidate(source_url="https://b.example/1")]),
    ]


@pytest.fixture
def test_scheduler():
    return MonitoringScheduler(job=lambda: None, interval_seconds=3600)


@pytest.fixture
def client(db_session, scan_collectors, test_scheduler):
    from ipwatch.main import app
    from ipwatch.routes import monitoring

    def _override_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[monitoring.get_collectors] = lambda: scan_collectors
    app.dependency_overrides[monitoring.get_scheduler] = lambda: test_scheduler
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()

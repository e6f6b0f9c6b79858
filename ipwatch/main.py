from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ipwatch.core.config import settings
from ipwatch.core.logging import setup_logging
from ipwatch.database.db import engine, Base
from ipwatch.models.incident import Incident
from ipwatch.models.monitoring_alert import MonitoringAlert
from ipwatch.models.user import User
from ipwatch.routes import health, monitoring
from ipwatch.services.monitoring_scheduler import start_scheduler, stop_scheduler


setup_logging()

app = FastAPI(
    title=settings.APP_NAME,
    description="Infringement monitoring and alert triage backend",
    version="1.0.0"
)

Base.metadata.create_all(bind=engine)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(monitoring.router, prefix="/api/v1", tags=["monitoring"])


@app.on_event("startup")
def start_background_tasks():
    start_scheduler()


@app.on_event("shutdown")
def stop_background_tasks():
    stop_scheduler()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("ipwatch.main:app", host="0.0.0.0", port=settings.PORT, reload=settings.DEBUG)

"""Main FastAPI application for the alert escalation caller."""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Form, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import uvicorn

from alertcall.config import settings
from alertcall.connectors.twilio_voice import (
    build_call_instructions,
    build_gather_reply,
    build_not_found_reply,
)
from alertcall.escalation.messages import build_spoken_message
from alertcall.exceptions import AttemptNotFound, PersistenceError, WebhookMalformed
from alertcall.models.database import close_database, create_tables
from alertcall.services.container import ServiceContainer, build_container
from alertcall.utils.logging import get_logger, log_webhook_event, setup_logging

# Setup logging
setup_logging()
logger = get_logger(__name__)

TWIML_MEDIA_TYPE = "text/xml"


class AlertSubmission(BaseModel):
    """Payload of the alert intake endpoint."""

    source_message_id: str = Field(min_length=1, max_length=500)
    sender: str = Field(min_length=1, max_length=500)
    subject: str = Field(default="", max_length=500)
    body: Optional[str] = None
    received_at: Optional[datetime] = None


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=503, detail="Services not initialized")
    return container


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """Build the application.

    Without a container the services are built from settings, which
    requires call provider credentials.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        logger.info("Starting alert escalation caller")

        owned = container is None
        try:
            if owned:
                settings.require_call_provider()
                services = build_container()
            else:
                services = container

            if services.uses_database:
                await create_tables()
                logger.info("Database tables created/verified")

            if settings.ENABLE_ESCALATION:
                await services.scheduler.start()

            app.state.container = services
            logger.info("Alert escalation caller started")

        except Exception as e:
            logger.error("Failed to start application", error=str(e))
            raise

        yield

        logger.info("Shutting down alert escalation caller")
        try:
            await services.scheduler.stop()
            if owned and services.uses_database:
                await close_database()
            logger.info("Alert escalation caller shutdown completed")

        except Exception as e:
            logger.error("Error during shutdown", error=str(e))

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.VERSION,
        description="Calls a prioritized contact chain until someone confirms an alert",
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None
    )

    # Health check endpoints
    @app.get("/health")
    async def health_check():
        """Basic health check endpoint."""
        return {
            "status": "healthy",
            "timestamp": _utcnow_iso(),
            "version": settings.VERSION,
            "environment": settings.ENVIRONMENT
        }

    @app.get("/health/detailed")
    async def detailed_health_check(services: ServiceContainer = Depends(get_container)):
        """Detailed health check with component status."""
        health_status = await services.monitoring.get_system_health()

        if health_status["overall_status"] == "critical":
            return JSONResponse(status_code=503, content=health_status)
        return health_status

    # Provider webhooks
    @app.post("/api/calls/twiml/{attempt_id}")
    async def call_instructions(
        attempt_id: uuid.UUID,
        services: ServiceContainer = Depends(get_container),
    ):
        """Voice script for an answered call."""
        attempt = await services.store.get_attempt(attempt_id)
        if attempt is None:
            logger.warning("Instructions requested for unknown attempt", attempt_id=str(attempt_id))
            return Response(content=build_not_found_reply(), media_type=TWIML_MEDIA_TYPE)

        message = attempt.script
        if not message:
            alert = await services.alerts.get_alert(attempt.alert_id)
            if alert is None:
                return Response(content=build_not_found_reply(), media_type=TWIML_MEDIA_TYPE)
            message = build_spoken_message(alert)

        twiml = build_call_instructions(message, services.dispatcher.gather_url(attempt_id))
        return Response(content=twiml, media_type=TWIML_MEDIA_TYPE)

    @app.post("/api/calls/gather/{attempt_id}")
    async def call_gather(
        attempt_id: uuid.UUID,
        Digits: Optional[str] = Form(default=None),
        services: ServiceContainer = Depends(get_container),
    ):
        """Keypress result for an answered call."""
        try:
            confirmed = await services.tracker.on_gather_event(attempt_id, Digits)
        except AttemptNotFound:
            logger.warning("Keypress for unknown attempt", attempt_id=str(attempt_id))
            return Response(content=build_not_found_reply(), media_type=TWIML_MEDIA_TYPE)

        log_webhook_event(logger, "gather", str(attempt_id), confirmed)
        return Response(content=build_gather_reply(confirmed), media_type=TWIML_MEDIA_TYPE)

    @app.post("/api/calls/status/{attempt_id}")
    async def call_status(
        attempt_id: uuid.UUID,
        CallStatus: Optional[str] = Form(default=None),
        CallDuration: Optional[str] = Form(default=None),
        services: ServiceContainer = Depends(get_container),
    ):
        """Provider status callback."""
        try:
            changed = await services.tracker.on_status_event(attempt_id, CallStatus, CallDuration)
        except AttemptNotFound:
            raise HTTPException(status_code=404, detail="Unknown call attempt")
        except WebhookMalformed as e:
            raise HTTPException(status_code=400, detail=str(e))
        except PersistenceError as e:
            raise HTTPException(status_code=503, detail=str(e))

        log_webhook_event(logger, "status", str(attempt_id), changed, provider_status=CallStatus)
        return {"received": True, "changed": changed}

    # Alert endpoints
    @app.post("/api/v1/alerts", status_code=status.HTTP_202_ACCEPTED)
    async def submit_alert(
        submission: AlertSubmission,
        services: ServiceContainer = Depends(get_container),
    ):
        """Store an alert and start escalating it."""
        alert, created = await services.service.submit_alert(
            source_message_id=submission.source_message_id,
            sender=submission.sender,
            subject=submission.subject,
            body=submission.body,
            received_at=submission.received_at,
        )

        escalation_started = False
        if created and settings.ENABLE_ESCALATION:
            escalation_started = services.scheduler.launch(alert)

        return {
            "alert_id": str(alert.id),
            "created": created,
            "escalation_started": escalation_started,
            "timestamp": _utcnow_iso()
        }

    @app.get("/api/v1/alerts/{alert_id}/calls")
    async def get_alert_calls(
        alert_id: uuid.UUID,
        services: ServiceContainer = Depends(get_container),
    ):
        """Alert result and its call attempts."""
        alert = await services.alerts.get_alert(alert_id)
        if alert is None:
            raise HTTPException(status_code=404, detail="Alert not found")

        attempts = await services.store.list_attempts(alert_id)
        return {
            "alert": alert.to_dict(),
            "calls": [attempt.to_dict() for attempt in attempts]
        }

    # Escalation endpoints
    @app.get("/api/v1/escalation/status")
    async def get_escalation_status(services: ServiceContainer = Depends(get_container)):
        """Get escalation scheduler status."""
        job_status = services.scheduler.get_job_status()
        job_status["contacts"] = services.contacts.get_contacts_summary()
        return job_status

    # Error handlers
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions with structured logging."""
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=request.url.path
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.detail,
                "timestamp": _utcnow_iso(),
                "path": str(request.url.path)
            }
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle general exceptions with structured logging."""
        logger.error(
            "Unhandled exception",
            error=str(exc),
            path=request.url.path,
            exc_info=True
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "timestamp": _utcnow_iso(),
                "path": str(request.url.path)
            }
        )

    return app


# Run application
if __name__ == "__main__":
    uvicorn.run(
        "alertcall.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info"
    )

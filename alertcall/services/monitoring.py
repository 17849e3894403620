"""Monitoring and health check service."""

import time
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import and_, func, select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from alertcall.config import settings
from alertcall.connectors.base import CallProvider
from alertcall.models.alert import Alert
from alertcall.models.call import CallAttempt, CallStatus
from alertcall.utils.logging import get_logger

if TYPE_CHECKING:
    from alertcall.escalation.scheduler import EscalationScheduler

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MonitoringService:
    """Service for system monitoring and health checks."""

    def __init__(
        self,
        provider: CallProvider,
        scheduler: Optional["EscalationScheduler"] = None,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        self.provider = provider
        self.scheduler = scheduler
        # Without a session maker the service runs on in-memory storage
        self.session_maker = session_maker

    async def get_system_health(self) -> Dict[str, Any]:
        """Get comprehensive system health status."""
        health_status = {
            "overall_status": "healthy",
            "timestamp": _utcnow().isoformat(),
            "components": {},
            "metrics": {},
            "warnings": []
        }

        if self.session_maker is not None:
            health_status["components"]["database"] = await self._check_database_health()
            health_status["metrics"]["escalation"] = await self._get_escalation_metrics()

        health_status["components"]["call_provider"] = await self._check_provider_health()
        health_status["components"]["scheduler"] = self._check_scheduler_health()

        component_statuses = [comp["status"] for comp in health_status["components"].values()]
        if "critical" in component_statuses:
            health_status["overall_status"] = "critical"
        elif "degraded" in component_statuses:
            health_status["overall_status"] = "degraded"

        health_status["warnings"] = self._generate_warnings(health_status)
        return health_status

    async def _check_database_health(self) -> Dict[str, Any]:
        """Check database connectivity."""
        try:
            start_time = time.monotonic()

            async with self.session_maker() as session:
                await session.execute(text("SELECT 1"))
                result = await session.execute(select(func.count(Alert.id)))
                alert_count = result.scalar()

            return {
                "status": "healthy",
                "response_time_ms": round((time.monotonic() - start_time) * 1000, 2),
                "total_alerts": alert_count,
                "last_check": _utcnow().isoformat()
            }

        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return {
                "status": "critical",
                "error": str(e),
                "last_check": _utcnow().isoformat()
            }

    async def _check_provider_health(self) -> Dict[str, Any]:
        """Check call provider connectivity."""
        try:
            start_time = time.monotonic()
            is_healthy = await self.provider.check_connection()
            response_time = round((time.monotonic() - start_time) * 1000, 2)

            if is_healthy:
                return {
                    "status": "healthy",
                    "response_time_ms": response_time,
                    "last_check": _utcnow().isoformat()
                }
            return {
                "status": "critical",
                "error": "Connection test failed",
                "response_time_ms": response_time,
                "last_check": _utcnow().isoformat()
            }

        except Exception as e:
            logger.error("Call provider health check failed", error=str(e))
            return {
                "status": "critical",
                "error": str(e),
                "last_check": _utcnow().isoformat()
            }

    def _check_scheduler_health(self) -> Dict[str, Any]:
        """Report whether new alerts are being picked up."""
        if self.scheduler is None or not settings.ENABLE_ESCALATION:
            return {"status": "healthy", "enabled": False}

        job_status = self.scheduler.get_job_status()
        return {
            "status": "healthy" if job_status["status"] == "running" else "degraded",
            "enabled": True,
            "in_flight_alerts": len(job_status["in_flight_alerts"]),
            "error": None if job_status["status"] == "running" else "Scheduler not running"
        }

    async def _get_escalation_metrics(self) -> Dict[str, Any]:
        """Get escalation outcome metrics."""
        try:
            async with self.session_maker() as session:
                last_24h = _utcnow() - timedelta(hours=24)
                last_hour = _utcnow() - timedelta(hours=1)

                result = await session.execute(
                    select(func.count(Alert.id))
                    .where(and_(
                        Alert.processed.is_(True),
                        Alert.processing_completed_at >= last_24h
                    ))
                )
                processed_last_24h = result.scalar() or 0

                result = await session.execute(
                    select(func.count(Alert.id))
                    .where(and_(
                        Alert.processed.is_(True),
                        Alert.confirmed.is_(True),
                        Alert.processing_completed_at >= last_24h
                    ))
                )
                confirmed_last_24h = result.scalar() or 0

                result = await session.execute(
                    select(func.count(Alert.id)).where(Alert.processed.is_(False))
                )
                pending_alerts = result.scalar() or 0

                result = await session.execute(
                    select(func.count(CallAttempt.id))
                    .where(CallAttempt.created_at >= last_hour)
                )
                calls_last_hour = result.scalar() or 0

                result = await session.execute(
                    select(func.count(CallAttempt.id))
                    .where(and_(
                        CallAttempt.status == CallStatus.FAILED,
                        CallAttempt.created_at >= last_hour
                    ))
                )
                failed_calls_last_hour = result.scalar() or 0

            return {
                "processed_last_24h": processed_last_24h,
                "confirmed_last_24h": confirmed_last_24h,
                "unconfirmed_last_24h": processed_last_24h - confirmed_last_24h,
                "pending_alerts": pending_alerts,
                "calls_last_hour": calls_last_hour,
                "failed_calls_last_hour": failed_calls_last_hour,
                "confirmation_rate_last_24h": round(
                    (confirmed_last_24h / processed_last_24h * 100)
                    if processed_last_24h > 0 else 100, 2
                )
            }

        except Exception as e:
            logger.error("Error getting escalation metrics", error=str(e))
            return {"error": str(e)}

    def _generate_warnings(self, health_status: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Generate warnings based on health status."""
        warnings = []

        for component_name, component_health in health_status["components"].items():
            if component_health["status"] == "critical":
                warnings.append({
                    "level": "critical",
                    "component": component_name,
                    "message": f"{component_name.replace('_', ' ').title()} is down",
                    "details": component_health.get("error") or "Unknown error"
                })
            elif component_health["status"] == "degraded":
                warnings.append({
                    "level": "warning",
                    "component": component_name,
                    "message": f"{component_name.replace('_', ' ').title()} is degraded",
                    "details": component_health.get("error") or "Performance issues"
                })

        escalation = health_status.get("metrics", {}).get("escalation", {})

        unconfirmed = escalation.get("unconfirmed_last_24h", 0)
        if unconfirmed > 0:
            warnings.append({
                "level": "critical",
                "component": "escalation",
                "message": f"{unconfirmed} alerts were not confirmed in the last 24h",
                "details": "Every contact was called without a confirmation"
            })

        failed_calls = escalation.get("failed_calls_last_hour", 0)
        if failed_calls > 0:
            calls = escalation.get("calls_last_hour", 0)
            warnings.append({
                "level": "warning" if failed_calls < calls else "critical",
                "component": "call_provider",
                "message": f"{failed_calls} of {calls} calls failed in the last hour",
                "details": "The call provider refused to place some calls"
            })

        return warnings

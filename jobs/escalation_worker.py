"""One-shot escalation worker job.

Escalates every stored alert nobody has picked up yet, then exits. The
webhooks are served by the API process; this worker sees confirmations
by polling the database.
"""

import asyncio
import sys
from pathlib import Path

# Add the project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from alertcall.config import settings
from alertcall.exceptions import ConfigurationError
from alertcall.models.database import close_database, create_tables
from alertcall.services.container import build_container
from alertcall.utils.logging import setup_logging, get_logger, CorrelationContextManager

# Setup logging
setup_logging()
logger = get_logger(__name__)


async def main() -> int:
    """Main escalation worker entry point."""
    try:
        with CorrelationContextManager() as correlation_id:
            logger.info("Starting escalation worker job", correlation_id=correlation_id)

            settings.require_call_provider()
            await create_tables()
            services = build_container()

            alerts = await services.source.fetch_new_alerts()
            results = await asyncio.gather(
                *(services.service.handle_alert(alert) for alert in alerts),
                return_exceptions=True
            )

            confirmed = sum(1 for r in results if not isinstance(r, BaseException) and r and r.confirmed)
            failed = [r for r in results if isinstance(r, BaseException)]
            for error in failed:
                logger.error("Escalation failed", error=str(error))

            logger.info(
                "Escalation worker job completed",
                correlation_id=correlation_id,
                alert_count=len(alerts),
                confirmed_count=confirmed,
                error_count=len(failed)
            )

            return 1 if failed else 0

    except ConfigurationError as e:
        logger.error("Escalation worker misconfigured", error=str(e))
        return 2
    except Exception as e:
        logger.error("Escalation worker job failed", error=str(e), exc_info=True)
        return 1
    finally:
        await close_database()


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)

"""Places one call to one contact and records it."""

from typing import Optional

from alertcall.config import settings
from alertcall.connectors.base import CallProvider
from alertcall.exceptions import CallProviderError, DispatchError, PersistenceError
from alertcall.models.alert import Alert
from alertcall.models.call import CallAttempt, CallStatus
from alertcall.models.contact import Contact
from alertcall.storage.base import CallRecordStore
from alertcall.utils.logging import get_logger
from alertcall.utils.validation import mask_phone_number

logger = get_logger(__name__)


class CallDispatcher:
    """Creates the attempt record, then asks the provider to dial.

    The record exists before the call does, so provider callbacks always
    find an attempt to update.
    """

    def __init__(
        self,
        provider: CallProvider,
        store: CallRecordStore,
        base_url: Optional[str] = None,
        ring_timeout: Optional[int] = None,
    ):
        self.provider = provider
        self.store = store
        self.base_url = (base_url if base_url is not None else settings.PUBLIC_BASE_URL).rstrip("/")
        self.ring_timeout = ring_timeout if ring_timeout is not None else settings.CALL_TIMEOUT_SECONDS

    def instructions_url(self, attempt_id) -> str:
        return f"{self.base_url}/api/calls/twiml/{attempt_id}"

    def gather_url(self, attempt_id) -> str:
        return f"{self.base_url}/api/calls/gather/{attempt_id}"

    def status_callback_url(self, attempt_id) -> str:
        return f"{self.base_url}/api/calls/status/{attempt_id}"

    async def dispatch(
        self,
        alert: Alert,
        contact: Contact,
        loop_number: int,
        attempt_number: int,
        message: Optional[str] = None,
    ) -> CallAttempt:
        """Place a call and return the recorded attempt.

        Raises:
            PersistenceError: the attempt could not be recorded.
            DispatchError: the provider refused the call. The attempt is
                stored as failed and attached to the error.
        """
        try:
            attempt = await self.store.create_attempt(
                alert_id=alert.id,
                contact_id=contact.id,
                contact_name=contact.contact_name,
                phone=contact.phone_number,
                loop_number=loop_number,
                attempt_number=attempt_number,
                script=message,
            )
        except PersistenceError:
            raise
        except Exception as e:
            logger.error(
                "Could not record call attempt",
                alert_id=str(alert.id),
                loop_number=loop_number,
                attempt_number=attempt_number,
                error=str(e)
            )
            raise PersistenceError(f"Could not record call attempt: {e}") from e

        try:
            provider_call_id = await self.provider.place_call(
                to=contact.phone_number,
                instructions_url=self.instructions_url(attempt.id),
                status_callback_url=self.status_callback_url(attempt.id),
                timeout_seconds=self.ring_timeout,
            )
        except CallProviderError as e:
            failed = await self._record_failure(attempt, str(e))
            raise DispatchError(str(e), attempt=failed) from e

        try:
            await self.store.mark_dispatched(attempt.id, provider_call_id)
        except Exception as e:
            # The call is live but cannot be tracked, so do not leave it ringing
            await self.provider.hangup_call(provider_call_id, ringing=True)
            failed = await self._record_failure(attempt, f"Could not record provider call id: {e}")
            raise PersistenceError(f"Could not record provider call id: {e}", attempt=failed) from e

        attempt.provider_call_id = provider_call_id
        if attempt.status == CallStatus.INITIATED:
            attempt.status = CallStatus.QUEUED

        logger.info(
            "Call dispatched",
            alert_id=str(alert.id),
            attempt_id=str(attempt.id),
            contact_name=contact.contact_name,
            phone=mask_phone_number(contact.phone_number),
            call_sid=provider_call_id,
            loop_number=loop_number,
            attempt_number=attempt_number
        )
        return attempt

    async def _record_failure(self, attempt: CallAttempt, error_message: str) -> CallAttempt:
        attempt.status = CallStatus.FAILED
        attempt.error_message = error_message
        try:
            await self.store.mark_failed(attempt.id, error_message)
        except Exception as e:
            logger.error(
                "Could not mark call attempt failed",
                attempt_id=str(attempt.id),
                error=str(e)
            )
        return attempt

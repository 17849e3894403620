"""Twilio voice connector for placing escalation calls."""

import asyncio
import time
from typing import Optional

import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.rest import Client
from twilio.twiml.voice_response import VoiceResponse

from alertcall.config import settings
from alertcall.connectors.base import CallProvider
from alertcall.exceptions import CallProviderError
from alertcall.utils.logging import get_logger, log_external_api_call
from alertcall.utils.validation import mask_phone_number, validate_phone

logger = get_logger(__name__)

# Transport failures are worth another try; provider rejections are not
_TRANSIENT_ERRORS = (requests.exceptions.ConnectionError, requests.exceptions.Timeout)

STATUS_CALLBACK_EVENTS = ["initiated", "ringing", "answered", "completed"]


class TwilioVoiceConnector(CallProvider):
    """Twilio connector for outbound voice calls."""

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        client: Optional[Client] = None,
    ):
        self.account_sid = account_sid or settings.TWILIO_ACCOUNT_SID
        self.auth_token = auth_token or settings.TWILIO_AUTH_TOKEN
        self.from_number = from_number or settings.TWILIO_FROM_NUMBER

        if client is not None:
            self.client = client
        elif self.account_sid and self.auth_token:
            self.client = Client(self.account_sid, self.auth_token)
        else:
            self.client = None
            logger.warning("Twilio credentials not configured")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(_TRANSIENT_ERRORS),
        reraise=True,
    )
    async def _create_call(self, **params) -> str:
        call = await asyncio.to_thread(self.client.calls.create, **params)
        return call.sid

    async def place_call(
        self,
        to: str,
        instructions_url: str,
        status_callback_url: str,
        timeout_seconds: int,
        from_: Optional[str] = None,
    ) -> str:
        """Place an outbound call that fetches its script from ``instructions_url``."""
        if not self.client:
            raise CallProviderError("Twilio client not initialized")

        if not validate_phone(to):
            raise CallProviderError(f"Invalid phone number format: {mask_phone_number(to)}")

        from_num = from_ or self.from_number
        start_time = time.monotonic()

        try:
            call_sid = await self._create_call(
                to=to,
                from_=from_num,
                url=instructions_url,
                method="POST",
                timeout=timeout_seconds,
                status_callback=status_callback_url,
                status_callback_method="POST",
                status_callback_event=STATUS_CALLBACK_EVENTS,
            )
        except TwilioRestException as e:
            log_external_api_call(
                logger, "twilio", "calls.create", False,
                (time.monotonic() - start_time) * 1000,
                to_number=mask_phone_number(to),
                error_code=e.code,
                error=e.msg,
            )
            raise CallProviderError(f"Twilio rejected call: {e.msg}", code=e.code) from e
        except TwilioException as e:
            log_external_api_call(
                logger, "twilio", "calls.create", False,
                (time.monotonic() - start_time) * 1000,
                to_number=mask_phone_number(to),
                error=str(e),
            )
            raise CallProviderError(f"Twilio error: {e}") from e
        except _TRANSIENT_ERRORS as e:
            log_external_api_call(
                logger, "twilio", "calls.create", False,
                (time.monotonic() - start_time) * 1000,
                to_number=mask_phone_number(to),
                error=str(e),
            )
            raise CallProviderError(f"Twilio unreachable: {e}") from e

        log_external_api_call(
            logger, "twilio", "calls.create", True,
            (time.monotonic() - start_time) * 1000,
            to_number=mask_phone_number(to),
            call_sid=call_sid,
        )
        return call_sid

    async def hangup_call(self, provider_call_id: str, ringing: bool = False) -> bool:
        """Hang up a live call.

        Twilio cancels queued or ringing calls with ``canceled`` and ends
        answered calls with ``completed``.
        """
        if not self.client:
            return False

        target_status = "canceled" if ringing else "completed"
        try:
            await asyncio.to_thread(
                self.client.calls(provider_call_id).update, status=target_status
            )
            logger.info("Call hung up", call_sid=provider_call_id, status=target_status)
            return True
        except (TwilioException, *_TRANSIENT_ERRORS) as e:
            logger.warning(
                "Could not hang up call",
                call_sid=provider_call_id,
                error_code=getattr(e, 'code', None),
                error=str(e)
            )
            return False

    async def check_connection(self) -> bool:
        """Check Twilio connection by validating credentials."""
        if not self.client:
            logger.error("Twilio client not initialized")
            return False

        try:
            account = await asyncio.to_thread(
                self.client.api.accounts(self.account_sid).fetch
            )

            logger.info(
                "Twilio connection test successful",
                account_sid=account.sid,
                status=account.status
            )
            return True

        except TwilioException as e:
            logger.error(
                "Twilio connection test failed",
                error_code=getattr(e, 'code', None),
                error=str(e)
            )
            return False
        except _TRANSIENT_ERRORS as e:
            logger.error("Twilio unreachable during connection test", error=str(e))
            return False


def build_call_instructions(message: str, gather_action_url: str) -> str:
    """TwiML that reads the alert and waits for a single keypress."""
    response = VoiceResponse()

    gather = response.gather(
        num_digits=1,
        timeout=settings.GATHER_TIMEOUT_SECONDS,
        action=gather_action_url,
        method="POST",
    )
    gather.say(message, voice=settings.VOICE_NAME, language=settings.VOICE_LANGUAGE)

    # Reached only when the gather window closes without input
    response.say(
        "No confirmation received. Goodbye.",
        voice=settings.VOICE_NAME,
        language=settings.VOICE_LANGUAGE,
    )
    return str(response)


def build_gather_reply(confirmed: bool) -> str:
    """TwiML spoken after the callee pressed a key."""
    response = VoiceResponse()
    if confirmed:
        text = "Thank you for confirming. The alert has been acknowledged."
    else:
        text = "Invalid input. Goodbye."
    response.say(text, voice=settings.VOICE_NAME, language=settings.VOICE_LANGUAGE)
    return str(response)


def build_not_found_reply() -> str:
    """TwiML for a call whose attempt record no longer exists."""
    response = VoiceResponse()
    response.say(
        "This alert is no longer available. Goodbye.",
        voice=settings.VOICE_NAME,
        language=settings.VOICE_LANGUAGE,
    )
    response.hangup()
    return str(response)

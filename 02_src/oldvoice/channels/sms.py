"""SMS delivery through the Twilio REST client."""

import asyncio

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client
from twilio.twiml.messaging_response import MessagingResponse

from ..logging_config import get_logger

logger = get_logger(__name__)

MAX_SMS_LENGTH = 1600


def twiml_message(text: str | None) -> str:
    """TwiML document replying with text (or nothing when text is empty)."""
    response = MessagingResponse()
    if text:
        response.message(text)
    return str(response)


class SmsSender:
    """Outbound SMS. The Twilio client is synchronous, so sends run in a thread."""

    def __init__(
        self,
        account_sid: str | None,
        auth_token: str | None,
        from_number: str | None,
        client: Client | None = None,
    ):
        self._from_number = from_number
        if client is not None:
            self._client = client
        elif account_sid and auth_token and from_number:
            self._client = Client(account_sid, auth_token)
        else:
            logger.warning("Twilio credentials not configured, SMS sending will fail")
            self._client = None

    @property
    def configured(self) -> bool:
        return self._client is not None

    def _send(self, to_number: str, text: str) -> str:
        message = self._client.messages.create(
            to=to_number,
            from_=self._from_number,
            body=text,
        )
        return message.sid

    async def send(self, to_number: str, text: str) -> bool:
        if self._client is None:
            logger.error("Cannot send SMS to %s: Twilio client not initialized", to_number)
            return False

        if len(text) > MAX_SMS_LENGTH:
            logger.warning("SMS truncated from %s to %s chars", len(text), MAX_SMS_LENGTH)
            text = text[: MAX_SMS_LENGTH - 3] + "..."

        try:
            sid = await asyncio.to_thread(self._send, to_number, text)
        except TwilioRestException as e:
            logger.error("Twilio error sending SMS to %s: %s %s", to_number, e.code, e.msg)
            return False

        logger.info("SMS sent to %s, sid %s", to_number, sid)
        return True

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.rest import Client

from .config import DEFAULT_CALL_MESSAGE_URL
from .debounce import AlertDebouncer, epoch_ms
from .errors import DispatchRejected, DispatchUnavailable

logger = logging.getLogger(__name__)


class CallProvider(ABC):
    """Voice-call capability: call a number and play a fixed announcement."""

    @abstractmethod
    def place_call(self, to_phone_number: str) -> str:
        """Return the provider's call id. Raise DispatchRejected or DispatchUnavailable."""


class TwilioCallProvider(CallProvider):
    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        message_url: str = DEFAULT_CALL_MESSAGE_URL,
        client=None,
    ) -> None:
        if client is None:
            client = Client(account_sid, auth_token)
        self._client = client
        self.from_number = from_number
        self.message_url = message_url

    @classmethod
    def from_settings(cls, settings) -> "TwilioCallProvider":
        if not settings.twilio_configured:
            raise RuntimeError(
                "Twilio credentials are missing; set TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and TWILIO_PHONE_NUMBER"
            )
        return cls(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            settings.twilio_phone_number,
            message_url=settings.call_message_url,
        )

    def place_call(self, to_phone_number: str) -> str:
        try:
            call = self._client.calls.create(url=self.message_url, to=to_phone_number, from_=self.from_number)
        except TwilioRestException as e:
            if 400 <= int(e.status) < 500:
                raise DispatchRejected(e.msg or f"provider returned {e.status}") from e
            raise DispatchUnavailable(e.msg or f"provider returned {e.status}") from e
        except (TwilioException, OSError) as e:
            raise DispatchUnavailable(str(e) or type(e).__name__) from e
        logger.info("Call initiated: %s", call.sid)
        return call.sid


@dataclass(frozen=True)
class CallResult:
    status: str  # "initiated" | "suppressed"
    call_sid: Optional[str] = None
    remaining_ms: int = 0


class CaregiverCallService:
    """
    Server side of `POST /api/call-caregiver`.

    Enforces its own per-recipient cooldown before touching the provider, so a
    misbehaving client cannot trigger repeated calls.
    """

    def __init__(
        self,
        provider: CallProvider,
        debouncer: AlertDebouncer,
        clock: Callable[[], int] = epoch_ms,
    ) -> None:
        self.provider = provider
        self.debouncer = debouncer
        self._clock = clock

    async def request_call(self, to_phone_number: str, severity: Optional[str] = None) -> CallResult:
        now = self._clock()
        if not self.debouncer.should_dispatch(to_phone_number, now):
            remaining = self.debouncer.remaining_ms(to_phone_number, now)
            logger.info("Duplicate call request for %s suppressed (%d ms left)", to_phone_number, remaining)
            return CallResult(status="suppressed", remaining_ms=remaining)
        logger.info("Placing caregiver call to %s (severity=%s)", to_phone_number, severity or "unspecified")
        # Provider SDK is blocking
        sid = await asyncio.to_thread(self.provider.place_call, to_phone_number)
        return CallResult(status="initiated", call_sid=sid)

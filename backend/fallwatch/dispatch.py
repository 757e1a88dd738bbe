from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class DispatchStatus(str, Enum):
    DISPATCHED = "dispatched"
    REJECTED = "rejected"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class DispatchOutcome:
    status: DispatchStatus
    reason: Optional[str] = None

    @classmethod
    def dispatched(cls, reason: Optional[str] = None) -> "DispatchOutcome":
        return cls(DispatchStatus.DISPATCHED, reason)

    @classmethod
    def rejected(cls, reason: str) -> "DispatchOutcome":
        return cls(DispatchStatus.REJECTED, reason)

    @classmethod
    def unavailable(cls, reason: str) -> "DispatchOutcome":
        return cls(DispatchStatus.UNAVAILABLE, reason)


class Dispatcher(ABC):
    """Places one emergency call request per invocation. Never retries."""

    @abstractmethod
    async def dispatch(self, recipient: str, severity: str = "fall") -> DispatchOutcome: ...

    async def aclose(self) -> None:
        return None


def _response_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("detail"):
        return str(body["detail"])
    return f"HTTP {response.status_code}"


class HttpCallDispatcher(Dispatcher):
    """
    Sends `POST /api/call-caregiver` to the call service.

    Transport errors and 5xx map to `unavailable`, 4xx to `rejected`.
    """

    def __init__(self, endpoint_url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None) -> None:
        self.endpoint_url = endpoint_url
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings) -> "HttpCallDispatcher":
        return cls(settings.call_endpoint_url, timeout=settings.call_timeout_s)

    async def dispatch(self, recipient: str, severity: str = "fall") -> DispatchOutcome:
        payload = {"toPhoneNumber": recipient, "severity": severity}
        try:
            response = await self._client.post(self.endpoint_url, json=payload)
        except httpx.HTTPError as e:
            logger.warning("Call service unreachable at %s: %s", self.endpoint_url, e)
            return DispatchOutcome.unavailable(str(e) or type(e).__name__)

        if response.is_success:
            logger.info("Call request accepted for %s: %s", recipient, response.text)
            return DispatchOutcome.dispatched()
        if response.is_client_error:
            reason = _response_detail(response)
            logger.warning("Call request rejected for %s: %s", recipient, reason)
            return DispatchOutcome.rejected(reason)
        reason = _response_detail(response)
        logger.warning("Call service failed (HTTP %d): %s", response.status_code, reason)
        return DispatchOutcome.unavailable(reason)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

"""Push notification delivery through a messaging gateway."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Protocol

import httpx

from nearu.domain.proximity.exceptions import NearUError
from nearu.infra.documents import DocumentStore
from nearu.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

TOKENS = "userTokens"


class PushDeliveryError(NearUError):
    reason = "push_failed"


class PushGateway(Protocol):
    async def send(
        self, token: str, title: str, body: str, data: Optional[Mapping[str, str]] = None
    ) -> None:
        ...


@dataclass
class LoggingPushGateway(PushGateway):
    """Gateway used in development: records and logs notifications instead of sending."""

    sent: list[dict[str, Any]] = field(default_factory=list)

    async def send(
        self, token: str, title: str, body: str, data: Optional[Mapping[str, str]] = None
    ) -> None:
        self.sent.append({"token": token, "title": title, "body": body, "data": dict(data or {})})
        logger.info("push notification title=%s", title)


@dataclass
class FcmPushGateway(PushGateway):
    """Deliver notifications through the FCM HTTP send endpoint."""

    http: httpx.AsyncClient
    server_key: str
    endpoint: str = "https://fcm.googleapis.com/fcm/send"
    request_timeout: float = 5.0

    async def send(
        self, token: str, title: str, body: str, data: Optional[Mapping[str, str]] = None
    ) -> None:
        payload: dict[str, Any] = {"to": token, "notification": {"title": title, "body": body}}
        if data:
            payload["data"] = dict(data)
        try:
            response = await self.http.post(
                self.endpoint,
                json=payload,
                headers={"Authorization": f"key={self.server_key}"},
                timeout=self.request_timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise PushDeliveryError() from exc
        try:
            result = response.json()
        except ValueError as exc:
            raise PushDeliveryError("push_failed:bad_response") from exc
        if isinstance(result, dict) and int(result.get("failure") or 0) > 0:
            raise PushDeliveryError("push_failed:rejected")


class PushNotifier:
    """Registers device tokens and sends notifications to users' devices."""

    def __init__(self, store: DocumentStore, gateway: PushGateway) -> None:
        self.store = store
        self.gateway = gateway
        self._pending: set[asyncio.Task] = set()

    async def register_token(self, user_id: str, token: str) -> None:
        await self.store.set(TOKENS, user_id, {"token": token}, merge=True)

    async def notify(
        self, user_id: str, title: str, body: str, data: Optional[Mapping[str, str]] = None
    ) -> bool:
        """Send to the user's registered device; False when no token is registered."""
        record = await self.store.get(TOKENS, user_id)
        token = (record or {}).get("token")
        if not token:
            obs_metrics.inc_push_send("no_token")
            return False
        try:
            await self.gateway.send(token, title, body, data)
        except PushDeliveryError:
            obs_metrics.inc_push_send("failed")
            raise
        obs_metrics.inc_push_send("sent")
        return True

    def notify_later(
        self, user_id: str, title: str, body: str, data: Optional[Mapping[str, str]] = None
    ) -> asyncio.Task:
        """Fire-and-forget variant; failures are logged, never raised to the caller."""
        task = asyncio.create_task(self._notify_quietly(user_id, title, body, data))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _notify_quietly(
        self, user_id: str, title: str, body: str, data: Optional[Mapping[str, str]]
    ) -> None:
        try:
            await self.notify(user_id, title, body, data)
        except NearUError as exc:
            logger.warning("push notification failed user=%s reason=%s", user_id, exc.reason)

    async def drain(self) -> None:
        """Wait for outstanding fire-and-forget sends (shutdown/tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

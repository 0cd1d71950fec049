"""Match requests: one user asks another to connect; the recipient answers."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Literal, Optional

from nearu.domain.notifications.push import PushNotifier
from nearu.domain.proximity.exceptions import NearUError
from nearu.infra.documents import DocumentStore
from nearu.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

COLLECTION = "matchRequests"

MatchStatus = Literal["pending", "accepted", "rejected"]


class MatchRequestError(NearUError):
	reason = "match_request_error"


class MatchRequestNotFound(MatchRequestError):
	reason = "not_found"


class MatchRequestForbidden(MatchRequestError):
	reason = "forbidden"


class MatchRequestConflict(MatchRequestError):
	reason = "conflict"


class MatchRequestSelf(MatchRequestConflict):
	reason = "self_request"


@dataclass(slots=True)
class MatchRequest:
	id: str
	from_user_id: str
	to_user_id: str
	status: MatchStatus
	created_at_ms: int
	message: Optional[str] = None

	def to_document(self) -> Dict[str, Any]:
		payload: Dict[str, Any] = {
			"fromUserId": self.from_user_id,
			"toUserId": self.to_user_id,
			"status": self.status,
			"createdAt": self.created_at_ms,
		}
		if self.message:
			payload["message"] = self.message
		return payload

	@classmethod
	def from_document(cls, request_id: str, data: Dict[str, Any]) -> "MatchRequest":
		return cls(
			id=request_id,
			from_user_id=str(data["fromUserId"]),
			to_user_id=str(data["toUserId"]),
			status=data.get("status", "pending"),
			created_at_ms=int(data.get("createdAt") or 0),
			message=data.get("message"),
		)

	def to_dict(self) -> Dict[str, Any]:
		return {"id": self.id, **self.to_document()}


def _now_ms() -> int:
	return int(time.time() * 1000)


class MatchRequestService:
	def __init__(
		self,
		store: DocumentStore,
		*,
		notifier: Optional[PushNotifier] = None,
		clock: Optional[Callable[[], int]] = None,
	) -> None:
		self.store = store
		self.notifier = notifier
		self._clock = clock or _now_ms

	async def create_request(self, from_user_id: str, to_user_id: str, message: Optional[str] = None) -> MatchRequest:
		if from_user_id == to_user_id:
			raise MatchRequestSelf()
		existing = await self.store.query(
			COLLECTION, fromUserId=from_user_id, toUserId=to_user_id, status="pending"
		)
		if existing:
			raise MatchRequestConflict("already_sent")
		request = MatchRequest(
			id="",
			from_user_id=from_user_id,
			to_user_id=to_user_id,
			status="pending",
			created_at_ms=self._clock(),
			message=(message or "").strip() or None,
		)
		request.id = await self.store.add(COLLECTION, request.to_document())
		obs_metrics.inc_match_request("pending")
		if self.notifier is not None:
			self.notifier.notify_later(
				to_user_id,
				"New match request",
				"Someone you crossed paths with wants to connect.",
				{"type": "match_request", "requestId": request.id},
			)
		return request

	async def get(self, request_id: str) -> MatchRequest:
		data = await self.store.get(COLLECTION, request_id)
		if data is None:
			raise MatchRequestNotFound()
		return MatchRequest.from_document(request_id, data)

	async def pending_for(self, user_id: str) -> List[MatchRequest]:
		docs = await self.store.query(COLLECTION, toUserId=user_id, status="pending")
		requests = [MatchRequest.from_document(doc.id, doc.data) for doc in docs]
		requests.sort(key=lambda item: item.created_at_ms)
		return requests

	async def accept(self, request_id: str, actor_id: str) -> MatchRequest:
		return await self._respond(request_id, actor_id, "accepted")

	async def reject(self, request_id: str, actor_id: str) -> MatchRequest:
		return await self._respond(request_id, actor_id, "rejected")

	async def _respond(self, request_id: str, actor_id: str, status: MatchStatus) -> MatchRequest:
		request = await self.get(request_id)
		if request.to_user_id != actor_id:
			raise MatchRequestForbidden()
		if request.status != "pending":
			raise MatchRequestConflict("already_answered")
		await self.store.set(COLLECTION, request_id, {"status": status}, merge=True)
		request.status = status
		obs_metrics.inc_match_request(status)
		logger.info("match request answered id=%s status=%s", request_id, status)
		if self.notifier is not None:
			verb = "accepted" if status == "accepted" else "declined"
			self.notifier.notify_later(
				request.from_user_id,
				"Match request update",
				f"Your match request was {verb}.",
				{"type": "match_response", "requestId": request_id, "status": status},
			)
		return request

	async def have_accepted_match(self, user_a: str, user_b: str) -> bool:
		for sender, recipient in ((user_a, user_b), (user_b, user_a)):
			docs = await self.store.query(COLLECTION, fromUserId=sender, toUserId=recipient, status="accepted")
			if docs:
				return True
		return False

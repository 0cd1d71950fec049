"""Chat between users who crossed paths enough times or matched."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from nearu.domain.matches.service import MatchRequestService
from nearu.domain.notifications.push import PushNotifier
from nearu.domain.proximity.accumulator import PathCrossingAccumulator
from nearu.domain.proximity.crossings import pair_id
from nearu.domain.proximity.exceptions import NearUError
from nearu.infra.documents import Document, DocumentStore
from nearu.obs import metrics as obs_metrics

MESSAGES = "messages"
MAX_MESSAGE_LENGTH = 2000


class ChatLocked(NearUError):
	reason = "chat_locked"


class InvalidMessage(NearUError):
	reason = "invalid_message"


def notifications_collection(user_id: str) -> str:
	return f"users/{user_id}/notifications"


@dataclass(slots=True)
class ChatMessage:
	id: str
	chat_id: str
	sender_id: str
	text: str
	created_at_ms: int

	def to_dict(self) -> Dict[str, Any]:
		return {
			"id": self.id,
			"chatId": self.chat_id,
			"senderId": self.sender_id,
			"text": self.text,
			"createdAt": self.created_at_ms,
		}


def _now_ms() -> int:
	return int(time.time() * 1000)


class ChatService:
	def __init__(
		self,
		store: DocumentStore,
		accumulator: PathCrossingAccumulator,
		matches: MatchRequestService,
		*,
		notifier: Optional[PushNotifier] = None,
		clock: Optional[Callable[[], int]] = None,
	) -> None:
		self.store = store
		self.accumulator = accumulator
		self.matches = matches
		self.notifier = notifier
		self._clock = clock or _now_ms

	async def can_chat(self, user_a: str, user_b: str) -> bool:
		if user_a == user_b:
			return False
		if await self.accumulator.is_chat_unlocked(user_a, user_b):
			return True
		return await self.matches.have_accepted_match(user_a, user_b)

	async def send_message(self, sender_id: str, recipient_id: str, text: str) -> ChatMessage:
		body = (text or "").strip()
		if not body:
			raise InvalidMessage("empty_message")
		if len(body) > MAX_MESSAGE_LENGTH:
			raise InvalidMessage("message_too_long")
		if not await self.can_chat(sender_id, recipient_id):
			raise ChatLocked()
		chat_id = pair_id(sender_id, recipient_id)
		created_at = self._clock()
		message_id = await self.store.add(
			MESSAGES,
			{
				"text": body,
				"senderId": sender_id,
				"recipientId": recipient_id,
				"participants": chat_id,
				"createdAt": created_at,
			},
		)
		await self.store.add(
			notifications_collection(recipient_id),
			{
				"type": "message",
				"chatId": chat_id,
				"senderId": sender_id,
				"read": False,
				"createdAt": created_at,
			},
		)
		obs_metrics.inc_chat_message()
		if self.notifier is not None:
			self.notifier.notify_later(
				recipient_id,
				"New Message",
				"You have a new message!",
				{"type": "message", "chatId": chat_id},
			)
		return ChatMessage(
			id=message_id,
			chat_id=chat_id,
			sender_id=sender_id,
			text=body,
			created_at_ms=created_at,
		)

	async def list_messages(self, user_a: str, user_b: str) -> List[ChatMessage]:
		"""Messages between the two users, oldest first.

		``user_a`` is the reader; their unread notifications for this chat are
		marked read.
		"""
		chat_id = pair_id(user_a, user_b)
		docs = await self.store.query(MESSAGES, participants=chat_id)
		messages = [self._message(chat_id, doc) for doc in docs]
		# ULIDs break ties between messages written in the same millisecond.
		messages.sort(key=lambda message: (message.created_at_ms, message.id))
		await self.mark_read(user_a, chat_id)
		return messages

	async def mark_read(self, user_id: str, chat_id: str) -> int:
		collection = notifications_collection(user_id)
		unread = await self.store.query(collection, chatId=chat_id, read=False)
		for doc in unread:
			await self.store.set(collection, doc.id, {"read": True}, merge=True)
		return len(unread)

	async def conversations(self, user_id: str) -> List[Dict[str, Any]]:
		"""One entry per counterpart with the latest message, newest first."""
		sent = await self.store.query(MESSAGES, senderId=user_id)
		received = await self.store.query(MESSAGES, recipientId=user_id)
		latest: Dict[str, ChatMessage] = {}
		counterparts: Dict[str, str] = {}
		for doc in [*sent, *received]:
			other = doc.data.get("recipientId") if doc.data.get("senderId") == user_id else doc.data.get("senderId")
			if not other:
				continue
			chat_id = pair_id(user_id, str(other))
			message = self._message(chat_id, doc)
			current = latest.get(chat_id)
			if current is None or (message.created_at_ms, message.id) > (current.created_at_ms, current.id):
				latest[chat_id] = message
				counterparts[chat_id] = str(other)
		unread = await self.store.query(notifications_collection(user_id), read=False)
		unread_chats = {doc.data.get("chatId") for doc in unread}
		items = [
			{
				"chatId": chat_id,
				"otherUserId": counterparts[chat_id],
				"lastMessage": message.to_dict(),
				"unread": chat_id in unread_chats,
			}
			for chat_id, message in latest.items()
		]
		items.sort(key=lambda item: item["lastMessage"]["createdAt"], reverse=True)
		return items

	@staticmethod
	def _message(chat_id: str, doc: Document) -> ChatMessage:
		return ChatMessage(
			id=doc.id,
			chat_id=chat_id,
			sender_id=str(doc.data.get("senderId")),
			text=str(doc.data.get("text") or ""),
			created_at_ms=int(doc.data.get("createdAt") or 0),
		)

	async def notifications(self, user_id: str, *, unread_only: bool = False) -> List[Dict[str, Any]]:
		equals: Dict[str, Any] = {"read": False} if unread_only else {}
		docs = await self.store.query(notifications_collection(user_id), **equals)
		items = [{"id": doc.id, **doc.data} for doc in docs]
		items.sort(key=lambda item: int(item.get("createdAt") or 0))
		return items

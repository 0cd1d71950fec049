import pytest

from nearu.domain.chat.service import MESSAGES, ChatLocked, InvalidMessage, notifications_collection
from nearu.domain.proximity.crossings import pair_id
from nearu.domain.proximity.models import Location

HERE = Location(latitude=43.4723, longitude=-80.5449, timestamp_ms=0)
NEAR = Location(latitude=43.47233, longitude=-80.5449, timestamp_ms=0)


async def _unlock(services, a: str, b: str) -> None:
	clock = {"now": 1_000}
	services.accumulator._clock = lambda: clock["now"]
	for _ in range(services.accumulator.policy.required_crossings):
		await services.accumulator.record(a, b, HERE, NEAR)
		clock["now"] += services.accumulator.policy.debounce_ms


@pytest.mark.asyncio
async def test_locked_chat_rejects_messages(services):
	with pytest.raises(ChatLocked):
		await services.chat.send_message("alice", "bob", "hello")
	assert await services.store.query(MESSAGES) == []


@pytest.mark.asyncio
async def test_crossings_unlock_chat_and_message_is_written(services, push_gateway):
	await services.notifier.register_token("bob", "bob-device")
	await _unlock(services, "alice", "bob")

	message = await services.chat.send_message("alice", "bob", "  hello bob ")
	assert message.text == "hello bob"
	assert message.chat_id == pair_id("alice", "bob")

	stored = await services.store.get(MESSAGES, message.id)
	assert stored["senderId"] == "alice"
	assert stored["participants"] == "alice_bob"

	notifications = await services.store.query(notifications_collection("bob"))
	assert len(notifications) == 1
	assert notifications[0].data["type"] == "message"
	assert notifications[0].data["chatId"] == "alice_bob"
	assert notifications[0].data["read"] is False

	await services.notifier.drain()
	assert push_gateway.sent[-1]["title"] == "New Message"
	assert push_gateway.sent[-1]["body"] == "You have a new message!"


@pytest.mark.asyncio
async def test_accepted_match_also_unlocks_chat(services):
	request = await services.matches.create_request("alice", "bob")
	await services.matches.accept(request.id, "bob")
	assert await services.chat.can_chat("bob", "alice")
	await services.chat.send_message("bob", "alice", "hi")


@pytest.mark.asyncio
async def test_empty_message_rejected(services):
	await _unlock(services, "alice", "bob")
	with pytest.raises(InvalidMessage):
		await services.chat.send_message("alice", "bob", "   ")


@pytest.mark.asyncio
async def test_messages_listed_oldest_first(services):
	await _unlock(services, "alice", "bob")
	clock = {"now": 5_000}
	services.chat._clock = lambda: clock["now"]
	await services.chat.send_message("alice", "bob", "first")
	clock["now"] = 4_000
	await services.chat.send_message("bob", "alice", "earlier")
	clock["now"] = 6_000
	await services.chat.send_message("alice", "bob", "last")

	texts = [message.text for message in await services.chat.list_messages("bob", "alice")]
	assert texts == ["earlier", "first", "last"]
	unread = await services.chat.notifications("alice", unread_only=True)
	assert [item["chatId"] for item in unread] == ["alice_bob"]


@pytest.mark.asyncio
async def test_underscored_ids_do_not_share_a_chat(services):
	await _unlock(services, "a_b", "c")
	await services.chat.send_message("a_b", "c", "private")
	assert await services.chat.can_chat("c", "a_b")
	assert not await services.chat.can_chat("a", "b_c")
	assert await services.chat.list_messages("a", "b_c") == []


@pytest.mark.asyncio
async def test_reading_a_chat_marks_its_notifications_read(services):
	await _unlock(services, "alice", "bob")
	await _unlock(services, "carol", "bob")
	await services.chat.send_message("alice", "bob", "hi")
	await services.chat.send_message("carol", "bob", "hey")
	assert len(await services.chat.notifications("bob", unread_only=True)) == 2

	await services.chat.list_messages("alice", "bob")
	assert len(await services.chat.notifications("bob", unread_only=True)) == 2

	await services.chat.list_messages("bob", "alice")
	unread = await services.chat.notifications("bob", unread_only=True)
	assert [item["chatId"] for item in unread] == [pair_id("bob", "carol")]
	assert len(await services.chat.notifications("bob")) == 2


@pytest.mark.asyncio
async def test_conversations_show_latest_message_per_counterpart(services):
	await _unlock(services, "alice", "bob")
	await _unlock(services, "alice", "carol")
	clock = {"now": 1_000}
	services.chat._clock = lambda: clock["now"]
	await services.chat.send_message("alice", "bob", "hello bob")
	clock["now"] = 2_000
	await services.chat.send_message("carol", "alice", "hello alice")
	clock["now"] = 3_000
	await services.chat.send_message("bob", "alice", "hi again")

	items = await services.chat.conversations("alice")
	assert [item["otherUserId"] for item in items] == ["bob", "carol"]
	assert items[0]["lastMessage"]["text"] == "hi again"
	assert items[0]["chatId"] == pair_id("alice", "bob")
	assert [item["unread"] for item in items] == [True, True]

	await services.chat.list_messages("alice", "carol")
	items = await services.chat.conversations("alice")
	assert [item["unread"] for item in items] == [True, False]

	bob_items = await services.chat.conversations("bob")
	assert [item["otherUserId"] for item in bob_items] == ["alice"]
	assert bob_items[0]["unread"] is True
	assert await services.chat.conversations("dave") == []

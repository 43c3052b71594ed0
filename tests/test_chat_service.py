import asyncio

import pytest

from tripchat.errors import ConversationBusyError, ImageError
from tripchat.models import Sender
from tripchat.services.chat import APOLOGY_TEXT, ChatService, ConversationManager, session_title
from tripchat.services.llm.events import CandidateUpdate, FunctionCallPart, TextDelta, TextPart

from conftest import LISBON, ScriptedProvider

PIXEL = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk+M9QDwADhgGAWjR9awAAAABJRU5ErkJggg=="
)


def _itinerary_reply(text="Sure! "):
    return [
        TextDelta(text),
        CandidateUpdate((TextPart(text), FunctionCallPart("propose_itinerary", LISBON))),
    ]


async def test_send_streams_itinerary(service, provider):
    provider.script.append(_itinerary_reply())

    reply = await service.send("3 days in Lisbon")

    messages = service.store.snapshot()
    assert [m.sender for m in messages] == [Sender.USER, Sender.AI]
    assert messages[0].text == "3 days in Lisbon"
    assert reply.id == messages[1].id
    assert reply.text == "Sure! "
    assert reply.itinerary.trip_title == "Lisbon Getaway"
    assert reply.is_streaming is False
    assert provider.sent == [("3 days in Lisbon", None)]


async def test_send_persists_session_and_both_messages(service, provider, backend):
    provider.script.append(_itinerary_reply())

    await service.send("A long weekend somewhere sunny in Portugal")
    await service.flush()

    sessions = await backend.get_sessions(service.user.id)
    assert len(sessions) == 1
    assert sessions[0].title == "A long weekend somewhere sunny..."
    assert service.current_session_id == sessions[0].id

    rows = await backend.get_messages(sessions[0].id)
    assert [(r.role, r.kind) for r in rows] == [("user", "text"), ("ai", "itinerary")]
    assert '"trip_title":"Lisbon Getaway"' in rows[1].content


async def test_follow_up_reuses_session_and_chat(service, provider):
    provider.script.extend([[TextDelta("Where to?")], [TextDelta("Great choice.")]])

    await service.send("Plan a trip")
    first_session = service.current_session_id
    await service.send("Japan")

    assert service.current_session_id == first_session
    assert len(provider.opened) == 1
    assert len(service.store) == 4


async def test_stream_failure_replaces_pending_with_apology(service, provider):
    provider.script.append([TextDelta("Planning your"), ConnectionError("reset by peer")])
    events = []
    service.store.subscribe(lambda event, msg: events.append(event))

    reply = await service.send("Rome in May")
    await service.flush()

    messages = service.store.snapshot()
    assert len(messages) == 2
    assert messages[1].sender is Sender.AI
    assert messages[1].text == APOLOGY_TEXT
    assert reply.id == messages[1].id
    assert "remove" in events
    assert all("Planning your" not in m.text for m in messages)


async def test_open_failure_appends_apology_without_pending(service, provider):
    provider.script.append(RuntimeError("quota"))
    events = []
    service.store.subscribe(lambda event, msg: events.append(event))

    await service.send("Paris")

    assert events == ["append", "append"]
    assert service.store.snapshot()[-1].text == APOLOGY_TEXT


async def test_failed_reply_is_not_persisted(service, provider, backend):
    provider.script.append(RuntimeError("quota"))

    await service.send("Paris")
    await service.flush()

    rows = await backend.get_messages(service.current_session_id)
    assert [r.role for r in rows] == ["user"]


async def test_send_rejects_bad_image_before_touching_state(service, provider):
    with pytest.raises(ImageError):
        await service.send("What is this?", "data:text/plain;base64,aGk=")
    assert len(service.store) == 0
    assert service.current_session_id is None


async def test_send_with_image_reaches_model(service, provider):
    provider.script.append([TextDelta("Looks like Sintra.")])

    await service.send("Where is this?", PIXEL)

    text, image = provider.sent[0]
    assert text == "Where is this?"
    assert image.mime_type == "image/png"
    assert service.store.snapshot()[0].image == PIXEL


async def test_concurrent_send_is_rejected(service, provider):
    gate = asyncio.Event()

    async def slow():
        yield TextDelta("thinking")
        await gate.wait()

    provider.script.append(slow())
    first = asyncio.create_task(service.send("one"))
    for _ in range(5):
        await asyncio.sleep(0)

    assert service.busy is True
    assert service.store.snapshot()[-1].text == "thinking"
    with pytest.raises(ConversationBusyError):
        await service.send("two")
    gate.set()
    await first
    assert service.busy is False


async def test_regenerate_replaces_reply_in_place(service, provider):
    provider.script.extend([[TextDelta("First idea.")], _itinerary_reply("Better: ")])
    reply = await service.send("Lisbon?")
    seen = []
    service.store.subscribe(lambda event, msg: seen.append(msg.is_streaming))

    regenerated = await service.regenerate(reply.id)

    assert regenerated.id == reply.id
    assert regenerated.text == "Better: "
    assert regenerated.itinerary.trip_title == "Lisbon Getaway"
    assert seen[0] is True and seen[-1] is False
    assert provider.sent[-1] == ("Lisbon?", None)
    assert len(service.store) == 2


async def test_regenerate_failure_resolves_to_apology(service, provider):
    provider.script.extend([[TextDelta("First idea.")], [ConnectionError("gone")]])
    reply = await service.send("Lisbon?")

    regenerated = await service.regenerate(reply.id)

    assert regenerated.text == APOLOGY_TEXT
    assert regenerated.is_streaming is False


async def test_regenerated_reply_is_not_persisted(service, provider, backend):
    provider.script.extend([[TextDelta("First idea.")], [TextDelta("Second idea.")]])
    reply = await service.send("Lisbon?")
    await service.regenerate(reply.id)
    await service.flush()

    rows = await backend.get_messages(service.current_session_id)
    assert [r.content for r in rows] == ["Lisbon?", "First idea."]


async def test_regenerate_is_noop_without_user_prompt(service, provider):
    provider.script.append([TextDelta("Hello!")])
    reply = await service.send("hi")
    service.store.remove(service.store.snapshot()[0].id)
    before = service.store.snapshot()

    assert await service.regenerate(reply.id) is None
    assert await service.regenerate("missing") is None
    assert service.store.snapshot() == before
    assert len(provider.sent) == 1


async def test_select_session_loads_history_and_seeds_model(service, provider, backend, user):
    session = await backend.create_session(user.id, "Lisbon")
    await backend.save_message(session.id, "3 days in Lisbon", "user", "text")
    await backend.save_message(session.id, '{"trip_title": "broken', "ai", "itinerary")
    await backend.save_message(session.id, "Anything else?", "ai", None)

    messages = await service.select_session(session.id)

    assert [m.text for m in messages] == ["3 days in Lisbon", '{"trip_title": "broken', "Anything else?"]
    assert service.current_session_id == session.id
    assert service.model.is_open is False

    provider.script.append([TextDelta("Sure.")])
    await service.send("Add a day")
    assert [t.role for t in provider.opened[0]] == ["user", "model", "model"]


async def test_new_chat_clears_state(service, provider):
    provider.script.extend([[TextDelta("Hi")], [TextDelta("Fresh")]])
    await service.send("hello")

    service.new_chat()

    assert len(service.store) == 0
    assert service.current_session_id is None
    await service.send("again")
    assert len(provider.opened) == 2


async def test_load_sessions_degrades_to_empty(service, backend, monkeypatch):
    async def boom(user_id):
        raise RuntimeError("offline")

    monkeypatch.setattr(backend, "get_sessions", boom)
    assert await service.load_sessions() == []


async def test_manager_scopes_service_per_user(backend, user):
    provider = ScriptedProvider()
    manager = ConversationManager(backend, lambda: provider)

    service = await manager.login(user)
    assert manager.get(user.id) is service
    assert manager.for_user(user) is service

    manager.logout(user.id)
    assert manager.get(user.id) is None


def test_session_title_truncates():
    assert session_title("short") == "short"
    assert session_title("x" * 31) == "x" * 30 + "..."


async def test_reserved_token_blocks_other_runs_until_used(service, provider):
    provider.script.append([TextDelta("Hi")])
    service.acquire()

    with pytest.raises(ConversationBusyError):
        await service.send("other")
    with pytest.raises(ConversationBusyError):
        service.acquire()

    reply = await service.send("hello", reserved=True)
    assert reply.text == "Hi"
    assert service.busy is False


async def test_reserved_token_is_released_on_noop_and_bad_image(service):
    service.acquire()
    assert await service.regenerate("missing", reserved=True) is None
    assert service.busy is False

    service.acquire()
    with pytest.raises(ImageError):
        await service.send("look", "data:text/plain;base64,aGk=", reserved=True)
    assert service.busy is False


async def test_manager_evicts_least_recently_used_idle_conversation(backend):
    provider = ScriptedProvider()
    manager = ConversationManager(backend, lambda: provider, max_conversations=2)
    users = [(await backend.sign_in_as_guest()).user for _ in range(4)]

    first = manager.for_user(users[0])
    manager.for_user(users[1])
    manager.get(users[0].id)  # touch: users[1] is now the oldest
    manager.for_user(users[2])

    assert len(manager) == 2
    assert manager.get(users[1].id) is None
    assert manager.get(users[0].id) is first

    first.acquire()
    manager.get(users[2].id)  # users[0] is oldest again, but streaming
    manager.for_user(users[3])
    assert manager.get(users[0].id) is first
    assert manager.get(users[2].id) is None

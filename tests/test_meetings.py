from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import httpx

from meetingdesk.gateway import ApiGateway
from meetingdesk.meetings import CollectionRegistry, MeetingCollection
from meetingdesk.models import (
    CreateMeetingData,
    CreateSubmission,
    UpdateMeetingData,
    UpdateSubmission,
)

from .conftest import API_BASE, FakeMeetingsService


def _draft(title: str = "Kickoff") -> CreateMeetingData:
    start = datetime.now(UTC) + timedelta(days=3)
    return CreateMeetingData(
        title=title,
        description="Project kickoff",
        start_time=start,
        end_time=start + timedelta(hours=1),
        location="Room 3",
        attendees=["c@example.com"],
    )


def _with_collection(service: FakeMeetingsService, body):
    async def scenario():
        async with service.client() as client:
            gateway = ApiGateway(client, token_provider=lambda: service.token)
            collection = MeetingCollection(gateway)
            return await body(collection)

    return asyncio.run(scenario())


def test_load_replaces_local_state(service: FakeMeetingsService) -> None:
    service.add_meeting("A")
    service.add_meeting("B")

    async def body(collection: MeetingCollection):
        await collection.load()
        first = [m.title for m in collection.items]
        service.meetings.pop(1)
        service.add_meeting("C")
        await collection.load()
        return first, [m.title for m in collection.items], collection

    first, second, collection = _with_collection(service, body)
    assert first == ["A", "B"]
    assert second == ["B", "C"]
    assert collection.loaded
    assert collection.error is None


def test_load_failure_keeps_prior_collection(service: FakeMeetingsService) -> None:
    service.add_meeting("A")

    async def body(collection: MeetingCollection):
        await collection.load()
        service.force("GET", "/meetings", 503)
        result = await collection.load()
        return result, collection

    result, collection = _with_collection(service, body)
    assert not result.ok
    assert [m.title for m in collection.items] == ["A"]
    assert collection.error == "Error loading meetings."


def test_load_transport_failure_keeps_prior_collection(service: FakeMeetingsService) -> None:
    service.add_meeting("A")
    calls = {"n": 0}

    async def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] > 1:
            raise httpx.ConnectError("offline")
        return httpx.Response(200, json=list(service.meetings.values()))

    async def scenario():
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url=API_BASE
        ) as client:
            collection = MeetingCollection(ApiGateway(client))
            await collection.load()
            result = await collection.load()
            return result, collection

    result, collection = asyncio.run(scenario())
    assert result.error.kind == "transport"
    assert len(collection) == 1
    assert collection.error == "Error loading meetings."


def test_create_appends_server_meeting(service: FakeMeetingsService) -> None:
    service.add_meeting("Existing")

    async def body(collection: MeetingCollection):
        await collection.load()
        before = {m.id for m in collection.items}
        result = await collection.create(_draft())
        return before, result, collection

    before, result, collection = _with_collection(service, body)
    assert result.ok
    assert result.data.id not in before
    assert len(collection) == 2
    assert collection.items[-1] == result.data
    assert collection.items[-1].created_at is not None


def test_create_failure_surfaces_server_message(service: FakeMeetingsService) -> None:
    service.force("POST", "/meetings", 400, {"message": "Room 3 is booked"})

    async def body(collection: MeetingCollection):
        await collection.load()
        return await collection.create(_draft()), collection

    result, collection = _with_collection(service, body)
    assert not result.ok
    assert len(collection) == 0
    assert collection.error == "Room 3 is booked"

    collection.clear_error()
    assert collection.error is None


def test_update_replaces_matching_element_in_place(service: FakeMeetingsService) -> None:
    service.add_meeting("A")
    service.add_meeting("B")
    service.add_meeting("C")

    async def body(collection: MeetingCollection):
        await collection.load()
        result = await collection.update(2, UpdateMeetingData(title="B2"))
        return result, collection

    result, collection = _with_collection(service, body)
    assert result.ok
    assert len(collection) == 3
    assert [m.title for m in collection.items] == ["A", "B2", "C"]
    assert collection.find(2) == result.data


def test_update_of_unknown_local_id_is_a_local_noop(service: FakeMeetingsService) -> None:
    service.add_meeting("A")

    async def body(collection: MeetingCollection):
        await collection.load()
        service.add_meeting("Added elsewhere")
        result = await collection.update(2, UpdateMeetingData(title="Renamed"))
        return result, collection

    result, collection = _with_collection(service, body)
    assert result.ok
    assert [m.title for m in collection.items] == ["A"]


def test_update_failure_leaves_state_unchanged(service: FakeMeetingsService) -> None:
    service.add_meeting("A")

    async def body(collection: MeetingCollection):
        await collection.load()
        service.meetings.clear()
        result = await collection.update(1, UpdateMeetingData(title="Gone"))
        return result, collection

    result, collection = _with_collection(service, body)
    assert result.error.kind == "not_found"
    assert [m.title for m in collection.items] == ["A"]
    assert collection.error == "Meeting with ID 1 not found"


def test_delete_removes_element(service: FakeMeetingsService) -> None:
    service.add_meeting("A")
    service.add_meeting("B")

    async def body(collection: MeetingCollection):
        await collection.load()
        result = await collection.delete(1)
        return result, collection

    result, collection = _with_collection(service, body)
    assert result.ok
    assert len(collection) == 1
    assert collection.find(1) is None


def test_delete_failure_leaves_state_unchanged(service: FakeMeetingsService) -> None:
    service.add_meeting("A")
    service.force("DELETE", "/meetings/1", 500)

    async def body(collection: MeetingCollection):
        await collection.load()
        return await collection.delete(1), collection

    result, collection = _with_collection(service, body)
    assert not result.ok
    assert len(collection) == 1
    assert collection.error == "Error deleting meeting."


def test_submit_dispatches_tagged_submissions(service: FakeMeetingsService) -> None:
    async def body(collection: MeetingCollection):
        created = await collection.submit(CreateSubmission(_draft("First")))
        updated = await collection.submit(
            UpdateSubmission(created.data.id, UpdateMeetingData(location="Roof"))
        )
        return created, updated, collection

    created, updated, collection = _with_collection(service, body)
    assert created.ok and updated.ok
    assert len(service.calls("POST", "/meetings")) == 1
    assert len(service.calls("PATCH", f"/meetings/{created.data.id}")) == 1
    assert [m.location for m in collection.items] == ["Roof"]


def test_second_mutation_for_same_id_is_rejected_while_first_is_in_flight(
    service: FakeMeetingsService,
) -> None:
    meeting = service.add_meeting("A")
    release = asyncio.Event()
    seen: list[str] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.method)
        if request.method == "GET":
            return httpx.Response(200, json=[meeting])
        await release.wait()
        return httpx.Response(200, json={**meeting, "title": "Slow update"})

    async def scenario():
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url=API_BASE
        ) as client:
            collection = MeetingCollection(ApiGateway(client))
            await collection.load()

            slow = asyncio.create_task(collection.update(1, UpdateMeetingData(title="x")))
            await asyncio.sleep(0)
            while not collection.is_pending(1):
                await asyncio.sleep(0)

            rejected = await collection.delete(1)
            release.set()
            applied = await slow
            return rejected, applied, collection

    rejected, applied, collection = asyncio.run(scenario())
    assert not rejected.ok
    assert rejected.error.kind == "conflict"
    assert applied.ok
    assert seen == ["GET", "PATCH"]
    assert [m.title for m in collection.items] == ["Slow update"]
    assert not collection.is_pending(1)


def test_registry_reuses_collection_per_token_and_evicts_oldest() -> None:
    async def scenario():
        async with httpx.AsyncClient(base_url=API_BASE) as client:
            registry = CollectionRegistry(client, max_entries=2)
            a = registry.for_token("a")
            assert registry.for_token("a") is a
            registry.for_token("b")
            registry.for_token("a")
            registry.for_token("c")
            assert len(registry) == 2
            assert registry.for_token("a") is a

            registry.discard("a")
            registry.discard(None)
            assert registry.for_token("a") is not a

    asyncio.run(scenario())

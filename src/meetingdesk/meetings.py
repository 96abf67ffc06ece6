"""Meeting collection for the active session.

Local state only changes after the meetings service confirms a request; a
failed request leaves the collection exactly as it was and surfaces a message
through :attr:`MeetingCollection.error`.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Final

import httpx

from meetingdesk.gateway import DEFAULT_MESSAGES, ApiGateway, GatewayResult, fail
from meetingdesk.models import (
    CreateMeetingData,
    CreateSubmission,
    Meeting,
    Submission,
    UpdateMeetingData,
    UpdateSubmission,
)

logger = logging.getLogger(__name__)

LOAD_FAILED: Final[str] = "Error loading meetings."
FETCH_FAILED: Final[str] = "Error loading meeting."
CREATE_FAILED: Final[str] = "Error creating meeting."
UPDATE_FAILED: Final[str] = "Error updating meeting."
DELETE_FAILED: Final[str] = "Error deleting meeting."


class MeetingCollection:
    def __init__(self, gateway: ApiGateway) -> None:
        self._gateway = gateway
        self._items: list[Meeting] = []
        self._in_flight: set[str] = set()
        self.error: str | None = None
        self.loaded = False

    @property
    def items(self) -> tuple[Meeting, ...]:
        return tuple(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def find(self, meeting_id: int | str) -> Meeting | None:
        key = str(meeting_id)
        for meeting in self._items:
            if str(meeting.id) == key:
                return meeting
        return None

    def is_pending(self, meeting_id: int | str) -> bool:
        return str(meeting_id) in self._in_flight

    def clear_error(self) -> None:
        self.error = None

    def _surface[T](self, result: GatewayResult[T], fallback: str) -> GatewayResult[T]:
        if result.ok or result.error is None:
            return result
        self.error = result.error.detail or fallback
        logger.info("%s (%s)", self.error, result.error.kind)
        return result

    async def load(self) -> GatewayResult[list[Meeting]]:
        result = await self._gateway.list_meetings()
        if result.ok:
            self._items = list(result.data or [])
            self.loaded = True
            self.error = None
        return self._surface(result, LOAD_FAILED)

    async def get(self, meeting_id: int | str) -> GatewayResult[Meeting]:
        result = await self._gateway.get_meeting(meeting_id)
        return self._surface(result, FETCH_FAILED)

    async def create(self, data: CreateMeetingData) -> GatewayResult[Meeting]:
        result = await self._gateway.create_meeting(data)
        if result.ok and result.data is not None:
            self._items.append(result.data)
            self.error = None
        return self._surface(result, CREATE_FAILED)

    def _claim(self, meeting_id: int | str) -> bool:
        key = str(meeting_id)
        if key in self._in_flight:
            return False
        self._in_flight.add(key)
        return True

    def _release(self, meeting_id: int | str) -> None:
        self._in_flight.discard(str(meeting_id))

    async def update(
        self, meeting_id: int | str, patch: UpdateMeetingData
    ) -> GatewayResult[Meeting]:
        if not self._claim(meeting_id):
            return self._surface(fail("conflict", DEFAULT_MESSAGES["conflict"]), UPDATE_FAILED)
        try:
            result = await self._gateway.update_meeting(meeting_id, patch)
        finally:
            self._release(meeting_id)

        if result.ok and result.data is not None:
            key = str(meeting_id)
            for index, meeting in enumerate(self._items):
                if str(meeting.id) == key:
                    self._items[index] = result.data
                    break
            self.error = None
        return self._surface(result, UPDATE_FAILED)

    async def delete(self, meeting_id: int | str) -> GatewayResult[None]:
        if not self._claim(meeting_id):
            return self._surface(fail("conflict", DEFAULT_MESSAGES["conflict"]), DELETE_FAILED)
        try:
            result = await self._gateway.delete_meeting(meeting_id)
        finally:
            self._release(meeting_id)

        if result.ok:
            key = str(meeting_id)
            self._items = [m for m in self._items if str(m.id) != key]
            self.error = None
        return self._surface(result, DELETE_FAILED)

    async def submit(self, submission: Submission) -> GatewayResult[Meeting]:
        if isinstance(submission, CreateSubmission):
            return await self.create(submission.data)
        if isinstance(submission, UpdateSubmission):
            return await self.update(submission.meeting_id, submission.patch)
        raise TypeError(f"Unsupported submission: {type(submission).__name__}")


class CollectionRegistry:
    """One collection per session token, shared by concurrent page requests."""

    def __init__(self, client: httpx.AsyncClient, *, max_entries: int = 256) -> None:
        self._client = client
        self._max_entries = max_entries
        self._entries: OrderedDict[str, MeetingCollection] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def for_token(self, token: str) -> MeetingCollection:
        collection = self._entries.get(token)
        if collection is not None:
            self._entries.move_to_end(token)
            return collection

        gateway = ApiGateway(self._client, token_provider=lambda: token)
        collection = MeetingCollection(gateway)
        self._entries[token] = collection
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)
        return collection

    def discard(self, token: str | None) -> None:
        if token:
            self._entries.pop(token, None)

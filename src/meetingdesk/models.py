from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    """Base for payloads exchanged with the meetings service.

    The service speaks camelCase (startTime, createdBy, ...); Python code uses
    snake_case attributes. Both spellings are accepted on input.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


class UserIdentity(_WireModel):
    id: int | str
    email: str
    name: str


class LoginCredentials(_WireModel):
    email: str
    password: str


class LoginResponse(_WireModel):
    access_token: str | None = Field(default=None, alias="access_token")
    user: UserIdentity | None = None
    message: str | None = None


class Meeting(_WireModel):
    id: int | str
    title: str
    description: str
    start_time: datetime
    end_time: datetime
    location: str
    attendees: list[str] = Field(default_factory=list)
    created_by: int | str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class CreateMeetingData(_WireModel):
    title: str
    description: str
    start_time: datetime
    end_time: datetime
    location: str
    attendees: list[str]


class UpdateMeetingData(_WireModel):
    """Partial update; only explicitly set fields are sent."""

    title: str | None = None
    description: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    location: str | None = None
    attendees: list[str] | None = None


@dataclass(frozen=True)
class Session:
    user_id: int | str
    email: str
    display_name: str
    token: str
    expiry: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expiry is None:
            return False
        return self.expiry <= (now or datetime.now(UTC))

    @property
    def identity(self) -> UserIdentity:
        return UserIdentity(id=self.user_id, email=self.email, name=self.display_name)


@dataclass(frozen=True)
class CreateSubmission:
    data: CreateMeetingData


@dataclass(frozen=True)
class UpdateSubmission:
    meeting_id: int | str
    patch: UpdateMeetingData


Submission = CreateSubmission | UpdateSubmission

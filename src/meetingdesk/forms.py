from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, tzinfo

from meetingdesk.models import CreateMeetingData, Meeting, UpdateMeetingData

FORM_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "startTime",
    "endTime",
    "location",
    "attendees",
)

REQUIRED_MESSAGES: dict[str, str] = {
    "title": "Title is required",
    "description": "Description is required",
    "startTime": "Start time is required",
    "endTime": "End time is required",
    "location": "Location is required",
    "attendees": "At least one attendee is required",
}

DATETIME_LOCAL_FORMAT = "%Y-%m-%dT%H:%M"


@dataclass(frozen=True)
class MeetingDraft:
    """Raw form input, exactly as posted."""

    title: str = ""
    description: str = ""
    startTime: str = ""  # noqa: N815
    endTime: str = ""  # noqa: N815
    location: str = ""
    attendees: str = ""

    def value(self, name: str) -> str:
        return getattr(self, name) or ""


@dataclass(frozen=True)
class ValidationMessage:
    field: str
    message: str


@dataclass
class ValidationResult:
    data: CreateMeetingData | None = None
    errors: list[ValidationMessage] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.data is not None and not self.errors

    def by_field(self) -> dict[str, list[str]]:
        out: dict[str, list[str]] = {}
        for err in self.errors:
            out.setdefault(err.field, []).append(err.message)
        return out


def split_attendees(raw: str | None) -> list[str]:
    if not raw:
        return []
    out: list[str] = []
    for part in raw.split(","):
        s = part.strip()
        if s:
            out.append(s)
    return out


def parse_datetime(raw: str, tz: tzinfo = UTC) -> datetime:
    """Parse a datetime-local value; naive values are read in ``tz``."""

    parsed = datetime.fromisoformat(raw.strip())
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def validate_draft(
    draft: MeetingDraft, *, now: datetime | None = None, tz: tzinfo = UTC
) -> ValidationResult:
    errors: list[ValidationMessage] = []

    for name in FORM_FIELDS:
        if not draft.value(name).strip():
            errors.append(ValidationMessage(name, REQUIRED_MESSAGES[name]))

    start: datetime | None = None
    end: datetime | None = None
    if draft.startTime.strip():
        try:
            start = parse_datetime(draft.startTime, tz)
        except ValueError:
            errors.append(ValidationMessage("startTime", "Invalid start time"))
    if draft.endTime.strip():
        try:
            end = parse_datetime(draft.endTime, tz)
        except ValueError:
            errors.append(ValidationMessage("endTime", "Invalid end time"))

    if start is not None and end is not None and end <= start:
        errors.append(ValidationMessage("endTime", "End time must be after start time"))

    if start is not None and start <= (now or datetime.now(UTC)):
        errors.append(ValidationMessage("startTime", "Start time must be in the future"))

    attendees = split_attendees(draft.attendees)
    if draft.attendees.strip() and not attendees:
        errors.append(ValidationMessage("attendees", REQUIRED_MESSAGES["attendees"]))

    if errors or start is None or end is None:
        return ValidationResult(errors=errors)

    return ValidationResult(
        data=CreateMeetingData(
            title=draft.title.strip(),
            description=draft.description.strip(),
            start_time=start,
            end_time=end,
            location=draft.location.strip(),
            attendees=attendees,
        )
    )


def to_patch(data: CreateMeetingData) -> UpdateMeetingData:
    """An edit form submits every field; mark them all as set."""

    return UpdateMeetingData.model_validate(data.model_dump())


def draft_from_meeting(meeting: Meeting, tz: tzinfo = UTC) -> MeetingDraft:
    def _local(value: datetime) -> str:
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(tz).strftime(DATETIME_LOCAL_FORMAT)

    return MeetingDraft(
        title=meeting.title,
        description=meeting.description,
        startTime=_local(meeting.start_time),
        endTime=_local(meeting.end_time),
        location=meeting.location,
        attendees=", ".join(meeting.attendees),
    )

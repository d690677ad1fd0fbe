"""Incoming Instagram webhook models.

The envelope and entry models only check the shape of the delivery. Each
messaging or change item is checked on its own by ``parse_entry_events``,
so one incomplete event never rejects the rest of the batch.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.constants import COMMENTS_FIELD


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


class WebhookEntry(BaseModel):
    """One account-scoped batch of events.

    Parsed per entry by the router. Missing or mistyped fields fall back
    to empty values so the entry can still be resolved and reported.
    """

    model_config = ConfigDict(extra="allow")

    id: str | None = None
    time: int | None = None
    messaging: list[Any] = Field(default_factory=list)
    changes: list[Any] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str | None:
        return _as_str(value)

    @field_validator("time", mode="before")
    @classmethod
    def _coerce_time(cls, value: Any) -> int | None:
        if isinstance(value, bool) or not isinstance(value, int):
            return None
        return value

    @field_validator("messaging", "changes", mode="before")
    @classmethod
    def _coerce_events(cls, value: Any) -> list[Any]:
        return _as_list(value)


class WebhookEnvelope(BaseModel):
    """Body of a webhook delivery.

    Entries stay raw here; each one is validated on its own by the router
    so a malformed entry never rejects its siblings.
    """

    model_config = ConfigDict(extra="allow")

    object: str = ""
    entry: list[Any] = Field(default_factory=list)

    @field_validator("object", mode="before")
    @classmethod
    def _coerce_object(cls, value: Any) -> str:
        return value if isinstance(value, str) else ""

    @field_validator("entry", mode="before")
    @classmethod
    def _coerce_entry(cls, value: Any) -> list[Any]:
        return _as_list(value)


# =============================================================================
# Typed events
# =============================================================================


class DirectMessageEvent(BaseModel):
    """A direct message sent to the connected account."""

    kind: Literal["message"] = "message"
    sender_id: str
    text: str
    timestamp: int
    recipient_id: str | None = None
    message_id: str | None = None


class CommentEvent(BaseModel):
    """A comment left on the connected account's media."""

    kind: Literal["comment"] = "comment"
    comment_id: str
    text: str
    author_id: str | None = None
    author_username: str | None = None
    media_id: str | None = None
    parent_id: str | None = None


class IgnoredChange(BaseModel):
    """A change whose field the router does not handle."""

    kind: Literal["ignored_field"] = "ignored_field"
    field: str | None = None


class DroppedEvent(BaseModel):
    """An event missing the fields required to act on it."""

    kind: Literal["dropped"] = "dropped"
    source: Literal["messaging", "comments"]
    reason: str


EntryEvent = Annotated[
    Union[DirectMessageEvent, CommentEvent, IgnoredChange, DroppedEvent],
    Field(discriminator="kind"),
]


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> str | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (str, int)):
        return str(value) or None
    return None


def parse_messaging_event(raw: dict[str, Any]) -> DirectMessageEvent | DroppedEvent:
    """Translate one ``messaging`` item into a typed event."""
    sender_id = _as_str(_as_dict(raw.get("sender")).get("id"))
    message = _as_dict(raw.get("message"))
    text = message.get("text")
    timestamp = raw.get("timestamp")

    if not sender_id:
        return DroppedEvent(source="messaging", reason="missing sender id")
    if not isinstance(text, str) or not text:
        return DroppedEvent(source="messaging", reason="missing text")
    if isinstance(timestamp, bool) or not isinstance(timestamp, int):
        return DroppedEvent(source="messaging", reason="missing timestamp")

    return DirectMessageEvent(
        sender_id=sender_id,
        text=text,
        timestamp=timestamp,
        recipient_id=_as_str(_as_dict(raw.get("recipient")).get("id")),
        message_id=_as_str(message.get("mid")),
    )


def parse_change_event(
    raw: dict[str, Any],
) -> CommentEvent | IgnoredChange | DroppedEvent:
    """Translate one ``changes`` item into a typed event."""
    field = raw.get("field")
    if field != COMMENTS_FIELD:
        return IgnoredChange(field=field if isinstance(field, str) else None)

    value = _as_dict(raw.get("value"))
    comment_id = _as_str(value.get("id"))
    text = value.get("text")

    if not comment_id:
        return DroppedEvent(source="comments", reason="missing comment id")
    if not isinstance(text, str) or not text:
        return DroppedEvent(source="comments", reason="missing text")

    author = _as_dict(value.get("from"))
    return CommentEvent(
        comment_id=comment_id,
        text=text,
        author_id=_as_str(author.get("id")),
        author_username=_as_str(author.get("username")),
        media_id=_as_str(_as_dict(value.get("media")).get("id")),
        parent_id=_as_str(value.get("parent_id")),
    )


def parse_entry_events(entry: WebhookEntry) -> list[EntryEvent]:
    """Typed events of an entry in payload order, messaging before changes."""
    events: list[EntryEvent] = []
    for raw in entry.messaging:
        events.append(parse_messaging_event(_as_dict(raw)))
    for raw in entry.changes:
        events.append(parse_change_event(_as_dict(raw)))
    return events

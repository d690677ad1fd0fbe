"""Routing of verified webhook deliveries to account-scoped handlers.

The router resolves every entry of a delivery to a connected instance and
hands its direct messages and comments to an ``EventHandler``. Entries are
independent: an unknown account, an incomplete event or a failing handler
is recorded in the ``BatchReport`` and processing moves on to the next one.
``dispatch`` never raises, so the HTTP layer can always acknowledge the
delivery.
"""

from __future__ import annotations

from typing import Annotated, Any, Callable, Literal, Protocol, Union

import logfire
from pydantic import BaseModel, Field, ValidationError

from src.models.instance_models import InstagramInstance
from src.models.webhook_models import (
    CommentEvent,
    DirectMessageEvent,
    DroppedEvent,
    IgnoredChange,
    WebhookEntry,
    WebhookEnvelope,
    parse_entry_events,
)

AccountResolver = Callable[[str], "InstagramInstance | None"]


class EventHandler(Protocol):
    """Receiver of the events the router extracts from a delivery."""

    async def on_direct_message(
        self,
        account: InstagramInstance,
        sender_id: str,
        text: str,
        timestamp: int,
    ) -> None:
        ...

    async def on_comment(
        self,
        account: InstagramInstance,
        comment_id: str,
        text: str,
        author_id: str | None,
        author_username: str | None,
        media_id: str | None,
    ) -> None:
        ...


class LoggingEventHandler:
    """Default handler: records each event.

    Replace it to trigger downstream workflows for direct messages and
    comments.
    """

    async def on_direct_message(
        self,
        account: InstagramInstance,
        sender_id: str,
        text: str,
        timestamp: int,
    ) -> None:
        logfire.info(
            "Direct message received",
            instance_id=account.id,
            account_id=account.instagram_account_id,
            sender_id=sender_id,
            message_length=len(text),
            timestamp=timestamp,
        )

    async def on_comment(
        self,
        account: InstagramInstance,
        comment_id: str,
        text: str,
        author_id: str | None,
        author_username: str | None,
        media_id: str | None,
    ) -> None:
        logfire.info(
            "Comment received",
            instance_id=account.id,
            account_id=account.instagram_account_id,
            comment_id=comment_id,
            author_id=author_id,
            author_username=author_username,
            media_id=media_id,
            comment_length=len(text),
        )


# =============================================================================
# Per-entry results
# =============================================================================


class EntryProcessed(BaseModel):
    """Entry resolved to an account; counts of what happened to its events."""

    kind: Literal["processed"] = "processed"
    account_id: str
    instance_id: str
    dispatched: int = 0
    dropped: int = 0
    ignored: int = 0
    failed: int = 0


class EntryUnresolved(BaseModel):
    """Entry skipped because its account is not known locally."""

    kind: Literal["unresolved"] = "unresolved"
    account_id: str | None
    reason: str


class EntryFailed(BaseModel):
    """Entry aborted by an unexpected error."""

    kind: Literal["failed"] = "failed"
    account_id: str | None
    error: str


EntryResult = Annotated[
    Union[EntryProcessed, EntryUnresolved, EntryFailed],
    Field(discriminator="kind"),
]


class BatchReport(BaseModel):
    """Outcome of routing one webhook delivery."""

    object: str
    ignored: bool = False
    results: list[EntryResult] = Field(default_factory=list)

    def count(self, kind: str) -> int:
        return sum(1 for result in self.results if result.kind == kind)

    @property
    def dispatched(self) -> int:
        return sum(
            result.dispatched
            for result in self.results
            if isinstance(result, EntryProcessed)
        )


class EventRouter:
    """Resolve webhook entries to accounts and dispatch their events.

    Example:
        >>> router = EventRouter(find_instance_by_account_id, LoggingEventHandler())
        >>> report = await router.dispatch(envelope)
        >>> report.count("unresolved")
        0
    """

    def __init__(
        self,
        resolve_account: AccountResolver,
        handler: EventHandler | None = None,
        object_type: str = "instagram",
    ):
        """Initialize the router.

        Args:
            resolve_account: Account Store lookup by provider account id.
                Returning None or raising both mean "unknown account".
            handler: Receiver for extracted events (LoggingEventHandler if
                not provided).
            object_type: Envelope ``object`` value that is routed.
        """
        self._resolve_account = resolve_account
        self._handler = handler or LoggingEventHandler()
        self._object_type = object_type

    async def dispatch(self, envelope: WebhookEnvelope) -> BatchReport:
        """Route every entry of a delivery, in payload order."""
        report = BatchReport(object=envelope.object)

        if envelope.object != self._object_type:
            report.ignored = True
            logfire.info(
                "Webhook delivery ignored",
                object=envelope.object,
                expected_object=self._object_type,
            )
            return report

        for entry in envelope.entry:
            report.results.append(await self._process_entry(entry))

        logfire.info(
            "Webhook delivery routed",
            object=envelope.object,
            entries=len(report.results),
            processed=report.count("processed"),
            unresolved=report.count("unresolved"),
            failed=report.count("failed"),
            dispatched=report.dispatched,
        )
        return report

    def _resolve(self, account_id: str) -> InstagramInstance | None:
        try:
            return self._resolve_account(account_id)
        except Exception as e:
            logfire.error(
                "Account lookup failed",
                account_id=account_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    async def _process_entry(self, raw_entry: Any) -> EntryResult:
        try:
            entry = WebhookEntry.model_validate(raw_entry)
        except ValidationError as e:
            logfire.warn(
                "Malformed webhook entry skipped",
                entry_type=type(raw_entry).__name__,
                error_count=e.error_count(),
            )
            return EntryUnresolved(account_id=None, reason="malformed entry")

        account_id = entry.id
        try:
            if not account_id:
                logfire.warn("Webhook entry without account id skipped")
                return EntryUnresolved(account_id=None, reason="missing account id")

            account = self._resolve(account_id)
            if account is None:
                logfire.warn(
                    "No instance found for webhook entry",
                    account_id=account_id,
                )
                return EntryUnresolved(account_id=account_id, reason="unknown account")

            result = EntryProcessed(account_id=account_id, instance_id=account.id)
            for event in parse_entry_events(entry):
                await self._dispatch_event(account, event, result)
            return result
        except Exception as e:
            logfire.error(
                "Error processing webhook entry",
                account_id=account_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return EntryFailed(account_id=account_id, error=str(e))

    async def _dispatch_event(
        self,
        account: InstagramInstance,
        event: DirectMessageEvent | CommentEvent | IgnoredChange | DroppedEvent,
        result: EntryProcessed,
    ) -> None:
        if isinstance(event, DroppedEvent):
            result.dropped += 1
            logfire.info(
                "Incomplete webhook event dropped",
                account_id=account.instagram_account_id,
                source=event.source,
                reason=event.reason,
            )
            return

        if isinstance(event, IgnoredChange):
            result.ignored += 1
            logfire.debug(
                "Unhandled webhook change ignored",
                account_id=account.instagram_account_id,
                field=event.field,
            )
            return

        try:
            if isinstance(event, DirectMessageEvent):
                await self._handler.on_direct_message(
                    account, event.sender_id, event.text, event.timestamp
                )
            else:
                await self._handler.on_comment(
                    account,
                    event.comment_id,
                    event.text,
                    event.author_id,
                    event.author_username,
                    event.media_id,
                )
            result.dispatched += 1
        except Exception as e:
            result.failed += 1
            logfire.error(
                "Event handler failed",
                account_id=account.instagram_account_id,
                event_kind=event.kind,
                error=str(e),
                error_type=type(e).__name__,
            )

"""Typed domain events for the Wikimedia recent-change feed.

This module defines the event shapes that the classifier produces and
that both delivery front ends hand to consumers. All models are
Pydantic-based with ``frozen=True`` so a delivered event can never be
mutated by one listener under the feet of another.

Wire compatibility:
    The upstream feed carries more attributes than modelled here
    (``notify_url`` and extension fields, for example), so unknown keys
    are ignored rather than forbidden. Validation is strict: a value of
    the wrong JSON type (``"123"`` for an id, ``"true"`` for a flag) is
    rejected, never coerced. The ``$schema`` key is not a valid
    identifier and is exposed as ``schema_uri``.

Tagged union:
    :data:`DomainEvent` is a closed discriminated union on the ``type``
    field. Pydantic checks the discriminant before mapping any other
    field, so an unknown ``type`` never costs a full validation pass.

Example:
    >>> edit = EditEvent.model_validate(payload)
    >>> edit.api_url()
    'https://en.wikipedia.org/w/api.php'
    >>> edit.diff_url()
    'https://en.wikipedia.org/w/index.php?title=Foo_Bar&diff=123'
    >>> edit.is_minor()
    False
"""

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class EventKind(str, Enum):
    """Discriminant values of the events this package understands.

    The feed also emits ``new``, ``categorize`` and ``external``
    changes; those are intentionally absent and are dropped by the
    classifier.
    """

    EDIT = "edit"
    LOG = "log"


# ---------------------------------------------------------------------------
# Nested blocks
# ---------------------------------------------------------------------------


class EventMeta(BaseModel):
    """Event-platform metadata attached to every feed message.

    Attributes:
        uri: Canonical URI of the changed page.
        id: Unique event id assigned by the event platform.
        dt: ISO-8601 event time.
        domain: Wiki domain the event originated from.
        stream: Stream name (``mediawiki.recentchange``).
        request_id: MediaWiki request id, when present.
        topic: Kafka topic the event was read from, when present.
        partition: Kafka partition, when present.
        offset: Kafka offset, when present.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", strict=True)

    uri: str
    id: str
    dt: str
    domain: str
    stream: str
    request_id: str | None = None
    topic: str | None = None
    partition: int | None = Field(default=None, ge=0)
    offset: int | None = Field(default=None, ge=0)


class EventLength(BaseModel):
    """Length in bytes of the new revision, and potentially the old one."""

    model_config = ConfigDict(frozen=True, extra="ignore", strict=True)

    old: int | None = Field(default=None, ge=0, description="Old length in bytes")
    new: int = Field(ge=0, description="New length in bytes")


class EventRevision(BaseModel):
    """Revision id of the new revision, and potentially the old one."""

    model_config = ConfigDict(frozen=True, extra="ignore", strict=True)

    old: int | None = Field(default=None, ge=0, description="Old revision id")
    new: int = Field(ge=0, description="New revision id")


# ---------------------------------------------------------------------------
# Event Models
# ---------------------------------------------------------------------------


class WikiEvent(BaseModel):
    """Fields and accessors shared by every recent-change event.

    Not delivered on its own; see :class:`EditEvent` and
    :class:`LogEvent`.

    Attributes:
        schema_uri: JSON schema of the message (wire name ``$schema``).
        meta: Event-platform metadata block.
        namespace: Namespace id of the page.
        title: Prefixed page title (includes the namespace name).
        comment: Edit summary / log reason as wikitext.
        parsedcomment: HTML rendering of ``comment``.
        timestamp: Unix timestamp of the change.
        user: User name of the actor.
        bot: Whether the change was flagged as made by a bot.
        server_url: Wiki URL with protocol, e.g.
            ``https://www.wikidata.org``. Non-empty.
        server_name: Wiki domain without protocol, e.g.
            ``en.wikipedia.org``. Non-empty.
        server_script_path: Base URL path of the wiki, e.g. ``/w``.
        wiki: Internal database name, e.g. ``enwiki``.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        strict=True,
        populate_by_name=True,
    )

    schema_uri: str = Field(alias="$schema")
    meta: EventMeta
    namespace: int
    title: str
    comment: str
    parsedcomment: str
    timestamp: int = Field(ge=0)
    user: str
    bot: bool
    server_url: str = Field(min_length=1)
    server_name: str = Field(min_length=1)
    server_script_path: str
    wiki: str

    def endpoint(self, script: str) -> str:
        """URL of a top-level PHP entry point of the wiki.

        Args:
            script: Entry point name without extension, e.g. ``"api"``.

        Returns:
            ``server_url + server_script_path + "/" + script + ".php"``.
        """
        return f"{self.server_url}{self.server_script_path}/{script}.php"

    def api_url(self) -> str:
        """URL of the wiki's ``api.php`` (Action API) endpoint."""
        return self.endpoint("api")


class EditEvent(WikiEvent):
    """A page edit.

    ``minor`` and ``patrolled`` are only sent by some wikis; use
    :meth:`is_minor` and :meth:`is_patrolled`, which treat an absent
    flag as ``False``.

    Attributes:
        type: Always ``"edit"``.
        id: Id of the change as assigned by the wiki.
        minor: Raw minor flag, ``None`` when absent.
        patrolled: Raw patrolled flag, ``None`` when absent.
        length: Old/new byte lengths.
        revision: Old/new revision ids.
    """

    type: Literal["edit"]
    id: int = Field(ge=0)
    minor: bool | None = None
    patrolled: bool | None = None
    length: EventLength
    revision: EventRevision

    @property
    def kind(self) -> EventKind:
        return EventKind.EDIT

    def is_minor(self) -> bool:
        """Whether the edit is marked as minor."""
        return bool(self.minor)

    def is_patrolled(self) -> bool:
        """Whether the edit has been marked as patrolled."""
        return bool(self.patrolled)

    def title_for_url(self) -> str:
        """Title with spaces replaced by underscores, as used in URLs."""
        return self.title.replace(" ", "_")

    def diff_url(self) -> str:
        """Human-readable URL of the diff for this edit.

        Example:
            >>> edit.diff_url()
            'https://en.wikipedia.org/w/index.php?title=Foo_Bar&diff=123'
        """
        return (
            f"{self.endpoint('index')}"
            f"?title={self.title_for_url()}&diff={self.revision.new}"
        )

    def short_diff_url(self) -> str:
        """Shortest URL of the diff for this edit."""
        return f"{self.server_url}?diff={self.revision.new}"


class LogEvent(WikiEvent):
    """An administrative log entry (block, move, upload, ...).

    Logs are not revisions, so there is no length or revision pair.

    Attributes:
        type: Always ``"log"``.
        log_id: Log entry id.
        log_type: Log type, e.g. ``"block"``.
        log_action: Log action, e.g. ``"reblock"``.
        log_params: Action-specific parameters, any JSON value.
        log_action_comment: Human-readable description of the action.
    """

    type: Literal["log"]
    log_id: int = Field(ge=0)
    log_type: str
    log_action: str
    log_params: Any
    log_action_comment: str

    @property
    def kind(self) -> EventKind:
        return EventKind.LOG


# ---------------------------------------------------------------------------
# Tagged union
# ---------------------------------------------------------------------------

DomainEvent = Annotated[
    Union[EditEvent, LogEvent],
    Field(discriminator="type"),
]
"""Closed union of every event variant delivered to consumers."""

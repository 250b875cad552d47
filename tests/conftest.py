"""Shared fixtures: realistic recent-change payloads as the feed sends them."""

import copy
import json
from typing import Any

import pytest

# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

_EDIT_PAYLOAD: dict[str, Any] = {
    "$schema": "/mediawiki/recentchange/1.0.0",
    "meta": {
        "uri": "https://en.wikipedia.org/wiki/Foo_Bar",
        "request_id": "5b1b4e0a-5bd2-4a39-9a0b-2d5f8d1b6c11",
        "id": "0c5bf0b9-1a36-4f24-8b3e-5c1c43d1b0f2",
        "dt": "2024-03-01T12:00:00Z",
        "domain": "en.wikipedia.org",
        "stream": "mediawiki.recentchange",
        "topic": "eqiad.mediawiki.recentchange",
        "partition": 0,
        "offset": 5120000001,
    },
    "id": 1739123456,
    "type": "edit",
    "namespace": 0,
    "title": "Foo Bar",
    "title_url": "https://en.wikipedia.org/wiki/Foo_Bar",
    "comment": "copyedit",
    "parsedcomment": "copyedit",
    "timestamp": 1709294400,
    "user": "ExampleUser",
    "bot": False,
    "notify_url": "https://en.wikipedia.org/w/index.php?diff=123&oldid=122",
    "minor": True,
    "patrolled": False,
    "length": {"old": 1024, "new": 1100},
    "revision": {"old": 122, "new": 123},
    "server_url": "https://en.wikipedia.org",
    "server_name": "en.wikipedia.org",
    "server_script_path": "/w",
    "wiki": "enwiki",
}

_LOG_PAYLOAD: dict[str, Any] = {
    "$schema": "/mediawiki/recentchange/1.0.0",
    "meta": {
        "uri": "https://www.wikidata.org/wiki/User:Vandal",
        "request_id": "8f3a1c2e-1111-4c1e-9a6f-0d2c3e4f5a6b",
        "id": "4d9e8f7a-2222-4b3c-8d1e-6f5a4b3c2d1e",
        "dt": "2024-03-01T12:00:05Z",
        "domain": "www.wikidata.org",
        "stream": "mediawiki.recentchange",
        "topic": "eqiad.mediawiki.recentchange",
        "partition": 0,
        "offset": 5120000002,
    },
    "type": "log",
    "namespace": 2,
    "title": "User:Vandal",
    "comment": "Vandalism",
    "parsedcomment": "Vandalism",
    "timestamp": 1709294405,
    "user": "AdminUser",
    "bot": False,
    "log_id": 987654,
    "log_type": "block",
    "log_action": "block",
    "log_params": {"duration": "1 week", "flags": ["nocreate"]},
    "log_action_comment": "blocked User:Vandal with an expiration time of 1 week",
    "server_url": "https://www.wikidata.org",
    "server_name": "www.wikidata.org",
    "server_script_path": "/w",
    "wiki": "wikidatawiki",
}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def edit_payload() -> dict[str, Any]:
    """Return a fresh copy of an en.wikipedia.org edit payload."""
    return copy.deepcopy(_EDIT_PAYLOAD)


@pytest.fixture()
def log_payload() -> dict[str, Any]:
    """Return a fresh copy of a www.wikidata.org block log payload."""
    return copy.deepcopy(_LOG_PAYLOAD)


@pytest.fixture()
def edit_line(edit_payload: dict[str, Any]) -> str:
    """Return the edit payload serialised as one feed line."""
    return json.dumps(edit_payload)


@pytest.fixture()
def log_line(log_payload: dict[str, Any]) -> str:
    """Return the log payload serialised as one feed line."""
    return json.dumps(log_payload)

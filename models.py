#!/usr/bin/env python3
"""
Data model for Miniflux entries, webhook payloads and batch outcomes.

Entries are transient: they are decoded fresh from each API response or
webhook body and never cached.
"""

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from errors import InvalidPayloadError


@dataclass(frozen=True)
class Feed:
    site_url: str

    @classmethod
    def from_dict(cls, data: Any) -> Optional["Feed"]:
        """Decode a feed object; None or a feed without a string site_url yields None."""
        if data is None:
            return None
        if not isinstance(data, dict):
            raise InvalidPayloadError(f"Feed must be an object, got {type(data).__name__}")
        site_url = data.get("site_url")
        if not isinstance(site_url, str) or not site_url:
            return None
        return cls(site_url=site_url)


@dataclass(frozen=True)
class Entry:
    id: int
    content: str
    feed: Optional[Feed] = None

    @property
    def site_url(self) -> Optional[str]:
        return self.feed.site_url if self.feed else None

    @classmethod
    def from_dict(cls, data: Any) -> "Entry":
        if not isinstance(data, dict):
            raise InvalidPayloadError(f"Entry must be an object, got {type(data).__name__}")
        entry_id = data.get("id")
        # bool is an int subclass; reject it explicitly
        if not isinstance(entry_id, int) or isinstance(entry_id, bool):
            raise InvalidPayloadError(f"Entry id must be an integer, got {entry_id!r}")
        content = data.get("content")
        if not isinstance(content, str):
            raise InvalidPayloadError(f"Entry {entry_id} content must be a string")
        return cls(id=entry_id, content=content, feed=Feed.from_dict(data.get("feed")))

    def with_feed(self, feed: Optional[Feed]) -> "Entry":
        """Return a copy carrying `feed` when this entry has none of its own."""
        if self.feed is not None or feed is None:
            return self
        return Entry(id=self.id, content=self.content, feed=feed)


def parse_entries(data: Any) -> List[Entry]:
    """Decode the `entries` array of a Miniflux response or webhook body."""
    if not isinstance(data, dict):
        raise InvalidPayloadError("Expected a JSON object")
    raw_entries = data.get("entries")
    if raw_entries is None:
        return []
    if not isinstance(raw_entries, list):
        raise InvalidPayloadError("'entries' must be an array")
    return [Entry.from_dict(item) for item in raw_entries]


@dataclass(frozen=True)
class WebhookPayload:
    event_type: str
    feed: Optional[Feed]
    entries: List[Entry] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "WebhookPayload":
        if not isinstance(data, dict):
            raise InvalidPayloadError("Webhook body must be a JSON object")
        event_type = data.get("event_type")
        if not isinstance(event_type, str):
            raise InvalidPayloadError("'event_type' must be a string")
        feed = Feed.from_dict(data.get("feed"))
        # Only new_entries events carry entries we care about
        entries = parse_entries(data) if event_type == "new_entries" else []
        return cls(event_type=event_type, feed=feed, entries=entries)


class EntryOutcome(str, Enum):
    SKIPPED_ALREADY_SUMMARIZED = "skipped_already_summarized"
    SKIPPED_NOT_WHITELISTED = "skipped_not_whitelisted"
    SKIPPED_EMPTY_SUMMARY = "skipped_empty_summary"
    SUMMARIZATION_FAILED = "summarization_failed"
    UPDATE_FAILED = "update_failed"
    UPDATED = "updated"


class BatchMode(str, Enum):
    """How a batch reacts to failed updates.

    BEST_EFFORT collects every outcome and never raises. FAIL_FAST also lets
    every admitted unit finish, then raises BatchUpdateError if any update failed.
    """

    BEST_EFFORT = "best_effort"
    FAIL_FAST = "fail_fast"


@dataclass(frozen=True)
class EntryResult:
    entry_id: int
    outcome: EntryOutcome
    error: Optional[str] = None


@dataclass
class BatchReport:
    """Per-entry outcomes of one batch, in batch order."""

    results: List[EntryResult] = field(default_factory=list)
    peak_concurrency: int = 0

    def counts(self) -> Dict[str, int]:
        return dict(Counter(result.outcome.value for result in self.results))

    @property
    def failed(self) -> List[EntryResult]:
        return [r for r in self.results if r.outcome is EntryOutcome.UPDATE_FAILED]

    @property
    def updated(self) -> List[EntryResult]:
        return [r for r in self.results if r.outcome is EntryOutcome.UPDATED]

    def outcome_for(self, entry_id: int) -> Optional[EntryOutcome]:
        for result in self.results:
            if result.entry_id == entry_id:
                return result.outcome
        return None

import asyncio

import pytest

from config import Config, MinifluxSettings, OpenAISettings
from errors import FeedSourceError, SummarizationError
from models import Entry, Feed

WHITELISTED = "https://blog.example.com/"
OTHER_SITE = "https://elsewhere.example.org/"


class OperationTracker:
    """Counts summarize/update calls that are outstanding at the same time."""

    def __init__(self):
        self.active = 0
        self.peak = 0

    def enter(self):
        self.active += 1
        self.peak = max(self.peak, self.active)

    def exit(self):
        self.active -= 1


class FakeSummarizer:
    def __init__(self, tracker, reply="一段摘要", delay=0.01, fail_for=(), replies=None):
        self.tracker = tracker
        self.reply = reply
        self.delay = delay
        self.fail_for = set(fail_for)
        self.replies = replies or {}
        self.calls = []

    async def __call__(self, messages):
        self.calls.append(messages)
        self.tracker.enter()
        try:
            await asyncio.sleep(self.delay)
            content = messages[-1]["content"]
            for marker in self.fail_for:
                if marker in content:
                    raise SummarizationError("Error: 'upstream exploded'", status=500, body="upstream exploded")
            for marker, reply in self.replies.items():
                if marker in content:
                    return reply
            return self.reply
        finally:
            self.tracker.exit()


class FakeFeedClient:
    def __init__(self, tracker, entries=(), fail_ids=(), delay=0.01, fetch_error=None):
        self.tracker = tracker
        self.entries = list(entries)
        self.fail_ids = set(fail_ids)
        self.delay = delay
        self.fetch_error = fetch_error
        self.updates = {}
        self.fetch_limits = []

    async def get_unread_entries(self, limit=100):
        self.fetch_limits.append(limit)
        if self.fetch_error is not None:
            raise self.fetch_error
        return list(self.entries)

    async def update_entry(self, entry_id, content):
        self.tracker.enter()
        try:
            await asyncio.sleep(self.delay)
            if entry_id in self.fail_ids:
                raise FeedSourceError(f"Miniflux update of entry {entry_id} failed with HTTP 500", status=500, body="nope")
            self.updates[entry_id] = content
        finally:
            self.tracker.exit()


def make_entry(entry_id, content=None, site=WHITELISTED):
    return Entry(
        id=entry_id,
        content=content if content is not None else f"<p>Article {entry_id} body</p>",
        feed=Feed(site_url=site) if site else None,
    )


@pytest.fixture
def config(tmp_path):
    return Config(
        miniflux=MinifluxSettings(url="http://miniflux.test", username="reader", password="hunter2"),
        openai=OpenAISettings(url="http://llm.test", token="sk-test-token", model="gpt-test"),
        whitelist=frozenset({WHITELISTED}),
        webhook_secret="webhook-secret",
        prompt_path=str(tmp_path / "missing-prompt.yaml"),
    )


@pytest.fixture
def tracker():
    return OperationTracker()


@pytest.fixture
def summarizer(tracker):
    return FakeSummarizer(tracker)


@pytest.fixture
def feed_client(tracker):
    return FakeFeedClient(tracker)

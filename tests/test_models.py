import pytest

from errors import BatchUpdateError, InvalidPayloadError
from models import BatchReport, Entry, EntryOutcome, EntryResult, Feed, WebhookPayload, parse_entries


def test_entry_from_dict():
    entry = Entry.from_dict({"id": 5, "content": "<p>x</p>", "feed": {"site_url": "https://s/", "title": "S"}})
    assert entry == Entry(id=5, content="<p>x</p>", feed=Feed("https://s/"))
    assert Entry.from_dict({"id": 6, "content": ""}).site_url is None


@pytest.mark.parametrize("raw", [
    {"id": "5", "content": "x"},
    {"id": True, "content": "x"},
    {"content": "x"},
    {"id": 5, "content": None},
    {"id": 5, "content": "x", "feed": "https://s/"},
    [],
])
def test_entry_from_dict_rejects_bad_shapes(raw):
    with pytest.raises(InvalidPayloadError):
        Entry.from_dict(raw)


def test_with_feed_only_fills_missing_feed():
    own = Entry(1, "c", Feed("https://own/"))
    bare = Entry(2, "c")
    fallback = Feed("https://payload/")
    assert own.with_feed(fallback).site_url == "https://own/"
    assert bare.with_feed(fallback).site_url == "https://payload/"
    assert bare.with_feed(None) is bare


def test_parse_entries():
    assert parse_entries({"total": 0, "entries": None}) == []
    assert [e.id for e in parse_entries({"entries": [{"id": 1, "content": "a"}]})] == [1]
    with pytest.raises(InvalidPayloadError):
        parse_entries({"entries": {"id": 1}})
    with pytest.raises(InvalidPayloadError):
        parse_entries([])


def test_webhook_payload():
    payload = WebhookPayload.from_dict({
        "event_type": "new_entries",
        "feed": {"id": 3, "site_url": "https://s/"},
        "entries": [{"id": 1, "content": "a"}],
    })
    assert payload.feed == Feed("https://s/")
    assert [e.id for e in payload.entries] == [1]

    other = WebhookPayload.from_dict({"event_type": "save_entry", "entry": {"id": 1}})
    assert other.entries == []
    assert other.feed is None

    with pytest.raises(InvalidPayloadError):
        WebhookPayload.from_dict({"feed": {}})


def test_batch_report_and_error():
    report = BatchReport(results=[
        EntryResult(1, EntryOutcome.UPDATED),
        EntryResult(2, EntryOutcome.UPDATE_FAILED, "HTTP 500"),
        EntryResult(3, EntryOutcome.UPDATE_FAILED, "HTTP 500"),
    ])
    assert report.counts() == {"updated": 1, "update_failed": 2}
    assert [r.entry_id for r in report.updated] == [1]
    assert report.outcome_for(4) is None

    error = BatchUpdateError(report)
    assert str(error) == "Failed to update 2 entries: [2, 3]"
    assert error.report is report

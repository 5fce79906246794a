from __future__ import annotations

import pytest

from feed_indexer.engine import decode_timeline_payload, extract_source_profile, parse_items_from_html
from feed_indexer.engine.extract import parse_metric_text

FIXED_NOW = 1_234_567_890_000

FEED_HTML = """
<html><body>
<div data-testid="UserName"><div><span><span>Alice Example</span></span></div></div>
<div data-testid="UserAvatar-Container-alice">
  <img src="https://pbs.example.com/profile_images/1/alice_normal_200x200.jpg">
</div>
<article data-testid="tweet">
  <a href="/alice/status/1001"><time datetime="2024-03-01T12:00:00.000Z">Mar 1</time></a>
  <div data-testid="tweetText">First post about Python</div>
  <div data-testid="tweetPhoto"><img src="https://pbs.example.com/media/a.jpg"></div>
  <div data-testid="reply"><span>12</span></div>
  <div data-testid="retweet"><span>1,204</span></div>
  <div data-testid="like"><span>3.4K</span></div>
  <a href="/alice/status/1001/analytics"><span>2M</span></a>
</article>
<article data-testid="tweet">
  <div data-testid="socialContext">Alice reposted</div>
  <a href="/bob/status/1002"><time datetime="2024-03-02T08:30:00Z">Mar 2</time></a>
  <div data-testid="tweetText">Reposted words</div>
  <div data-testid="unlike"><span>7</span></div>
</article>
<article data-testid="tweet">
  <a href="/alice/status/1003">link</a>
  <div data-testid="tweetText">My take</div>
  <div role="link">
    <a href="/carol/status/900">quoted</a>
    <div data-testid="tweetText">Original quoted text</div>
  </div>
</article>
<article data-testid="tweet">
  <div data-testid="tweetText">Promoted entry without a permalink</div>
</article>
</body></html>
"""


def _fixed_now() -> int:
    return FIXED_NOW


def test_parse_items_from_html_extracts_fields() -> None:
    items = parse_items_from_html(FEED_HTML, "alice", now=_fixed_now)
    assert [item.id for item in items] == ["1001", "1002", "1003"]

    first, repost, quote = items
    assert first.source_handle == "alice"
    assert first.text == "First post about Python"
    assert first.timestamp == 1_709_294_400_000
    assert (first.likes, first.reposts, first.replies, first.views) == (3_400, 1_204, 12, 2_000_000)
    assert first.has_media
    assert first.media_urls == ("https://pbs.example.com/media/a.jpg",)
    assert not first.is_repost and not first.is_quote
    assert first.quoted_item_id is None

    assert repost.is_repost
    assert repost.likes == 7
    assert not repost.has_media

    assert quote.is_quote
    assert quote.quoted_item_id == "900"
    assert quote.text == "My take"
    assert quote.timestamp == FIXED_NOW


def test_parse_items_from_html_handles_empty_markup() -> None:
    assert parse_items_from_html("", "alice") == []
    assert parse_items_from_html("<div>no feed here</div>", "alice") == []


def test_extract_source_profile() -> None:
    display_name, avatar_url = extract_source_profile(FEED_HTML, "alice")
    assert display_name == "Alice Example"
    assert avatar_url == "https://pbs.example.com/profile_images/1/alice_normal_400x400.jpg"
    assert extract_source_profile("<html></html>", "alice") == (None, None)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("42", 42),
        ("1,204", 1204),
        ("3.4K", 3400),
        ("12k", 12000),
        ("2M", 2_000_000),
        ("1.5M", 1_500_000),
        ("", 0),
        ("n/a", 0),
    ],
)
def test_parse_metric_text(raw: str, expected: int) -> None:
    assert parse_metric_text(raw) == expected


def _tweet(rest_id: str, text: str, **legacy) -> dict:
    body = {
        "id_str": rest_id,
        "full_text": text,
        "created_at": "Fri Mar 01 12:00:00 +0000 2024",
        "favorite_count": 5,
        "retweet_count": 2,
        "reply_count": 1,
        "entities": {},
    }
    body.update(legacy)
    return {
        "__typename": "Tweet",
        "rest_id": rest_id,
        "legacy": body,
        "views": {"count": "321"},
    }


def _entry(result: dict) -> dict:
    return {"content": {"itemContent": {"tweet_results": {"result": result}}}}


def _timeline(*entries: dict, module_items: list | None = None) -> dict:
    instructions = [{"type": "TimelineAddEntries", "entries": list(entries)}]
    if module_items:
        instructions.append({"type": "TimelineAddToModule", "moduleItems": module_items})
    return {
        "data": {"user": {"result": {"timeline_v2": {"timeline": {"instructions": instructions}}}}}
    }


def test_decode_timeline_payload_reads_entries() -> None:
    payload = _timeline(
        _entry(
            _tweet(
                "11",
                "with media",
                entities={"media": [{"media_url_https": "https://img/x.jpg"}]},
                is_quote_status=True,
                quoted_status_id_str="10",
            )
        ),
        _entry({"__typename": "TweetWithVisibilityResults", "tweet": _tweet("12", "limited")}),
        module_items=[{"item": {"itemContent": {"tweet_results": {"result": _tweet("13", "threaded")}}}}],
    )
    items = decode_timeline_payload(payload, "alice", now=_fixed_now)
    assert [item.id for item in items] == ["11", "12", "13"]

    first = items[0]
    assert first.timestamp == 1_709_294_400_000
    assert (first.likes, first.reposts, first.replies, first.views) == (5, 2, 1, 321)
    assert first.has_media and first.media_urls == ("https://img/x.jpg",)
    assert first.is_quote and first.quoted_item_id == "10"
    assert items[1].text == "limited"


def test_decode_timeline_payload_drops_malformed_entries() -> None:
    payload = _timeline(
        _entry(_tweet("21", "good")),
        _entry({"__typename": "TweetTombstone"}),
        _entry({"__typename": "Tweet", "rest_id": "22"}),
        _entry(_tweet("23", "bad counters", favorite_count="lots")),
        _entry(_tweet("24", "bad date", created_at="yesterday")),
        {"content": {"entryType": "TimelineTimelineCursor", "value": "abc"}},
        "not even a mapping",
    )
    items = decode_timeline_payload(payload, "alice", now=_fixed_now)
    assert [item.id for item in items] == ["21", "24"]
    assert items[1].timestamp == FIXED_NOW


@pytest.mark.parametrize("payload", [None, [], "text", {}, {"data": "nope"}, {"data": {"user": None}}])
def test_decode_timeline_payload_rejects_bad_envelopes(payload) -> None:
    assert decode_timeline_payload(payload, "alice") == []

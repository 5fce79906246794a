"""Turn rendered feed markup and structured timeline payloads into items."""

from __future__ import annotations

import re
import time
from datetime import datetime, timezone
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from selectolax.parser import HTMLParser, Node

from .detect import item_id_from_url
from .models import Item

ITEM_SELECTOR = '[data-testid="tweet"]'

_METRIC_PATTERN = re.compile(r"^[\d,.KkMm]+$")
_AVATAR_SIZE = re.compile(r"_\d+x\d+\.")
_ENGAGEMENT_SELECTORS = {
    "likes": '[data-testid="like"], [data-testid="unlike"]',
    "reposts": '[data-testid="retweet"]',
    "replies": '[data-testid="reply"]',
    "views": 'a[href*="/analytics"]',
}


def _now_ms() -> int:
    return int(time.time() * 1000)


def parse_metric_text(text: str) -> int:
    """Parse compact counters such as ``1,204``, ``3.4K`` or ``2M``."""

    cleaned = text.replace(",", "").strip().upper()
    try:
        if cleaned.endswith("K"):
            return round(float(cleaned[:-1]) * 1_000)
        if cleaned.endswith("M"):
            return round(float(cleaned[:-1]) * 1_000_000)
        return int(float(cleaned)) if "." in cleaned else int(cleaned)
    except ValueError:
        return 0


def _parse_iso_ms(value: str | None) -> int | None:
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


# ----------------------------------------------------------------------
# Rendered markup
# ----------------------------------------------------------------------
def _engagement(article: Node, selector: str) -> int:
    control = article.css_first(selector)
    if control is None:
        return 0
    for span in control.css("span"):
        text = span.text(strip=True)
        if text and _METRIC_PATTERN.match(text):
            return parse_metric_text(text)
    return 0


def parse_item_node(
    article: Node, handle: str, now: Callable[[], int] = _now_ms
) -> Item | None:
    """Build an item from one rendered feed entry, or ``None`` without an id."""

    status_links = [
        link
        for link in article.css('a[href*="/status/"]')
        if item_id_from_url(link.attributes.get("href") or "")
    ]
    if not status_links:
        return None
    item_id = item_id_from_url(status_links[0].attributes.get("href") or "")

    text_nodes = article.css('[data-testid="tweetText"]')
    time_node = article.css_first("time[datetime]")
    timestamp = _parse_iso_ms(time_node.attributes.get("datetime")) if time_node else None

    media_urls = [
        src
        for img in article.css('[data-testid="tweetPhoto"] img')
        if (src := img.attributes.get("src"))
    ]
    social = article.css_first('[data-testid="socialContext"]')
    # 引用条目的链接嵌在卡片内，跳过指向自身的链接（如 /analytics）
    quoted_id = next(
        (
            linked
            for link in status_links[1:]
            if (linked := item_id_from_url(link.attributes.get("href") or "")) != item_id
        ),
        None,
    )

    counters = {name: _engagement(article, selector) for name, selector in _ENGAGEMENT_SELECTORS.items()}
    return Item(
        id=item_id,
        source_handle=handle,
        text=text_nodes[0].text() if text_nodes else "",
        timestamp=timestamp if timestamp is not None else now(),
        has_media=article.css_first('[data-testid="tweetPhoto"]') is not None,
        media_urls=tuple(media_urls),
        is_repost=social is not None and "reposted" in social.text(),
        is_quote=len(text_nodes) > 1,
        quoted_item_id=quoted_id,
        **counters,
    )


def parse_items_from_html(
    html: str, handle: str, now: Callable[[], int] = _now_ms
) -> list[Item]:
    """Extract every identifiable item currently rendered in ``html``.

    Entries without a status link are skipped; markup without any entries
    simply yields an empty list.
    """

    parser = HTMLParser(html or "")
    items: list[Item] = []
    for article in parser.css(ITEM_SELECTOR):
        item = parse_item_node(article, handle, now)
        if item is not None:
            items.append(item)
    return items


def extract_source_profile(html: str, handle: str) -> tuple[str | None, str | None]:
    """Return ``(display_name, avatar_url)`` when the profile header is rendered."""

    parser = HTMLParser(html or "")
    avatar_url = None
    avatar = parser.css_first(
        f'[data-testid="UserAvatar-Container-{handle}"] img[src*="profile_images"]'
    )
    if avatar is not None and avatar.attributes.get("src"):
        avatar_url = _AVATAR_SIZE.sub("_400x400.", avatar.attributes["src"], count=1)

    display_name = None
    name_block = parser.css_first('[data-testid="UserName"]')
    if name_block is not None:
        span = name_block.css_first("span > span")
        if span is not None and span.text(strip=True):
            display_name = span.text(strip=True)
    return display_name, avatar_url


# ----------------------------------------------------------------------
# Structured timeline payload
# ----------------------------------------------------------------------
class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class _Media(_Lenient):
    media_url_https: str = ""


class _Entities(_Lenient):
    media: list[_Media] = Field(default_factory=list)


class _Legacy(_Lenient):
    id_str: str | None = None
    full_text: str = ""
    created_at: str | None = None
    favorite_count: int = 0
    retweet_count: int = 0
    reply_count: int = 0
    entities: _Entities = Field(default_factory=_Entities)
    is_quote_status: bool = False
    quoted_status_id_str: str | None = None
    retweeted_status_result: dict[str, Any] | None = None


class _Views(_Lenient):
    count: str | int | None = None


class _TweetResult(_Lenient):
    typename: str | None = Field(default=None, alias="__typename")
    rest_id: str | None = None
    legacy: _Legacy | None = None
    views: _Views = Field(default_factory=_Views)
    tweet: "_TweetResult | None" = None


_TweetResult.model_rebuild()


class _TweetResults(_Lenient):
    result: _TweetResult | None = None


class _ItemContent(_Lenient):
    tweet_results: _TweetResults | None = None


class _ContentHolder(_Lenient):
    item_content: _ItemContent | None = Field(default=None, alias="itemContent")


class _Entry(_Lenient):
    content: _ContentHolder | None = None
    item: _ContentHolder | None = None

    def result(self) -> _TweetResult | None:
        for holder in (self.content, self.item):
            if holder and holder.item_content and holder.item_content.tweet_results:
                result = holder.item_content.tweet_results.result
                if result is not None:
                    return result
        return None


class _Instruction(_Lenient):
    entries: list[Any] = Field(default_factory=list)
    module_items: list[Any] = Field(default_factory=list, alias="moduleItems")


class _Timeline(_Lenient):
    instructions: list[_Instruction] = Field(default_factory=list)


class _TimelineHolder(_Lenient):
    timeline: _Timeline | None = None


class _UserResultBody(_Lenient):
    timeline_v2: _TimelineHolder | None = None
    timeline: _TimelineHolder | None = None


class _UserResult(_Lenient):
    result: _UserResultBody | None = None


class _Data(_Lenient):
    user: _UserResult | None = None
    user_result: _UserResult | None = None

    def timeline(self) -> _Timeline | None:
        body = self.user.result if self.user else None
        for holder in (body.timeline_v2 if body else None, body.timeline if body else None):
            if holder and holder.timeline:
                return holder.timeline
        alt = self.user_result.result if self.user_result else None
        if alt and alt.timeline_v2 and alt.timeline_v2.timeline:
            return alt.timeline_v2.timeline
        return None


class _Payload(_Lenient):
    data: _Data | None = None


_TIMESTAMP_FORMAT = "%a %b %d %H:%M:%S %z %Y"


def _decode_result(result: _TweetResult, handle: str, now: Callable[[], int]) -> Item | None:
    # 变体：Tweet 直接可用；TweetWithVisibilityResults 需解包；其他（如墓碑）丢弃
    if result.typename == "TweetWithVisibilityResults" or (result.legacy is None and result.tweet):
        result = result.tweet or result
    if result.typename not in (None, "Tweet") or result.legacy is None:
        return None
    legacy = result.legacy
    item_id = legacy.id_str or result.rest_id
    if not item_id:
        return None
    timestamp = now()
    if legacy.created_at:
        try:
            timestamp = int(datetime.strptime(legacy.created_at, _TIMESTAMP_FORMAT).timestamp() * 1000)
        except ValueError:
            timestamp = now()
    try:
        views = int(result.views.count or 0)
    except (TypeError, ValueError):
        views = 0
    media = [m.media_url_https for m in legacy.entities.media if m.media_url_https]
    return Item(
        id=item_id,
        source_handle=handle,
        text=legacy.full_text,
        timestamp=timestamp,
        likes=legacy.favorite_count,
        reposts=legacy.retweet_count,
        replies=legacy.reply_count,
        views=views,
        has_media=bool(legacy.entities.media),
        media_urls=tuple(media),
        is_repost=legacy.retweeted_status_result is not None,
        is_quote=legacy.is_quote_status,
        quoted_item_id=legacy.quoted_status_id_str,
    )


def decode_timeline_payload(
    data: Any, handle: str, now: Callable[[], int] = _now_ms
) -> list[Item]:
    """Decode a structured timeline response into items.

    Entries that do not decode are dropped individually. A payload whose
    envelope cannot be decoded at all yields an empty list.
    """

    if not isinstance(data, dict):
        return []
    try:
        payload = _Payload.model_validate(data)
    except ValidationError:
        return []
    timeline = payload.data.timeline() if payload.data else None
    if timeline is None:
        return []

    items: list[Item] = []
    for instruction in timeline.instructions:
        for raw_entry in instruction.entries or instruction.module_items:
            try:
                entry = _Entry.model_validate(raw_entry)
                result = entry.result()
                item = _decode_result(result, handle, now) if result else None
            except (ValidationError, ValueError, TypeError):
                continue
            if item is not None:
                items.append(item)
    return items


__all__ = [
    "ITEM_SELECTOR",
    "decode_timeline_payload",
    "extract_source_profile",
    "parse_item_node",
    "parse_items_from_html",
    "parse_metric_text",
]

"""Downloading and parsing RSS feeds."""

from __future__ import annotations

import html
import urllib.error
import urllib.request
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field

USER_AGENT = "gator"


class FeedError(Exception):
    """A feed could not be downloaded or parsed."""


@dataclass
class RSSItem:
    title: str = ""
    link: str = ""
    description: str = ""
    pub_date: str = ""


@dataclass
class RSSFeed:
    title: str = ""
    link: str = ""
    description: str = ""
    items: list[RSSItem] = field(default_factory=list)


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child(element: ET.Element, name: str) -> ET.Element | None:
    return next((c for c in element if _local(c.tag) == name), None)


def _text(element: ET.Element, name: str) -> str:
    child = _child(element, name)
    if child is None:
        return ""
    return "".join(child.itertext())


def parse_feed(data: bytes | str) -> RSSFeed:
    """Parse an RSS document, unescaping HTML entities in titles and descriptions."""
    try:
        root = ET.fromstring(data)
    except ET.ParseError as exc:
        raise FeedError(f"failed to unmarshal {exc}") from exc
    channel = _child(root, "channel")
    if channel is None:
        return RSSFeed()
    items = [
        RSSItem(
            title=html.unescape(_text(item, "title")),
            link=_text(item, "link"),
            description=html.unescape(_text(item, "description")),
            pub_date=_text(item, "pubDate"),
        )
        for item in channel
        if _local(item.tag) == "item"
    ]
    return RSSFeed(
        title=html.unescape(_text(channel, "title")),
        link=_text(channel, "link"),
        description=html.unescape(_text(channel, "description")),
        items=items,
    )


def fetch_feed(url: str, timeout: float | None = 30.0) -> RSSFeed:
    """Download the feed at ``url`` and parse it."""
    try:
        request = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
    except ValueError as exc:
        raise FeedError(f"failed to fetch {exc}") from exc
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            body = response.read()
            status = response.status
    except urllib.error.HTTPError as exc:
        raise FeedError(f"response failed with status code: {exc.code} ") from exc
    except (urllib.error.URLError, OSError, ValueError) as exc:
        raise FeedError(f"failed to send request: {exc}") from exc
    if status > 299:
        raise FeedError(f"response failed with status code: {status} ")
    return parse_feed(body)
from __future__ import annotations

import logging
from datetime import datetime, timezone
from time import struct_time
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


def _parsed_time(value: Optional[struct_time]) -> Optional[datetime]:
    # feedparser normalizes every parsed date to UTC
    if value is None:
        return None
    return datetime(*value[:6], tzinfo=timezone.utc)


def _author_name(entry: dict) -> Optional[str]:
    if author_detail := entry.get("author_detail", None):
        return author_detail.get("name", None)
    return entry.get("author", None)


class FeedItem(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    content: Optional[str] = None
    link: Optional[str] = None
    published: Optional[str] = None
    published_parsed: Optional[datetime] = None
    updated: Optional[str] = None
    updated_parsed: Optional[datetime] = None
    guid: Optional[str] = None
    author: Optional[str] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @staticmethod
    def from_feed_entry(entry: dict) -> FeedItem:
        content = None
        if contents := entry.get("content", None):
            content = contents[0].get("value", None)
        return FeedItem(
            title=entry.get("title", None),
            description=entry.get("summary", None),
            content=content,
            link=entry.get("link", None),
            published=entry.get("published", None),
            published_parsed=_parsed_time(entry.get("published_parsed", None)),
            updated=entry.get("updated", None),
            updated_parsed=_parsed_time(entry.get("updated_parsed", None)),
            guid=entry.get("id", None),
            author=_author_name(entry),
        )


class Feed(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    link: Optional[str] = None
    feed_link: Optional[str] = None
    language: Optional[str] = None
    updated: Optional[str] = None
    updated_parsed: Optional[datetime] = None
    published: Optional[str] = None
    feed_type: Optional[str] = None
    feed_version: Optional[str] = None
    items: list[FeedItem] = Field(default_factory=list)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @staticmethod
    def from_parsed_feed(parsed: dict) -> Feed:
        """Build a Feed out of a ``feedparser.parse`` result.

        ``feed_link`` is taken from the document's own self link, callers that
        know where the document came from are expected to overwrite it.
        """
        channel = parsed.get("feed", {})
        version = parsed.get("version", "") or None
        self_link = next(
            (
                link.get("href", None)
                for link in channel.get("links", [])
                if link.get("rel", None) == "self"
            ),
            None,
        )
        return Feed(
            title=channel.get("title", None),
            description=channel.get("subtitle", None),
            link=channel.get("link", None),
            feed_link=self_link,
            language=channel.get("language", None),
            updated=channel.get("updated", None),
            updated_parsed=_parsed_time(channel.get("updated_parsed", None)),
            published=channel.get("published", None),
            feed_type=_feed_type(version),
            feed_version=version,
            items=[FeedItem.from_feed_entry(entry) for entry in parsed.get("entries", [])],
        )


def _feed_type(version: Optional[str]) -> Optional[str]:
    if version is None:
        return None
    match version[:3]:
        case "rss":
            return "rss"
        case "ato":
            return "atom"
        case "jso":
            return "json"
        case _:
            logger.info(f"Unexpected feed version : {version}")
            return None


class FeedCollection(BaseModel):
    feeds: list[Feed] = Field(default_factory=list, alias="Feeds")

    model_config = ConfigDict(populate_by_name=True)

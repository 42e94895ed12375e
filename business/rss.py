import logging
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Protocol

import feedparser
import requests

from business.feeds import Feed

logger = logging.getLogger(__name__)

USER_AGENT = "rss-middletier/1.0"


class FetchFailed(Exception): ...


class FeedFetcher(Protocol):
    @abstractmethod
    def fetch(self, feed_url: str) -> Feed: ...


class FeedParserFeedFetcher(FeedFetcher):
    def __init__(
        self, timeout: float = 10.0, session: Optional[requests.Session] = None
    ) -> None:
        self.timeout = timeout
        if session is None:
            session = requests.Session()
            session.headers.update({"User-Agent": USER_AGENT})
        self.session = session

    def fetch(self, feed_url: str) -> Feed:
        try:
            response = self.session.get(feed_url, timeout=self.timeout)
            response.raise_for_status()
        except Exception as error:
            # invalid urls surface as urllib3 or ValueError errors, not RequestException
            raise FetchFailed(f"Failed to download feed {feed_url}: {error}") from error

        try:
            parsed = feedparser.parse(
                response.content,
                response_headers={
                    key.lower(): value for key, value in response.headers.items()
                },
            )
        except Exception as error:
            raise FetchFailed(f"Failed to parse feed {feed_url}: {error}") from error
        if not parsed.get("version", ""):
            cause = parsed.get("bozo_exception", "feed type not detected")
            raise FetchFailed(f"Failed to parse feed {feed_url}: {cause}")
        if parsed.get("bozo", False):
            logger.warning(
                f"Feed {feed_url} is malformed : {parsed.get('bozo_exception', None)}"
            )

        try:
            feed = Feed.from_parsed_feed(parsed)
        except Exception as error:
            raise FetchFailed(f"Unexpected content in feed {feed_url}: {error}") from error
        logger.info(f"parsed {len(feed.items)} items from {feed_url}")
        return feed

    def close(self) -> None:
        self.session.close()


@dataclass
class FakeFeedFetcher(FeedFetcher):
    feeds: dict[str, Feed]
    requested: list[str] = field(default_factory=list)

    def fetch(self, feed_url: str) -> Feed:
        self.requested.append(feed_url)
        feed = self.feeds.get(feed_url)
        if feed is None:
            raise FetchFailed("No feed for this url")

        return feed.model_copy(deep=True)

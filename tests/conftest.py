from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

import pytest
from urllib3.exceptions import LocationParseError

from business.feeds import Feed, FeedItem
from business.rss import FakeFeedFetcher, FeedFetcher
from business.subscription_service import SubscriptionService
from persistence.subscription_store import (
    InMemorySubscriptionStore,
    StoreUnreachable,
    SubscriptionStore,
)


class FeedFactory:
    @classmethod
    def build(
        cls,
        title: Optional[str] = None,
        feed_link: Optional[str] = None,
        items: Optional[list[FeedItem]] = None,
    ) -> Feed:
        if title is None:
            title = "test feed"
        if items is None:
            items = [
                FeedItem(
                    title="test item",
                    link="http://example.com/item",
                    published="Mon, 01 Jan 2024 10:00:00 GMT",
                    published_parsed=datetime(2024, 1, 1, 10, tzinfo=timezone.utc),
                )
            ]
        return Feed(title=title, feed_link=feed_link, items=items)


class UnreachableStore(SubscriptionStore):
    def __init__(self) -> None:
        self.calls = 0

    def list_feed_urls(self, user: str) -> list[str]:
        self.calls += 1
        raise StoreUnreachable("Cannot connect to cassandra")

    def add_subscription(self, user: str, feed_url: str) -> None:
        self.calls += 1
        raise StoreUnreachable("Cannot connect to cassandra")

    def remove_subscription(self, user: str, feed_url: str) -> None:
        self.calls += 1
        raise StoreUnreachable("Cannot connect to cassandra")


@dataclass
class MalformedUrlFeedFetcher(FeedFetcher):
    fetcher: FeedFetcher
    malformed_url: str

    def fetch(self, feed_url: str) -> Feed:
        if feed_url == self.malformed_url:
            raise LocationParseError(feed_url)
        return self.fetcher.fetch(feed_url)


@pytest.fixture
def service_factory() -> Callable[..., SubscriptionService]:
    def factory(
        feeds: Optional[dict[str, Feed]] = None,
        store: Optional[SubscriptionStore] = None,
        fetch_workers: int = 1,
    ) -> SubscriptionService:
        if feeds is None:
            feeds = {}
        if store is None:
            store = InMemorySubscriptionStore()
        return SubscriptionService(
            store=store,
            fetcher=FakeFeedFetcher(feeds=feeds),
            fetch_workers=fetch_workers,
        )

    return factory


@pytest.fixture
def service(service_factory: Callable[..., SubscriptionService]) -> SubscriptionService:
    return service_factory()

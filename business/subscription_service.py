import contextvars
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

from business.feeds import Feed, FeedCollection
from business.rss import FeedFetcher, FetchFailed
from persistence.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)


@dataclass
class SubscriptionService:
    store: SubscriptionStore
    fetcher: FeedFetcher
    fetch_workers: int = 1

    def fetch_user_feeds(self, user: str) -> FeedCollection:
        feed_urls = self.store.list_feed_urls(user)
        if self.fetch_workers <= 1 or len(feed_urls) <= 1:
            feeds = [self._fetch_or_skip(feed_url) for feed_url in feed_urls]
        else:
            feeds = self._fetch_concurrently(feed_urls)
        fetched = [feed for feed in feeds if feed is not None]
        logger.info(f"fetched {len(fetched)} of {len(feed_urls)} feeds for {user}")
        return FeedCollection(feeds=fetched)

    def _fetch_concurrently(self, feed_urls: list[str]) -> list[Optional[Feed]]:
        workers = min(self.fetch_workers, len(feed_urls))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            # each fetch runs in a copy of the caller's context so spans keep the trace id
            futures = [
                executor.submit(
                    contextvars.copy_context().run, self._fetch_or_skip, feed_url
                )
                for feed_url in feed_urls
            ]
            return [future.result() for future in futures]

    def _fetch_or_skip(self, feed_url: str) -> Optional[Feed]:
        try:
            feed = self.fetcher.fetch(feed_url)
        except FetchFailed as error:
            logger.warning(f"Skipping feed {feed_url} : {error}")
            return None
        except Exception:
            # a single broken feed never fails the whole collection
            logger.exception(f"Skipping feed {feed_url} after an unexpected error")
            return None
        feed.feed_link = feed_url
        return feed

    def subscribe(self, user: str, feed_url: str) -> None:
        self.store.add_subscription(user, feed_url)

    def unsubscribe(self, user: str, feed_url: str) -> None:
        self.store.remove_subscription(user, feed_url)

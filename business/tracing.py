import logging
import time
from abc import abstractmethod
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import ContextManager, Iterator, Optional, Protocol
from uuid import uuid4

from business.feeds import Feed
from business.rss import FeedFetcher
from persistence.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)

current_trace_id: ContextVar[Optional[str]] = ContextVar("current_trace_id", default=None)


class Tracer(Protocol):
    @abstractmethod
    def span(self, name: str, **tags: str) -> ContextManager[None]: ...


class NoopTracer(Tracer):
    @contextmanager
    def span(self, name: str, **tags: str) -> Iterator[None]:
        yield


class LoggingTracer(Tracer):
    """Reports every span as a pair of log lines sharing the request trace id."""

    @contextmanager
    def span(self, name: str, **tags: str) -> Iterator[None]:
        trace_id = current_trace_id.get() or uuid4().hex
        token = current_trace_id.set(trace_id)
        logger.debug(f"[{trace_id}] start {name} {tags}")
        started = time.perf_counter()
        try:
            yield
        except Exception as error:
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.info(f"[{trace_id}] {name} failed after {elapsed_ms:.1f}ms : {error}")
            raise
        else:
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.info(f"[{trace_id}] {name} finished in {elapsed_ms:.1f}ms {tags}")
        finally:
            current_trace_id.reset(token)


def tracer_named(name: str) -> Tracer:
    match name:
        case "noop":
            return NoopTracer()
        case "logging":
            return LoggingTracer()
        case _:
            raise ValueError(f"Unknown tracer : {name}")


@dataclass
class TracedSubscriptionStore(SubscriptionStore):
    store: SubscriptionStore
    tracer: Tracer = field(default_factory=NoopTracer)

    def list_feed_urls(self, user: str) -> list[str]:
        with self.tracer.span("middletier:GetUrls", user=user):
            return self.store.list_feed_urls(user)

    def add_subscription(self, user: str, feed_url: str) -> None:
        with self.tracer.span("middletier:Subscribe", user=user, URL=feed_url):
            self.store.add_subscription(user, feed_url)

    def remove_subscription(self, user: str, feed_url: str) -> None:
        with self.tracer.span("middletier:Unsubscribe", user=user, URL=feed_url):
            self.store.remove_subscription(user, feed_url)


@dataclass
class TracedFeedFetcher(FeedFetcher):
    fetcher: FeedFetcher
    tracer: Tracer = field(default_factory=NoopTracer)

    def fetch(self, feed_url: str) -> Feed:
        with self.tracer.span("middletier:FetchFeedContents", URL=feed_url):
            return self.fetcher.fetch(feed_url)

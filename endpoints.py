import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import AsyncGenerator, Awaitable, Callable, Literal
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.responses import HTMLResponse, PlainTextResponse
from pydantic_settings import BaseSettings, SettingsConfigDict

from business.feeds import FeedCollection
from business.rss import FeedFetcher, FeedParserFeedFetcher
from business.subscription_service import SubscriptionService
from business.tracing import (
    TracedFeedFetcher,
    TracedSubscriptionStore,
    Tracer,
    current_trace_id,
    tracer_named,
)
from persistence.subscription_store import (
    CassandraSubscriptionStore,
    InMemorySubscriptionStore,
    StoreError,
    SubscriptionStore,
)

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    cassandra_addr: str = ""
    cassandra_port: int = 9042
    cassandra_keyspace: str = "RSS"
    cassandra_table: str = "Subscriptions"
    store_timeout_seconds: float = 10.0
    store_pooled: bool = True
    feed_timeout_seconds: float = 10.0
    fetch_workers: int = 1
    tracer: Literal["noop", "logging"] = "noop"
    log_level: str = "INFO"
    port: int = 9191

    model_config = SettingsConfigDict(
        env_file=".middletier.env", extra="ignore", frozen=True
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()


@lru_cache
def get_store(settings: Settings = Depends(get_settings)) -> SubscriptionStore:
    if not settings.cassandra_addr:
        logger.warning("CASSANDRA_ADDR is not set, subscriptions are kept in memory")
        return InMemorySubscriptionStore()
    return CassandraSubscriptionStore(
        contact_points=[
            addr.strip() for addr in settings.cassandra_addr.split(",") if addr.strip()
        ],
        port=settings.cassandra_port,
        keyspace=settings.cassandra_keyspace,
        table=settings.cassandra_table,
        timeout=settings.store_timeout_seconds,
        pooled=settings.store_pooled,
    )


@lru_cache
def get_fetcher(settings: Settings = Depends(get_settings)) -> FeedFetcher:
    return FeedParserFeedFetcher(timeout=settings.feed_timeout_seconds)


@lru_cache
def get_tracer() -> Tracer:
    return tracer_named(get_settings().tracer)


def subscription_service(
    settings: Settings = Depends(get_settings),
    store: SubscriptionStore = Depends(get_store),
    fetcher: FeedFetcher = Depends(get_fetcher),
) -> SubscriptionService:
    tracer = get_tracer()
    return SubscriptionService(
        store=TracedSubscriptionStore(store=store, tracer=tracer),
        fetcher=TracedFeedFetcher(fetcher=fetcher, tracer=tracer),
        fetch_workers=settings.fetch_workers,
    )


async def feed_url(request: Request) -> str:
    form = await request.form()
    url = form.get("url") or request.query_params.get("url")
    if not isinstance(url, str) or not url:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="missing url")
    return url


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, FastAPI]:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())
    get_tracer()
    logger.info(f"cassandra addr: {settings.cassandra_addr}")
    yield
    store = get_store(settings=settings)
    if isinstance(store, CassandraSubscriptionStore):
        store.close()
    fetcher = get_fetcher(settings=settings)
    if isinstance(fetcher, FeedParserFeedFetcher):
        fetcher.close()


app = FastAPI(lifespan=lifespan)


@app.middleware("http")
async def trace_request(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    request_id = request.headers.get("X-Request-Id") or uuid4().hex
    token = current_trace_id.set(request_id)
    try:
        with get_tracer().span(f"middletier:{request.method} {request.url.path}"):
            response = await call_next(request)
    finally:
        current_trace_id.reset(token)
    response.headers["X-Request-Id"] = request_id
    return response


@app.exception_handler(StoreError)
async def store_error_page(request: Request, error: StoreError) -> PlainTextResponse:
    logger.error(f"{request.method} {request.url.path} failed : {error}")
    return PlainTextResponse(
        str(error), status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
    )


@app.get(
    "/middletier/rss/user/{user}",
    response_model=FeedCollection,
    response_model_exclude_none=True,
)
def fetch_feeds(
    user: str,
    service: SubscriptionService = Depends(subscription_service),
) -> FeedCollection:
    return service.fetch_user_feeds(user)


@app.post("/middletier/rss/user/{user}")
def subscribe(
    user: str,
    url: str = Depends(feed_url),
    service: SubscriptionService = Depends(subscription_service),
) -> Response:
    service.subscribe(user, url)
    return Response(status_code=status.HTTP_200_OK)


@app.delete("/middletier/rss/user/{user}")
def unsubscribe(
    user: str,
    url: str = Depends(feed_url),
    service: SubscriptionService = Depends(subscription_service),
) -> Response:
    service.unsubscribe(user, url)
    return Response(status_code=status.HTTP_200_OK)


@app.get("/healthcheck", response_class=HTMLResponse)
def healthcheck() -> str:
    return "<h1>Healthcheck page</h1>"


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=get_settings().port)

import logging
import threading
from abc import abstractmethod
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, Protocol

from cassandra import (
    ConsistencyLevel,
    DriverException,
    OperationTimedOut,
    RequestExecutionException,
    UnresolvableContactPoints,
)
from cassandra.cluster import Cluster, NoHostAvailable, Session
from cassandra.query import SimpleStatement

logger = logging.getLogger(__name__)

SUBSCRIBED_MARKER = "1"

DRIVER_ERRORS = (
    NoHostAvailable,
    DriverException,
    OperationTimedOut,
    RequestExecutionException,
)

CONNECT_ERRORS = DRIVER_ERRORS + (UnresolvableContactPoints, ValueError)


class StoreError(Exception): ...


class StoreUnreachable(StoreError): ...


class QueryFailed(StoreError): ...


class WriteFailed(StoreError): ...


class SubscriptionStore(Protocol):
    @abstractmethod
    def list_feed_urls(self, user: str) -> list[str]: ...

    @abstractmethod
    def add_subscription(self, user: str, feed_url: str) -> None: ...

    @abstractmethod
    def remove_subscription(self, user: str, feed_url: str) -> None: ...


class CassandraSubscriptionStore(SubscriptionStore):
    """Subscriptions kept in a wide row per user.

    Partition key ``key`` is the user, clustering column ``column1`` is the
    feed url and ``value`` only marks presence. Every statement runs at
    QUORUM. With ``pooled`` one session is shared until ``close``, otherwise
    each call connects and shuts the cluster down before returning.
    """

    def __init__(
        self,
        contact_points: list[str],
        port: int = 9042,
        keyspace: str = "RSS",
        table: str = "Subscriptions",
        timeout: float = 10.0,
        pooled: bool = True,
        cluster_factory: Optional[Callable[[], Cluster]] = None,
    ) -> None:
        self.contact_points = contact_points
        self.port = port
        self.keyspace = keyspace
        self.table = table
        self.timeout = timeout
        self.pooled = pooled
        if cluster_factory is None:
            cluster_factory = self._new_cluster
        self.cluster_factory = cluster_factory
        self._cluster: Optional[Cluster] = None
        self._session: Optional[Session] = None
        self._lock = threading.Lock()

    def _new_cluster(self) -> Cluster:
        return Cluster(contact_points=self.contact_points, port=self.port)

    def _connect(self) -> tuple[Cluster, Session]:
        cluster: Optional[Cluster] = None
        try:
            # the driver resolves contact points while building the cluster
            cluster = self.cluster_factory()
            session = cluster.connect(self.keyspace)
        except CONNECT_ERRORS as error:
            if cluster is not None:
                cluster.shutdown()
            logger.error(f"Cannot connect to cassandra at {self.contact_points}: {error}")
            raise StoreUnreachable("Cannot connect to cassandra") from error
        session.default_timeout = self.timeout
        session.default_consistency_level = ConsistencyLevel.QUORUM
        return cluster, session

    @contextmanager
    def _scoped_session(self) -> Iterator[Session]:
        if self.pooled:
            with self._lock:
                if self._session is None:
                    self._cluster, self._session = self._connect()
                session = self._session
            yield session
            return

        cluster, session = self._connect()
        try:
            yield session
        finally:
            cluster.shutdown()

    def _statement(self, query: str) -> SimpleStatement:
        return SimpleStatement(
            query.format(table=self.table), consistency_level=ConsistencyLevel.QUORUM
        )

    def list_feed_urls(self, user: str) -> list[str]:
        statement = self._statement('SELECT column1 FROM "{table}" WHERE key = %s')
        with self._scoped_session() as session:
            try:
                rows = session.execute(statement, (user,), timeout=self.timeout)
                return [row.column1 for row in rows]
            except DRIVER_ERRORS as error:
                logger.error(f"Reading subscriptions of {user} failed: {error}")
                raise QueryFailed("Error fetching data from cassandra") from error

    def add_subscription(self, user: str, feed_url: str) -> None:
        statement = self._statement(
            'INSERT INTO "{table}" (key, column1, value) VALUES (%s, %s, %s)'
        )
        self._write(statement, (user, feed_url, SUBSCRIBED_MARKER))

    def remove_subscription(self, user: str, feed_url: str) -> None:
        statement = self._statement(
            'DELETE FROM "{table}" WHERE key = %s AND column1 = %s'
        )
        self._write(statement, (user, feed_url))

    def _write(self, statement: SimpleStatement, parameters: tuple) -> None:
        with self._scoped_session() as session:
            try:
                session.execute(statement, parameters, timeout=self.timeout)
            except DRIVER_ERRORS as error:
                logger.error(f"Write to cassandra failed: {error}")
                raise WriteFailed(f"Error writing data to cassandra: {error}") from error

    def close(self) -> None:
        with self._lock:
            if self._cluster is not None:
                self._cluster.shutdown()
            self._cluster = None
            self._session = None


class InMemorySubscriptionStore(SubscriptionStore):
    """Process local store, urls come back in clustering (sorted) order."""

    def __init__(self) -> None:
        self.subscriptions: dict[str, set[str]] = {}
        self._lock = threading.Lock()

    def list_feed_urls(self, user: str) -> list[str]:
        with self._lock:
            return sorted(self.subscriptions.get(user, set()))

    def add_subscription(self, user: str, feed_url: str) -> None:
        with self._lock:
            self.subscriptions.setdefault(user, set()).add(feed_url)

    def remove_subscription(self, user: str, feed_url: str) -> None:
        with self._lock:
            self.subscriptions.get(user, set()).discard(feed_url)

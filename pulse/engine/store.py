"""
pulse.engine.store — Reactive Store with PG LISTEN/NOTIFY Fan-out
==================================================================

Every mutation in Pulse writes through :class:`ReactiveStore`, and every
live read is a :class:`Subscription` on it.  A write declares which
*partitions* it touched as tags ``(table, key)``; after the transaction
commits, each subscription whose dependencies intersect those tags re-runs
its query and, if the result changed, pushes it to its callback.

Tag matching::

    write tag          subscription dependency      match?
    ("presence","u1")  ("presence","u1")             yes
    ("presence","u1")  ("presence", None)            yes   (table-wide)
    ("presence",None)  ("presence","u2")             yes   (sweep wildcard)
    ("presence","u1")  ("presence","u2")             no

Across processes, a write on PostgreSQL also emits ``pg_notify`` inside the
same transaction, so the notification fires only if the write commits.  A
background LISTEN thread in every process republishes tags that originated
elsewhere.

Usage::

    store = ReactiveStore(engine)

    with store.transaction() as ctx:
        created = ctx.upsert(Presence, key={"actor_id": "u1"},
                             values={"status": "online", "last_seen_at": now})
        ctx.touch("presence", "u1")

    sub = store.subscribe(
        lambda s: load_presence(s, "u1"),
        depends_on=[("presence", "u1")],
        callback=print,
    )
    ...
    sub.cancel()
"""

from __future__ import annotations

import itertools
import json
import logging
import random
import select as _select
import threading
import uuid
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, select, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from pulse.database.engine import get_session

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

# PG channel used for cross-process change fan-out
NOTIFY_CHANNEL = "pulse_changes"

# PostgreSQL rejects NOTIFY payloads of 8000 bytes or more; at this size the
# tags collapse to per-table wildcards.
MAX_NOTIFY_BYTES = 7900

Tag = tuple[str, str | None]
Query = Callable[[Session], Any]

_UNSET = object()
_sub_ids = itertools.count(1)


def tags_match(write_tags: Iterable[Tag], depends_on: Iterable[Tag]) -> bool:
    """Return True if any write tag overlaps any dependency tag."""
    deps = list(depends_on)
    for table, key in write_tags:
        for dep_table, dep_key in deps:
            if table != dep_table:
                continue
            if key is None or dep_key is None or key == dep_key:
                return True
    return False


def _normalize(tags: Iterable[Tag | str]) -> frozenset[Tag]:
    out: set[Tag] = set()
    for tag in tags:
        if isinstance(tag, str):
            out.add((tag, None))
        else:
            table, key = tag
            out.add((table, None if key is None else str(key)))
    return frozenset(out)


# ---------------------------------------------------------------------------
# Write side
# ---------------------------------------------------------------------------
class WriteContext:
    """Handle yielded by :meth:`ReactiveStore.transaction`.

    Wraps the transaction's :class:`Session` and collects the tags that
    will be published once it commits.
    """

    def __init__(self, session: Session) -> None:
        self.session = session
        self.tags: set[Tag] = set()

    def touch(self, table: str, key: Any = None) -> None:
        """Mark partition *key* of *table* (or the whole table) as changed."""
        self.tags.add((table, None if key is None else str(key)))

    def _insert(self, model: Any):
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(model)
        if dialect == "sqlite":
            return sqlite.insert(model)
        raise NotImplementedError(f"Upserts are not supported on {dialect!r}")

    def exists(self, model: Any, key: dict[str, Any]) -> bool:
        table = model.__table__
        clause = and_(*(table.c[col] == val for col, val in key.items()))
        return self.session.execute(
            select(table.c[next(iter(key))]).where(clause).limit(1)
        ).first() is not None

    def upsert(
        self,
        model: Any,
        *,
        key: dict[str, Any],
        values: dict[str, Any],
        on_insert: dict[str, Any] | None = None,
    ) -> bool:
        """Insert or overwrite the row identified by *key*.

        *key* must name the columns of a unique constraint on *model*.
        Concurrent writers resolve last-write-wins through
        ``ON CONFLICT DO UPDATE``.  *on_insert* columns (e.g. ``created_at``)
        are written only when the row is new.  Returns True if the row was
        created.
        """
        created = not self.exists(model, key)
        stmt = self._insert(model).values(**key, **(on_insert or {}), **values)
        if values:
            stmt = stmt.on_conflict_do_update(index_elements=list(key), set_=values)
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=list(key))
        self.session.execute(stmt)
        return created

    def insert_if_absent(
        self, model: Any, *, key: dict[str, Any], values: dict[str, Any],
    ) -> bool:
        """Insert the row unless *key* already exists.  Returns True if inserted."""
        stmt = (
            self._insert(model)
            .values(**key, **values)
            .on_conflict_do_nothing(index_elements=list(key))
        )
        result = self.session.execute(stmt)
        return result.rowcount == 1


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------
class Subscription:
    """A live query.  Created by :meth:`ReactiveStore.subscribe`.

    ``last_result`` holds the last successfully delivered value.  When a
    re-evaluation fails, ``stale`` is set and the previous value is kept;
    the next matching write retries.
    """

    def __init__(
        self,
        store: ReactiveStore,
        query: Query,
        depends_on: frozenset[Tag],
        callback: Callable[[Any], None],
        name: str | None = None,
    ) -> None:
        self.id = next(_sub_ids)
        self.name = name or f"sub-{self.id}"
        self.depends_on = depends_on
        self.stale = False
        self.active = True
        self._store = store
        self._query = query
        self._callback = callback
        self._last: Any = _UNSET
        self._lock = threading.RLock()

    @property
    def last_result(self) -> Any:
        return None if self._last is _UNSET else self._last

    def matches(self, tags: Iterable[Tag]) -> bool:
        return tags_match(tags, self.depends_on)

    def refresh(self, *, raise_errors: bool = False) -> bool:
        """Re-run the query and deliver the result if it changed.

        Returns True when the callback was invoked.
        """
        with self._lock:
            if not self.active:
                return False
            try:
                result = self._store.read(self._query)
            except Exception:
                if raise_errors:
                    raise
                self.stale = True
                logger.warning(
                    "Subscription %s refresh failed; keeping last result",
                    self.name, exc_info=True,
                )
                return False

            self.stale = False
            if self._last is not _UNSET and result == self._last:
                logger.debug("Subscription %s unchanged; not redelivered", self.name)
                return False
            self._last = result
            try:
                self._callback(result)
            except Exception:
                logger.exception("Subscription %s callback failed", self.name)
            return True

    def cancel(self) -> None:
        """Stop deliveries.  Safe to call more than once."""
        self.active = False
        self._store._remove(self)

    def __repr__(self) -> str:
        return f"<Subscription {self.name} deps={sorted(self.depends_on, key=str)}>"


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------
class ReactiveStore:
    """Transactional writes + push subscriptions over one SQLAlchemy engine.

    Thread-safe: writes may come from any worker thread, and the LISTEN
    thread publishes foreign changes concurrently.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.origin = uuid.uuid4().hex
        self._subs: dict[int, Subscription] = {}
        self._lock = threading.Lock()

        self._listener_healthy: bool = False
        self._listener_failed: bool = False
        self._listener_thread: threading.Thread | None = None
        self._shutdown_event = threading.Event()

    @property
    def is_postgres(self) -> bool:
        return self.engine.dialect.name == "postgresql"

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------
    @contextmanager
    def transaction(self) -> Iterator[WriteContext]:
        """Open a write transaction; publish its tags after commit."""
        session = Session(self.engine)
        ctx = WriteContext(session)
        try:
            yield ctx
            if ctx.tags and self.is_postgres:
                notify_before_commit(session, ctx.tags, self.origin)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        if ctx.tags:
            self.publish(ctx.tags)

    def write(
        self,
        model: Any,
        key: dict[str, Any],
        values: dict[str, Any],
        partition: Any = None,
    ) -> bool:
        """One-shot upsert.  Returns True if the row was created."""
        with self.transaction() as ctx:
            created = ctx.upsert(model, key=key, values=values)
            ctx.touch(model.__tablename__, partition)
        return created

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def read(self, query: Query, *args: Any, **kwargs: Any) -> Any:
        """Run ``query(session, *args, **kwargs)`` in a short read session."""
        with get_session(self.engine) as session:
            return query(session, *args, **kwargs)

    def subscribe(
        self,
        query: Query,
        depends_on: Iterable[Tag | str],
        callback: Callable[[Any], None],
        name: str | None = None,
    ) -> Subscription:
        """Register a live query and deliver its current result immediately.

        Errors from the first evaluation propagate and nothing is
        registered.  Later failures are absorbed (see :class:`Subscription`).
        """
        sub = Subscription(self, query, _normalize(depends_on), callback, name)
        with self._lock:
            self._subs[sub.id] = sub
        try:
            sub.refresh(raise_errors=True)
        except Exception:
            sub.cancel()
            raise
        logger.debug("Subscribed %r", sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            self._subs.pop(sub.id, None)

    @property
    def subscription_count(self) -> int:
        with self._lock:
            return len(self._subs)

    def publish(self, tags: Iterable[Tag]) -> int:
        """Refresh every subscription matching *tags*.  Returns deliveries."""
        tags = _normalize(tags)
        with self._lock:
            targets = [s for s in self._subs.values() if s.matches(tags)]
        delivered = 0
        for sub in targets:
            if sub.refresh():
                delivered += 1
        return delivered

    # -------------------------------------------------------------------
    # Cross-process fan-out via NOTIFY
    # -------------------------------------------------------------------
    def handle_notify(self, raw_payload: str) -> None:
        """Republish tags from another process's NOTIFY."""
        try:
            data = json.loads(raw_payload)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Invalid change payload (not JSON): %s", raw_payload)
            return

        if data.get("origin") == self.origin:
            return
        tags = [tuple(t) for t in data.get("tags") or [] if len(t) == 2]
        if not tags:
            logger.warning("Change payload without tags: %s", raw_payload)
            return
        self.publish(tags)

    @property
    def listener_healthy(self) -> bool:
        """Return True if the LISTEN thread is alive and connected."""
        return self._listener_healthy and not self._listener_failed

    @property
    def listener_failed(self) -> bool:
        """Return True if the listener exhausted reconnect attempts."""
        return self._listener_failed

    def stop_listener(self) -> None:
        """Signal the listener thread to stop and wait for it to exit."""
        self._shutdown_event.set()
        if self._listener_thread is not None and self._listener_thread.is_alive():
            self._listener_thread.join(timeout=5)
            logger.info("PG NOTIFY listener thread stopped")

    def start_listener(self) -> None:
        """Start a background thread that LISTENs on :data:`NOTIFY_CHANNEL`.

        Raw psycopg2 connection + ``select()``; reconnects with exponential
        backoff and jitter, and gives up after ten consecutive failures.
        """
        import psycopg2

        max_backoff = 60.0
        base_backoff = 1.0
        max_reconnect_attempts = 10

        def _listen_thread() -> None:
            # str(engine.url) masks the password; psycopg2 needs it.
            raw_url = self.engine.url.render_as_string(hide_password=False)
            dsn = raw_url.replace("postgresql+psycopg2://", "postgresql://")
            attempt = 0

            while not self._shutdown_event.is_set():
                conn = None
                try:
                    conn = psycopg2.connect(dsn)
                    conn.set_isolation_level(0)  # autocommit
                    cur = conn.cursor()
                    cur.execute(f"LISTEN {NOTIFY_CHANNEL};")
                    logger.info("PG LISTEN started on channel '%s'", NOTIFY_CHANNEL)

                    attempt = 0
                    self._listener_healthy = True

                    while not self._shutdown_event.is_set():
                        if _select.select([conn], [], [], 5.0) == ([], [], []):
                            continue
                        conn.poll()
                        while conn.notifies:
                            notify = conn.notifies.pop(0)
                            payload = notify.payload or ""
                            logger.debug("NOTIFY received: %s", payload)
                            try:
                                self.handle_notify(payload)
                            except Exception:
                                logger.exception("Error handling NOTIFY: %s", payload)

                except Exception:
                    self._listener_healthy = False
                    attempt += 1

                    if attempt >= max_reconnect_attempts:
                        logger.critical(
                            "PG LISTEN exhausted %d retries. "
                            "Cross-process subscriptions disabled.",
                            max_reconnect_attempts,
                        )
                        self._listener_failed = True
                        break

                    backoff = min(base_backoff * (2 ** (attempt - 1)), max_backoff)
                    wait = backoff + random.uniform(0, backoff * 0.5)
                    logger.exception(
                        "PG LISTEN connection lost (attempt %d/%d). "
                        "Reconnecting in %.1fs…",
                        attempt, max_reconnect_attempts, wait,
                    )
                    if self._shutdown_event.wait(timeout=wait):
                        break
                finally:
                    if conn is not None:
                        conn.close()

        thread = threading.Thread(
            target=_listen_thread, daemon=True, name="pulse-notify-listener",
        )
        self._listener_thread = thread
        thread.start()
        logger.info("PG NOTIFY listener thread started")

    def close(self) -> None:
        """Stop the listener and drop every subscription."""
        self.stop_listener()
        with self._lock:
            subs = list(self._subs.values())
            self._subs.clear()
        for sub in subs:
            sub.active = False


def notify_before_commit(session: Session, tags: Iterable[Tag], origin: str) -> None:
    """Queue a change NOTIFY inside the current transaction.

    PostgreSQL delivers it only if the transaction commits.
    """
    tags = sorted(_normalize(tags), key=lambda t: (t[0], t[1] or ""))
    payload = json.dumps({"origin": origin, "tags": [list(t) for t in tags]})
    if len(payload.encode("utf-8")) >= MAX_NOTIFY_BYTES:
        wildcards = sorted({table for table, _ in tags})
        payload = json.dumps({"origin": origin, "tags": [[t, None] for t in wildcards]})
        logger.debug("NOTIFY collapsed %d tags to %d table wildcards", len(tags), len(wildcards))
    session.execute(
        text("SELECT pg_notify(:channel, :payload)"),
        {"channel": NOTIFY_CHANNEL, "payload": payload},
    )

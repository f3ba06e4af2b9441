# Overview: Service-layer routing from a tenant context to that tenant's data store.

"""
Store Router: one live handle per storage endpoint.

MULTI-TENANT INVARIANTS:
1. A tenant's effective endpoint is tenant.store_url, or the shared default
   endpoint (TENANT_STORE_DEFAULT_URL) when the tenant has none
2. At most one StoreHandle exists per distinct endpoint for the lifetime of
   the router; handles are never evicted implicitly
3. A failed handle creation caches nothing, so the next call retries
4. Every service query runs inside a session from the handle returned here
   AND filters on tenant_id (the default endpoint is shared)

USAGE:
    from oms.services.store_router import get_store

    store = get_store(context)
    with store.session_scope() as session:
        orders = order_service.list_orders(session, context.tenant_id)
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Iterator

from flask import current_app
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool

from ..errors import ConflictError, StoreUnavailable
from ..models import StoreModel

logger = logging.getLogger(__name__)


class StoreHandle:
    """
    Connection handle for one storage endpoint.

    Wraps a SQLAlchemy engine (which owns its own connection pool and is safe
    for concurrent use) and a session factory. Sessions keep attributes
    loaded after commit so services can return ORM objects to the caller.
    """

    def __init__(self, endpoint: str, engine: Engine):
        self.endpoint = endpoint
        self.engine = engine
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)

    def __repr__(self) -> str:
        return f"<StoreHandle endpoint={self.engine.url.render_as_string(hide_password=True)!r}>"

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """
        Unit of work: commit on success, roll back on any exception.

        An optimistic-lock failure at commit (StaleDataError) is surfaced as
        ConflictError; the caller decides whether to retry.
        """
        session = self._sessions()
        try:
            yield session
            session.commit()
        except StaleDataError as exc:
            session.rollback()
            raise ConflictError("Record was modified concurrently; reload and retry") from exc
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()


def _is_memory_sqlite(url) -> bool:
    return url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:")


def create_store_handle(endpoint: str) -> StoreHandle:
    """
    Default handle factory: open an engine, verify it answers, ensure schema.

    In-memory SQLite endpoints get a StaticPool so every session of the
    handle sees the same database.
    """
    url = make_url(endpoint)
    kwargs: dict = {"pool_pre_ping": True}
    if url.get_backend_name() == "sqlite":
        kwargs = {"connect_args": {"check_same_thread": False}}
        if _is_memory_sqlite(url):
            kwargs["poolclass"] = StaticPool

    engine = create_engine(url, **kwargs)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        StoreModel.metadata.create_all(engine)
    except SQLAlchemyError:
        engine.dispose()
        raise
    return StoreHandle(endpoint, engine)


class StoreRouter:
    """
    Process-scoped cache of StoreHandles keyed by endpoint.

    The handle factory is injected so tests (or alternative backends) can
    replace how handles are built; create_app attaches one router per app.
    """

    def __init__(
        self,
        default_endpoint: str,
        factory: Callable[[str], StoreHandle] = create_store_handle,
    ):
        self.default_endpoint = default_endpoint
        self._factory = factory
        self._handles: dict[str, StoreHandle] = {}
        self._lock = threading.Lock()

    def endpoint_for(self, context) -> str:
        return context.store_url or self.default_endpoint

    def get_store(self, context) -> StoreHandle:
        return self.get_handle(self.endpoint_for(context))

    def get_handle(self, endpoint: str) -> StoreHandle:
        handle = self._handles.get(endpoint)
        if handle is not None:
            return handle

        with self._lock:
            # Another thread may have created it while we waited
            handle = self._handles.get(endpoint)
            if handle is not None:
                return handle

            try:
                handle = self._factory(endpoint)
            except Exception as exc:
                logger.warning("Store handle creation failed: %s", exc)
                raise StoreUnavailable("Tenant data store is unavailable") from exc

            self._handles[endpoint] = handle
            logger.info("Opened store handle %r", handle)
            return handle

    def cached_endpoints(self) -> list[str]:
        return list(self._handles)

    def evict(self, endpoint: str) -> bool:
        """Drop (and dispose) a cached handle. Returns True if one existed."""
        with self._lock:
            handle = self._handles.pop(endpoint, None)
        if handle is None:
            return False
        handle.dispose()
        logger.info("Evicted store handle %r", handle)
        return True

    def reset(self) -> None:
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            handle.dispose()


def init_app(app, factory: Callable[[str], StoreHandle] | None = None) -> StoreRouter:
    router = StoreRouter(
        app.config["TENANT_STORE_DEFAULT_URL"],
        factory=factory or create_store_handle,
    )
    app.extensions["store_router"] = router
    return router


def get_router() -> StoreRouter:
    return current_app.extensions["store_router"]


def get_store(context) -> StoreHandle:
    """Handle for the tenant in `context` on the current app's router."""
    return get_router().get_store(context)

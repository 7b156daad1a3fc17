"""The storefront database client.

``StoreClient`` owns the engine and exposes one delegate per model, raw
query escapes and the transaction helper::

    db = StoreClient(log=["query", "error"])
    user = db.users.create(data={"user_name": "Asha", "user_email": "asha@example.com"})
    orders = db.orders.find_many(where={"user_id": user["user_id"]}, include={"order_details": True})
"""

import abc
import enum
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as CheckoutTimeout
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy import exc as sa_exc
from sqlalchemy.orm import Session
from sqlalchemy.pool import QueuePool

from app.client.delegate import ModelDelegate
from app.client.errors import (
    TRANSACTION_CLOSED,
    InitializationError,
    KnownRequestError,
    ValidationError,
    translate,
    translate_errors,
)
from app.client.events import EventHub
from app.core.config import settings
from app.db.session import build_engine
from app.models.models import MODELS

logger = logging.getLogger("database")

# Pool checkouts for transactions run here so the wait can be cut off at max_wait.
_checkouts = ThreadPoolExecutor(max_workers=8, thread_name_prefix="tx-checkout")


def _release_late_checkout(future):
    if not future.cancelled() and future.exception() is None:
        future.result().close()


class IsolationLevel(str, enum.Enum):
    READ_UNCOMMITTED = "READ UNCOMMITTED"
    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"


class TransactionOptions(BaseModel):
    max_wait: int = settings.TRANSACTION_MAX_WAIT_MS  # ms to wait for a connection
    timeout: int = settings.TRANSACTION_TIMEOUT_MS    # ms the whole transaction may take
    isolation_level: Optional[IsolationLevel] = None


class _Delegates(abc.ABC):
    """Delegate attributes and raw queries shared by the client and transactions."""

    users: ModelDelegate
    products: ModelDelegate
    orders: ModelDelegate
    cart: ModelDelegate
    order_details: ModelDelegate
    reviews: ModelDelegate
    payments: ModelDelegate
    category: ModelDelegate

    def _bind_delegates(self):
        for name, model in MODELS.items():
            setattr(self, name, ModelDelegate(self, model))

    @abc.abstractmethod
    def _session_scope(self):
        """Context manager yielding the session an operation runs in."""

    def query_raw(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Run a SELECT with named bind parameters (``:name``) and return rows as dicts."""
        if not isinstance(sql, str):
            raise ValidationError("query_raw expects the SQL as a string")
        with self._session_scope() as session:
            result = session.execute(text(sql), params or {})
            return [dict(row._mapping) for row in result]

    def execute_raw(self, sql: str, params: Optional[Dict[str, Any]] = None) -> int:
        """Run a statement with named bind parameters and return the affected row count."""
        if not isinstance(sql, str):
            raise ValidationError("execute_raw expects the SQL as a string")
        with self._session_scope() as session:
            return session.execute(text(sql), params or {}).rowcount

    def query_raw_unsafe(self, sql: str, *args) -> List[Dict[str, Any]]:
        """Run SQL exactly as given; ``args`` use the driver's paramstyle."""
        with self._session_scope() as session:
            connection = session.connection()
            result = connection.exec_driver_sql(sql, tuple(args)) if args else connection.exec_driver_sql(sql)
            return [dict(row._mapping) for row in result]

    def execute_raw_unsafe(self, sql: str, *args) -> int:
        with self._session_scope() as session:
            connection = session.connection()
            result = connection.exec_driver_sql(sql, tuple(args)) if args else connection.exec_driver_sql(sql)
            return result.rowcount


class StoreClient(_Delegates):
    def __init__(
        self,
        datasource_url: Optional[str] = None,
        log: Optional[List[Union[str, Dict[str, str]]]] = None,
        omit: Optional[Dict[str, Dict[str, bool]]] = None,
        transaction_options: Optional[Union[TransactionOptions, Dict[str, Any]]] = None,
        engine=None,
    ):
        self._datasource_url = datasource_url or settings.DATABASE_URL
        self._events = EventHub(settings.db_log_levels if log is None else log)
        self._omit = omit or {}
        for name in self._omit:
            if name not in MODELS:
                raise ValidationError(f"Unknown model `{name}` in omit")
        if isinstance(transaction_options, dict):
            transaction_options = TransactionOptions(**transaction_options)
        self._transaction_options = transaction_options or TransactionOptions()
        self._engine = engine
        self._owns_engine = engine is None
        self._connected = False
        if engine is not None:
            self._events.instrument(engine)
        self._bind_delegates()

    # -------------------------------------------------------------- lifecycle

    def connect(self) -> None:
        if self._connected:
            return
        if self._engine is None:
            try:
                self._engine = build_engine(self._datasource_url)
            except (sa_exc.ArgumentError, sa_exc.NoSuchModuleError, ImportError) as e:
                self._events.error(f"Invalid datasource: {e}")
                raise InitializationError(f"Invalid datasource URL: {e}", error_code="P1013") from e
            self._events.instrument(self._engine)
        try:
            with self._engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except sa_exc.DBAPIError as e:
            self._events.error(f"Can't reach database server: {e.orig}")
            raise InitializationError(f"Can't reach database server: {e.orig}", error_code="P1001") from e
        except sa_exc.SQLAlchemyError as e:
            error = translate(e)
            self._report(error)
            raise error from e
        self._connected = True
        self._events.info(f"Connected to {self._engine.url.render_as_string(hide_password=True)}")

    def disconnect(self) -> None:
        if not self._connected:
            return
        if self._owns_engine:
            self._engine.dispose()
            self._engine = None
        self._connected = False
        self._events.info("Disconnected")

    def is_connected(self) -> bool:
        return self._connected

    @property
    def engine(self):
        self.connect()
        return self._engine

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.disconnect()

    def on(self, level: str, callback: Callable) -> None:
        """Subscribe to ``query``/``info``/``warn``/``error`` events configured with emit='event'."""
        self._events.subscribe(level, callback)

    def _report(self, error):
        # errors from inside a transaction pass through two scopes
        if getattr(error, "_reported", False):
            return
        error._reported = True
        self._events.error(str(error))

    @contextmanager
    def _session_scope(self):
        self.connect()
        with translate_errors(self._report):
            session = Session(bind=self._engine, expire_on_commit=False)
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    # ----------------------------------------------------------- transactions

    def _acquire(self, max_wait: int):
        """Check a connection out of the pool, waiting at most ``max_wait`` ms."""
        if not isinstance(self._engine.pool, QueuePool):
            return self._engine.connect()
        future = _checkouts.submit(self._engine.connect)
        try:
            return future.result(timeout=max_wait / 1000)
        except (CheckoutTimeout, sa_exc.TimeoutError):
            # a checkout that completes after we gave up goes straight back to the pool
            if not future.cancel():
                future.add_done_callback(_release_late_checkout)
            raise KnownRequestError(
                f"Transaction API error: Unable to start a transaction in the given time ({max_wait}ms).",
                code=TRANSACTION_CLOSED,
            )

    def transaction(
        self,
        operations: Union[Callable[["TransactionClient"], Any], List[Callable[["TransactionClient"], Any]]],
        *,
        isolation_level: Optional[IsolationLevel] = None,
        max_wait: Optional[int] = None,
        timeout: Optional[int] = None,
    ):
        """Run ``operations`` in one database transaction.

        A list of callables runs as a batch and returns the list of their
        results. A single callable receives a :class:`TransactionClient` and
        its return value is returned. Any exception rolls everything back.
        """
        if isinstance(operations, (list, tuple)):
            batch = list(operations)
            for operation in batch:
                if not callable(operation):
                    raise ValidationError("Batch transactions expect callables taking the transaction client")
            body = lambda tx: [operation(tx) for operation in batch]  # noqa: E731
        elif callable(operations):
            body = operations
        else:
            raise ValidationError("transaction() expects a callable or a list of callables")

        defaults = self._transaction_options
        max_wait = defaults.max_wait if max_wait is None else max_wait
        timeout = defaults.timeout if timeout is None else timeout
        isolation_level = isolation_level or defaults.isolation_level
        if isolation_level is not None:
            isolation_level = IsolationLevel(isolation_level)

        self.connect()
        with translate_errors(self._report):
            connection = self._acquire(max_wait)
            if isolation_level is not None:
                connection = connection.execution_options(isolation_level=isolation_level.value)

            session = Session(bind=connection, expire_on_commit=False)
            tx = TransactionClient(self, session, deadline=time.monotonic() + timeout / 1000, timeout=timeout)
            try:
                result = body(tx)
                tx._check_open()
                session.commit()
                return result
            except Exception:
                session.rollback()
                raise
            finally:
                tx._closed = True
                session.close()
                connection.close()


class TransactionClient(_Delegates):
    """Delegates and raw queries bound to one open transaction."""

    def __init__(self, parent: StoreClient, session: Session, deadline: float, timeout: int):
        self._parent = parent
        self._omit = parent._omit
        self._session = session
        self._deadline = deadline
        self._timeout = timeout
        self._closed = False
        self._bind_delegates()

    def _check_open(self):
        if self._closed:
            raise KnownRequestError(
                "Transaction API error: Transaction already closed: the transaction was committed or rolled back.",
                code=TRANSACTION_CLOSED,
            )
        if time.monotonic() > self._deadline:
            self._parent._events.warn(f"Transaction exceeded its timeout of {self._timeout}ms")
            raise KnownRequestError(
                f"Transaction API error: Transaction already closed: the timeout for this transaction was {self._timeout} ms.",
                code=TRANSACTION_CLOSED,
            )

    @contextmanager
    def _session_scope(self):
        with translate_errors(self._parent._report):
            self._check_open()
            yield self._session
            self._session.flush()

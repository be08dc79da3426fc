from __future__ import annotations

import logging
from collections.abc import Generator, Mapping
from contextlib import contextmanager
from typing import Any

from flask import Flask, g
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.hrms.errors import TransactionFailure

logger = logging.getLogger(__name__)

# Deduction tables live in their own Postgres schema.
BRANCH_SCHEMA = "branch"


class Database:
    """
    Pooled engine + session factory with an explicit lifecycle.

    Build one per application (``Database.from_config``), call ``init_app`` at startup
    and ``dispose`` on shutdown or after fork. Nothing here is a module-level global.
    """

    def __init__(
        self,
        url: str,
        *,
        pool_min: int = 2,
        pool_max: int = 20,
        idle_timeout: int = 60,
        connect_timeout: int = 10,
        statement_timeout_ms: int = 30000,
        sslmode: str = "require",
        log_checkouts: bool = True,
    ) -> None:
        if not url:
            raise RuntimeError("Database URL is not configured (set DATABASE_URL or DB_HOST/DB_NAME).")
        self.url = url
        self.pool_min = pool_min
        self.pool_max = pool_max
        self.idle_timeout = idle_timeout
        self.connect_timeout = connect_timeout
        self.statement_timeout_ms = statement_timeout_ms
        self.sslmode = sslmode
        self.log_checkouts = log_checkouts

        self._base_engine: Engine | None = None
        self.engine: Engine | None = None
        self._sessionmaker: sessionmaker[Session] | None = None

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "Database":
        return cls(
            config["DATABASE_URL"],
            pool_min=config.get("DB_POOL_MIN", 2),
            pool_max=config.get("DB_POOL_MAX", 20),
            idle_timeout=config.get("DB_IDLE_TIMEOUT", 60),
            connect_timeout=config.get("DB_CONNECT_TIMEOUT", 10),
            statement_timeout_ms=config.get("DB_STATEMENT_TIMEOUT", 30000),
            sslmode=config.get("DB_SSLMODE", "require"),
            log_checkouts=config.get("ENV") != "production",
        )

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    def _engine_kwargs(self) -> dict[str, object]:
        engine_kwargs: dict[str, object] = {
            "future": True,
            "pool_pre_ping": True,
        }
        if not self.is_sqlite:
            engine_kwargs.update(
                {
                    # pool_size connections stay open; overflow ones are closed on checkin.
                    "pool_size": self.pool_min,
                    "max_overflow": max(self.pool_max - self.pool_min, 0),
                    "pool_timeout": self.connect_timeout,
                    "pool_recycle": self.idle_timeout,
                    "connect_args": {
                        "connect_timeout": self.connect_timeout,
                        "options": f"-c statement_timeout={self.statement_timeout_ms}",
                        "keepalives": 1,
                        "keepalives_idle": 10,
                        "sslmode": self.sslmode,
                    },
                }
            )
        return engine_kwargs

    def connect(self) -> Engine:
        if self.engine is not None:
            return self.engine
        engine = create_engine(self.url, **self._engine_kwargs())
        self._register_pool_events(engine)
        if self.is_sqlite:
            _enable_sqlite_savepoints(engine)
            # SQLite has no schemas: map branch.* onto the main database.
            self.engine = engine.execution_options(schema_translate_map={BRANCH_SCHEMA: None})
        else:
            self.engine = engine
        self._base_engine = engine
        self._sessionmaker = sessionmaker(
            bind=self.engine,
            class_=Session,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
            future=True,
        )
        logger.info(
            "Database engine ready (dialect=%s pool_min=%s pool_max=%s)",
            engine.dialect.name,
            self.pool_min,
            self.pool_max,
        )
        return self.engine

    def _register_pool_events(self, engine: Engine) -> None:
        @event.listens_for(engine, "connect")
        def _receive_connect(dbapi_connection, connection_record):  # type: ignore[no-redef]
            logger.debug("DB connection opened")

        @event.listens_for(engine, "handle_error")
        def _receive_error(context):  # type: ignore[no-redef]
            logger.error("DB error: %s", context.original_exception)

        if self.log_checkouts:
            @event.listens_for(engine, "checkout")
            def _receive_checkout(dbapi_connection, connection_record, connection_proxy):  # type: ignore[no-redef]
                logger.debug("DB connection checkout from pool")

            @event.listens_for(engine, "checkin")
            def _receive_checkin(dbapi_connection, connection_record):  # type: ignore[no-redef]
                logger.debug("DB connection returned to pool")

    def init_app(self, app: Flask) -> None:
        self.connect()
        app.extensions["database"] = self
        app.teardown_appcontext(teardown_db_session)

    def session(self) -> Session:
        if self._sessionmaker is None:
            raise RuntimeError("Database.connect() has not been called")
        return self._sessionmaker()

    def dispose(self) -> None:
        if self._base_engine is not None:
            self._base_engine.dispose()
            logger.info("Database engine disposed")


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """
    pysqlite issues its own BEGIN/COMMIT and breaks SAVEPOINT; let SQLAlchemy emit them.
    Also turns on foreign key enforcement.
    """

    @event.listens_for(engine, "connect")
    def _sqlite_connect(dbapi_connection, connection_record):  # type: ignore[no-redef]
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _sqlite_begin(conn):  # type: ignore[no-redef]
        conn.exec_driver_sql("BEGIN")


def get_database(app: Flask | None = None) -> Database:
    if app is None:
        from flask import current_app

        app = current_app
    return app.extensions["database"]


def db_session(app: Flask | None = None) -> Session:
    """
    Request-scoped session. Use inside request handlers.
    """
    if hasattr(g, "db_session") and g.db_session is not None:
        return g.db_session
    g.db_session = get_database(app).session()  # type: ignore[assignment]
    return g.db_session


def teardown_db_session(_exc: BaseException | None) -> None:
    # close() rolls back anything uncommitted before the connection goes back to the pool
    s: Session | None = getattr(g, "db_session", None)
    if s is not None:
        try:
            s.close()
        except SQLAlchemyError:
            logger.exception("Failed to close request DB session")
        g.db_session = None


def db_error_message(e: SQLAlchemyError) -> str:
    orig = getattr(e, "orig", None)
    return str(orig or e).strip()


@contextmanager
def atomic(s: Session, *, action: str) -> Generator[Session, None, None]:
    """
    Commit on success, roll back on any error.
    Database errors are re-raised as TransactionFailure carrying the driver message.
    """
    try:
        yield s
        s.commit()
    except SQLAlchemyError as e:
        s.rollback()
        logger.exception("%s failed; transaction rolled back", action)
        raise TransactionFailure(db_error_message(e) or f"Failed to {action}") from e
    except Exception:
        s.rollback()
        raise


@contextmanager
def session_scope(app: Flask) -> Generator[Session, None, None]:
    """
    Non-request helper for scripts/tests: yields a session and commits/rolls back.
    """
    s = get_database(app).session()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()

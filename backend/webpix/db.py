"""Database layer for usage counters. SQLite by default; set DATABASE_URL for MySQL or SQL Server.
Startup ensures the counters table exists; on connection failure logs verbosely and falls back to SQLite or in-memory so the app can start."""
import logging
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool

from webpix import config as app_config

logger = logging.getLogger("webpix.db")

_engine: Optional[Engine] = None

COUNTERS_TABLE = "usage_counters"


def dialect_kind(url: str) -> str:
    if "mysql" in url:
        return "MySQL"
    if "sqlite" in url:
        return "SQLite"
    return "SQL Server"


def make_engine(url: str) -> Engine:
    kwargs: dict = {}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url == "sqlite://":
            # One shared connection, otherwise every thread sees its own empty database.
            kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **kwargs)
    logger.info("Database engine created (%s)", dialect_kind(url))
    return engine


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = make_engine(app_config.DATABASE_URL)
    return _engine


def create_counters_table(conn: Connection, kind: str) -> None:
    if kind == "SQLite":
        conn.execute(text(f"""
            CREATE TABLE IF NOT EXISTS {COUNTERS_TABLE} (
                name TEXT PRIMARY KEY,
                value INTEGER NOT NULL DEFAULT 0
            )
        """))
    elif kind == "MySQL":
        conn.execute(text(f"""
            CREATE TABLE IF NOT EXISTS {COUNTERS_TABLE} (
                name VARCHAR(255) PRIMARY KEY,
                value BIGINT NOT NULL DEFAULT 0
            )
        """))
    else:
        conn.execute(text(f"""
            IF NOT EXISTS (SELECT * FROM sys.tables WHERE name = '{COUNTERS_TABLE}')
            CREATE TABLE {COUNTERS_TABLE} (
                name NVARCHAR(255) PRIMARY KEY,
                value BIGINT NOT NULL DEFAULT 0
            )
        """))
    conn.commit()


def ensure_tables(engine: Engine) -> None:
    """Create the counters table if it does not exist."""
    with engine.connect() as conn:
        create_counters_table(conn, dialect_kind(str(engine.url)))
    logger.info("Required table ensured: %s", COUNTERS_TABLE)


def init_db() -> None:
    """Prepare database at startup. On failure, fall back to a SQLite file, then in-memory SQLite."""
    global _engine
    kind = dialect_kind(app_config.DATABASE_URL)
    logger.info("Database init: preparing %s (table: %s)", kind, COUNTERS_TABLE)

    try:
        ensure_tables(get_engine())
        logger.info("Database ready: %s", kind)
        return
    except OperationalError as e:
        logger.warning(
            "Database connection failed (%s): %s. Will try fallback.",
            kind,
            e.orig,
            exc_info=True,
        )
        if kind == "MySQL":
            try:
                sqlite_path = app_config.BASE_DIR / "data" / "webpix.db"
                sqlite_path.parent.mkdir(parents=True, exist_ok=True)
                app_config.DATABASE_URL = f"sqlite:///{sqlite_path}"
                _engine = make_engine(app_config.DATABASE_URL)
                ensure_tables(_engine)
                logger.warning(
                    "MySQL unavailable. Using SQLite at %s. Fix MYSQL_* in .env to use MySQL.",
                    sqlite_path,
                )
                return
            except Exception as fallback_err:
                logger.exception(
                    "SQLite file fallback failed: %s. Trying in-memory SQLite.",
                    fallback_err,
                )
        else:
            logger.exception("Database error (non-MySQL). Trying in-memory SQLite.")
    except Exception as e:
        logger.exception("Database init failed: %s. Trying in-memory SQLite.", e)

    # Last resort: counters will not persist across restarts.
    app_config.DATABASE_URL = "sqlite:///:memory:"
    _engine = make_engine(app_config.DATABASE_URL)
    ensure_tables(_engine)
    logger.warning("Database unavailable. Using in-memory SQLite. Counters will not persist across restarts.")


@contextmanager
def session(engine: Optional[Engine] = None):
    with (engine or get_engine()).connect() as conn:
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise


def increment_counter(conn: Connection, kind: str, name: str, delta: int) -> None:
    """Single-statement upsert, so concurrent increments never lose an update."""
    params = {"name": name, "delta": delta}
    if kind == "SQLite":
        conn.execute(
            text(f"""
                INSERT INTO {COUNTERS_TABLE} (name, value) VALUES (:name, :delta)
                ON CONFLICT(name) DO UPDATE SET value = value + excluded.value
            """),
            params,
        )
    elif kind == "MySQL":
        conn.execute(
            text(f"""
                INSERT INTO {COUNTERS_TABLE} (name, value) VALUES (:name, :delta)
                ON DUPLICATE KEY UPDATE value = value + VALUES(value)
            """),
            params,
        )
    else:
        conn.execute(
            text(f"""
                MERGE {COUNTERS_TABLE} WITH (HOLDLOCK) AS t USING (SELECT :name AS name) AS s ON t.name = s.name
                WHEN MATCHED THEN UPDATE SET value = t.value + :delta
                WHEN NOT MATCHED THEN INSERT (name, value) VALUES (:name, :delta);
            """),
            params,
        )


def read_counter(conn: Connection, name: str) -> Optional[int]:
    row = conn.execute(
        text(f"SELECT value FROM {COUNTERS_TABLE} WHERE name = :name"),
        {"name": name},
    ).fetchone()
    return int(row[0]) if row else None

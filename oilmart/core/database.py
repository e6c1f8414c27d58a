from oilmart.core.config import settings
from oilmart.core.exceptions import AppError, DatabaseError, IndexBuildingError
from oilmart.core.logging import logger

# Postgres (psycopg2) imports
from typing import Any, Dict, List, Optional
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from psycopg2.pool import SimpleConnectionPool
import psycopg2
import psycopg2.errors

_pg_pool: Optional[SimpleConnectionPool] = None

SCHEMA_FILE = Path(__file__).resolve().parent / "schema.sql"


# ==============================
# Psycopg2 connection utilities
# ==============================
def _build_conninfo(url: str) -> str:
    """Ensure an sslmode is present for hosted Postgres connections."""
    if not url:
        raise ValueError("DATABASE_URL is not set")
    if "sslmode=" in url:
        return url
    # Local databases usually run without TLS
    mode = "disable" if ("localhost" in url or "127.0.0.1" in url) else "require"
    joiner = "&" if "?" in url else "?"
    return f"{url}{joiner}sslmode={mode}"


def get_pg_pool() -> SimpleConnectionPool:
    """Lazily initialize and return a global psycopg2 connection pool."""
    global _pg_pool
    if _pg_pool is None:
        conninfo = _build_conninfo(settings.database_url)
        _pg_pool = SimpleConnectionPool(
            minconn=settings.db_pool_min, maxconn=settings.db_pool_max, dsn=conninfo
        )
    return _pg_pool


def close_pg_pool() -> None:
    global _pg_pool
    if _pg_pool is not None:
        _pg_pool.closeall()
        _pg_pool = None


@contextmanager
def pg_connection():
    """Context manager that yields a pooled psycopg2 connection."""
    pool = get_pg_pool()
    conn = pool.getconn()
    try:
        yield conn
    finally:
        pool.putconn(conn)


@contextmanager
def pg_cursor(commit: bool = False):
    """Context manager for a psycopg2 cursor.

    With ``commit=True`` everything executed inside the block is one unit of
    work: it is committed on a clean exit and rolled back if anything raises,
    so a failed multi-table operation leaves no partial writes behind.

    Usage:
        with pg_cursor(commit=True) as cur:
            cur.execute("UPDATE products SET stock = stock - %s WHERE id = %s", (2, 1))
    """
    with pg_connection() as conn:
        try:
            with conn.cursor() as cur:
                yield cur
            if commit:
                conn.commit()
            else:
                conn.rollback()
        except BaseException:
            conn.rollback()
            raise


def rows_to_dicts(cur) -> List[Dict[str, Any]]:
    """Convert psycopg2 cursor results to list of dicts."""
    columns = [d[0] for d in cur.description]
    return [dict(zip(columns, row)) for row in cur.fetchall()]


def row_to_dict(cur) -> Optional[Dict[str, Any]]:
    """Fetch a single row as a dict, or None when the query returned nothing."""
    row = cur.fetchone()
    if row is None:
        return None
    columns = [d[0] for d in cur.description]
    return dict(zip(columns, row))


def _db_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def next_row_id(cur, table: str) -> int:
    """Reserve the next value of a table's SERIAL id ahead of the INSERT."""
    cur.execute("SELECT nextval(pg_get_serial_sequence(%s, 'id'))", (table,))
    return cur.fetchone()[0]


def insert_row(cur, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """INSERT one row built from ``data`` and return it as stored."""
    columns = list(data.keys())
    placeholders = ",".join(["%s"] * len(columns))
    cur.execute(
        f"INSERT INTO {table} ({','.join(columns)}) VALUES ({placeholders}) RETURNING *",
        [_db_value(data[c]) for c in columns],
    )
    return row_to_dict(cur)


def update_row(cur, table: str, row_id: Any, data: Dict[str, Any], key: str = "id") -> Optional[Dict[str, Any]]:
    """UPDATE the given columns of one row; None when the row does not exist."""
    set_clauses = ", ".join(f"{k} = %s" for k in data.keys())
    params = [_db_value(v) for v in data.values()] + [row_id]
    cur.execute(f"UPDATE {table} SET {set_clauses} WHERE {key} = %s RETURNING *", params)
    return row_to_dict(cur)


def db_error(message: str, exc: Exception) -> AppError:
    """Map a driver exception to the error surfaced to the client."""
    if isinstance(exc, AppError):
        return exc
    if isinstance(exc, (psycopg2.errors.UndefinedTable, psycopg2.errors.UndefinedColumn)):
        return IndexBuildingError(
            "Database schema is still being prepared. Please retry in a moment.",
            extra={"operation": message},
        )
    return DatabaseError(message)


def init_schema() -> None:
    """Apply the bundled DDL. Every statement is idempotent."""
    ddl = SCHEMA_FILE.read_text(encoding="utf-8")
    logger.info("Applying database schema from %s", SCHEMA_FILE.name)
    with pg_cursor(commit=True) as cur:
        cur.execute(ddl)
    logger.info("Database schema ready")

"""
Database abstraction layer supporting both SQLite (local dev) and PostgreSQL (production).

Usage:
    - Local development: Uses SQLite by default (DATABASE_PATH env var)
    - Production: Reads PostgreSQL credentials from VCAP_SERVICES or PG_* vars
    - Override: Set DATABASE_URL env var to a PostgreSQL connection string

Connections are opened per operation via get_db_connection(); nothing is
shared between concurrent callers. Row access by column name is supported
in both modes.
"""

import os
import json
import sqlite3
import logging
from contextlib import contextmanager
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

_data_dir = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'data')

DATABASE_PATH = os.environ.get('DATABASE_PATH', os.path.join(_data_dir, 'failure_analytics.db'))

SCHEMA_PATH = os.path.join(_data_dir, 'schema.sql')

SCHEMA_PG_PATH = os.path.join(_data_dir, 'schema_pg.sql')


def _detect_database_type() -> str:
    """Detect which database backend to use based on environment."""
    # Explicit override
    if os.environ.get('DATABASE_TYPE'):
        return os.environ['DATABASE_TYPE'].lower()

    # PostgreSQL URL present
    if os.environ.get('DATABASE_URL'):
        return 'postgresql'

    # Cloud Foundry environment
    if os.environ.get('VCAP_SERVICES'):
        try:
            services = json.loads(os.environ['VCAP_SERVICES'])
            if services.get('postgresql-db') or services.get('postgresql'):
                return 'postgresql'
        except (json.JSONDecodeError, KeyError):
            pass

    return 'sqlite'


DATABASE_TYPE = _detect_database_type()


# ---------------------------------------------------------------------------
# PostgreSQL connection pool (lazy-initialized)
# ---------------------------------------------------------------------------

_pg_pool = None


def _get_pg_connection_string() -> str:
    """Build PostgreSQL connection string from environment."""
    if os.environ.get('DATABASE_URL'):
        return os.environ['DATABASE_URL']

    if os.environ.get('VCAP_SERVICES'):
        try:
            services = json.loads(os.environ['VCAP_SERVICES'])
            pg_services = services.get('postgresql-db', []) or services.get('postgresql', [])
            if pg_services:
                creds = pg_services[0].get('credentials', {})
                uri = creds.get('uri', '')
                if uri:
                    return uri
                host = creds.get('hostname', 'localhost')
                port = creds.get('port', 5432)
                dbname = creds.get('dbname', 'failure_analytics')
                user = creds.get('username', '')
                password = creds.get('password', '')
                return f"postgresql://{user}:{password}@{host}:{port}/{dbname}"
        except (json.JSONDecodeError, KeyError):
            pass

    host = os.environ.get('PG_HOST', 'localhost')
    port = os.environ.get('PG_PORT', '5432')
    dbname = os.environ.get('PG_DATABASE', 'failure_analytics')
    user = os.environ.get('PG_USER', 'failure_analytics')
    password = os.environ.get('PG_PASSWORD', '')
    return f"postgresql://{user}:{password}@{host}:{port}/{dbname}"


def _get_pg_pool():
    """Get or create the PostgreSQL connection pool."""
    global _pg_pool
    if _pg_pool is None:
        from psycopg2 import pool as pg_pool
        logger.info("Creating PostgreSQL connection pool")
        _pg_pool = pg_pool.ThreadedConnectionPool(
            minconn=1,
            maxconn=int(os.environ.get('PG_POOL_MAX', '10')),
            dsn=_get_pg_connection_string()
        )
    return _pg_pool


def driver_errors() -> tuple:
    """
    Driver exceptions that mean the store cannot serve a request.

    Covers unreachable databases and missing tables for the active backend.
    """
    errors = (sqlite3.OperationalError,)
    if DATABASE_TYPE == 'postgresql':
        import psycopg2
        errors += (psycopg2.OperationalError, psycopg2.ProgrammingError, psycopg2.InterfaceError)
    return errors


def integrity_errors() -> tuple:
    """Driver exceptions raised for constraint violations."""
    errors = (sqlite3.IntegrityError,)
    if DATABASE_TYPE == 'postgresql':
        import psycopg2
        errors += (psycopg2.IntegrityError,)
    return errors


# ---------------------------------------------------------------------------
# DictRow wrapper for PostgreSQL (matches sqlite3.Row interface)
# ---------------------------------------------------------------------------

class PgDictCursor:
    """Wraps a psycopg2 cursor to return dict-like rows (matching sqlite3.Row)."""

    def __init__(self, cursor):
        self._cursor = cursor

    def execute(self, query, params=None):
        # Convert ? placeholders to %s for PostgreSQL
        pg_query = query.replace('?', '%s')
        self._cursor.execute(pg_query, params)
        return self

    def fetchone(self):
        row = self._cursor.fetchone()
        if row is None:
            return None
        return DictRow(row, self._cursor.description)

    def fetchall(self):
        rows = self._cursor.fetchall()
        return [DictRow(row, self._cursor.description) for row in rows]

    @property
    def rowcount(self):
        return self._cursor.rowcount

    def close(self):
        self._cursor.close()


class DictRow:
    """Row wrapper providing dict-like access by column name, matching sqlite3.Row."""

    __slots__ = ('_data', '_columns')

    def __init__(self, row_tuple, description):
        self._columns = [desc[0] for desc in description] if description else []
        self._data = dict(zip(self._columns, row_tuple))

    def __getitem__(self, key):
        if isinstance(key, int):
            return list(self._data.values())[key]
        return self._data[key]

    def __contains__(self, key):
        return key in self._data

    def __iter__(self):
        return iter(self._data.values())

    def __len__(self):
        return len(self._data)

    def keys(self):
        return self._columns

    def get(self, key, default=None):
        return self._data.get(key, default)

    def __repr__(self):
        return f"DictRow({self._data})"


class PgConnectionWrapper:
    """Wraps a psycopg2 connection to match the sqlite3.Connection interface."""

    def __init__(self, conn, pool):
        self._conn = conn
        self._pool = pool
        self._closed = False

    def execute(self, query, params=None):
        cursor = PgDictCursor(self._conn.cursor())
        cursor.execute(query, params)
        return cursor

    def commit(self):
        self._conn.commit()

    def rollback(self):
        self._conn.rollback()

    def close(self):
        if not self._closed:
            self._pool.putconn(self._conn)
            self._closed = True


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def row_to_dict(row) -> Dict[str, Any]:
    """Convert a sqlite3.Row or DictRow into a plain dict."""
    return {key: row[key] for key in row.keys()}


def get_standalone_connection(database_path: Optional[str] = None):
    """
    Open a new database connection.

    Caller is responsible for closing the connection.
    """
    if DATABASE_TYPE == 'postgresql':
        pool = _get_pg_pool()
        raw_conn = pool.getconn()
        raw_conn.autocommit = False
        return PgConnectionWrapper(raw_conn, pool)

    path = database_path or DATABASE_PATH
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    logger.debug(f"Opened SQLite connection: {path}")
    return conn


@contextmanager
def get_db_connection(database_path: Optional[str] = None):
    """
    Context manager for a single unit of work.

    Usage:
        with get_db_connection() as conn:
            cursor = conn.execute("SELECT * FROM failure_records")
            rows = cursor.fetchall()
    """
    conn = get_standalone_connection(database_path)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db(database_path: Optional[str] = None):
    """Initialize the database with the schema."""
    if DATABASE_TYPE == 'postgresql':
        pool = _get_pg_pool()
        conn = pool.getconn()
        try:
            with open(SCHEMA_PG_PATH, mode='r') as f:
                conn.cursor().execute(f.read())
            conn.commit()
            logger.info("PostgreSQL database initialized")
        finally:
            pool.putconn(conn)
        return

    path = database_path or DATABASE_PATH
    directory = os.path.dirname(path)
    if directory and not os.path.exists(directory):
        os.makedirs(directory)

    with sqlite3.connect(path) as db:
        with open(SCHEMA_PATH, mode='r') as f:
            db.cursor().executescript(f.read())
        db.commit()
    logger.info(f"SQLite database initialized at {path}")


def close_pool():
    """Close the connection pool (call on app shutdown)."""
    global _pg_pool
    if _pg_pool is not None:
        _pg_pool.closeall()
        _pg_pool = None
        logger.info("PostgreSQL connection pool closed")


def get_database_info(database_path: Optional[str] = None) -> dict:
    """Return information about the current database configuration."""
    return {
        'type': DATABASE_TYPE,
        'path': (database_path or DATABASE_PATH) if DATABASE_TYPE == 'sqlite' else None,
        'host': os.environ.get('PG_HOST', 'from VCAP_SERVICES') if DATABASE_TYPE == 'postgresql' else None,
        'pool_max': int(os.environ.get('PG_POOL_MAX', '10')) if DATABASE_TYPE == 'postgresql' else None,
    }

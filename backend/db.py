"""Journey history storage: schema, insert, and query helpers.

Supports two modes:
- Remote (Turso): when TURSO_DATABASE_URL is set, connects via libsql with embedded replica.
- Local (dev): when TURSO_DATABASE_URL is empty, uses a local SQLite file via libsql.
"""

import json

import libsql_experimental as libsql

import config
from models import Coordinate, RouteHistory

TURSO_DATABASE_URL = config.TURSO_DATABASE_URL
TURSO_AUTH_TOKEN = config.TURSO_AUTH_TOKEN
DB_PATH = config.HISTORY_DB_PATH


def get_conn():
    if TURSO_DATABASE_URL:
        conn = libsql.connect(
            str(DB_PATH),
            sync_url=TURSO_DATABASE_URL,
            auth_token=TURSO_AUTH_TOKEN,
        )
        conn.sync()
    else:
        conn = libsql.connect(str(DB_PATH))
    return conn


def _rows_to_dicts(cursor) -> list[dict]:
    """Convert cursor results to list of dicts using cursor.description."""
    if cursor.description is None:
        return []
    columns = [desc[0] for desc in cursor.description]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


def _commit(conn) -> None:
    conn.commit()
    if TURSO_DATABASE_URL:
        conn.sync()
    conn.close()


def init_db() -> None:
    conn = get_conn()
    conn.execute("""
        CREATE TABLE IF NOT EXISTS route_history (
            id           TEXT PRIMARY KEY,
            date         TEXT NOT NULL,
            start_time   TEXT NOT NULL,
            end_time     TEXT NOT NULL,
            distance_km  REAL NOT NULL,
            path         TEXT
        )
    """)
    _commit(conn)


def save_route_history(entry: RouteHistory) -> None:
    conn = get_conn()
    conn.execute(
        """INSERT OR REPLACE INTO route_history
           (id, date, start_time, end_time, distance_km, path)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (
            entry.id,
            entry.date,
            entry.start_time,
            entry.end_time,
            entry.distance_km,
            json.dumps([[c.lat, c.lng] for c in entry.path]),
        ),
    )
    _commit(conn)


def get_route_history() -> list[RouteHistory]:
    conn = get_conn()
    cursor = conn.execute("SELECT * FROM route_history ORDER BY date DESC, start_time DESC")
    rows = _rows_to_dicts(cursor)
    conn.close()
    result = []
    for d in rows:
        path = json.loads(d["path"]) if d["path"] else []
        d["path"] = [Coordinate(lat=lat, lng=lng) for lat, lng in path]
        result.append(RouteHistory(**d))
    return result

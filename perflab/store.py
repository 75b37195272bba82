from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from copy import deepcopy
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Protocol

from .env import get_env
from .models import format_timestamp, parse_timestamp

DEFAULT_DATA_DIR = Path(__file__).resolve().parent.parent / "data"
DEFAULT_DB_FILENAME = "perflab.db"
LOGGER = logging.getLogger(__name__)

COLUMNS: dict[str, tuple[str, ...]] = {
    "athletes": (
        "id",
        "club_code",
        "first_name",
        "last_name",
        "position",
        "status",
        "height_cm",
        "weight_kg",
    ),
    "training_sessions": (
        "id",
        "session_date",
        "session_name",
        "microcycle_label",
        "session_type",
        "notes",
    ),
    "gps_metrics": (
        "id",
        "athlete_id",
        "session_id",
        "total_distance_m",
        "high_speed_distance_m",
        "sprint_distance_m",
        "max_speed_kmh",
        "player_load",
        "accel_count",
        "decel_count",
        "source",
        "recorded_at",
    ),
    "jump_metrics": (
        "id",
        "athlete_id",
        "session_id",
        "test_type",
        "jump_height_cm",
        "rsi",
        "peak_power_w",
        "asymmetry_pct",
        "source",
        "recorded_at",
    ),
    "strength_metrics": (
        "id",
        "athlete_id",
        "session_id",
        "exercise_name",
        "set_count",
        "reps",
        "load_kg",
        "rpe",
        "estimated_1rm",
        "source",
        "recorded_at",
    ),
}
COLLECTIONS: tuple[str, ...] = tuple(COLUMNS)
TIME_COLUMN = "recorded_at"

SCHEMA = """
CREATE TABLE IF NOT EXISTS athletes (
    id TEXT PRIMARY KEY,
    club_code TEXT,
    first_name TEXT NOT NULL,
    last_name TEXT NOT NULL,
    position TEXT,
    status TEXT NOT NULL DEFAULT 'active',
    height_cm REAL,
    weight_kg REAL
);

CREATE TABLE IF NOT EXISTS training_sessions (
    id TEXT PRIMARY KEY,
    session_date TEXT,
    session_name TEXT NOT NULL,
    microcycle_label TEXT,
    session_type TEXT,
    notes TEXT
);

CREATE TABLE IF NOT EXISTS gps_metrics (
    id TEXT PRIMARY KEY,
    athlete_id TEXT NOT NULL,
    session_id TEXT,
    total_distance_m REAL,
    high_speed_distance_m REAL,
    sprint_distance_m REAL,
    max_speed_kmh REAL,
    player_load REAL,
    accel_count INTEGER,
    decel_count INTEGER,
    source TEXT NOT NULL DEFAULT 'manual',
    recorded_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS jump_metrics (
    id TEXT PRIMARY KEY,
    athlete_id TEXT NOT NULL,
    session_id TEXT,
    test_type TEXT NOT NULL,
    jump_height_cm REAL,
    rsi REAL,
    peak_power_w REAL,
    asymmetry_pct REAL,
    source TEXT NOT NULL DEFAULT 'manual',
    recorded_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS strength_metrics (
    id TEXT PRIMARY KEY,
    athlete_id TEXT NOT NULL,
    session_id TEXT,
    exercise_name TEXT NOT NULL,
    set_count INTEGER,
    reps INTEGER,
    load_kg REAL,
    rpe REAL,
    estimated_1rm REAL,
    source TEXT NOT NULL DEFAULT 'manual',
    recorded_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_gps_athlete_time ON gps_metrics (athlete_id, recorded_at);
CREATE INDEX IF NOT EXISTS idx_jump_athlete_time ON jump_metrics (athlete_id, recorded_at);
CREATE INDEX IF NOT EXISTS idx_strength_athlete_time ON strength_metrics (athlete_id, recorded_at);
"""


class StoreError(RuntimeError):
    """Raised by store backends for unknown collections/columns or unusable storage."""


class Store(Protocol):
    """Read/insert interface shared by the SQLite store and the demo store."""

    def query(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    def insert(self, collection: str, rows: Iterable[Mapping[str, Any]]) -> int: ...


def _data_dir() -> Path:
    override = get_env("DATA_DIR")
    base = Path(override).expanduser() if override else DEFAULT_DATA_DIR
    base.mkdir(parents=True, exist_ok=True)
    return base


def _database_file() -> Path:
    override = get_env("DB_FILE")
    if override:
        path = Path(override).expanduser()
    else:
        path = _data_dir() / DEFAULT_DB_FILENAME
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def _check_collection(collection: str) -> tuple[str, ...]:
    try:
        return COLUMNS[collection]
    except KeyError:
        raise StoreError(f"Unknown collection {collection!r}; expected one of {', '.join(COLLECTIONS)}.") from None


def _check_column(collection: str, column: str) -> str:
    if column not in _check_collection(collection):
        raise StoreError(f"Unknown column {column!r} for {collection}.")
    return column


def _normalise_value(column: str, value: Any) -> Any:
    if column == TIME_COLUMN:
        stamp = parse_timestamp(value)
        if stamp is None:
            raise StoreError(f"{column} must be an ISO timestamp; received {value!r}.")
        return format_timestamp(stamp)
    if column == "session_date" and isinstance(value, (date, datetime)):
        return value.isoformat()[:10]
    if hasattr(value, "value") and not isinstance(value, (int, float, str)):
        return value.value
    return value


def normalise_row(collection: str, row: Mapping[str, Any]) -> dict[str, Any]:
    """Project a row onto the collection's columns with storable values."""
    columns = _check_collection(collection)
    return {column: _normalise_value(column, row.get(column)) for column in columns if column in row}


def _bound(value: Any) -> str:
    stamp = parse_timestamp(value)
    if stamp is None:
        raise StoreError(f"Time bounds must be ISO timestamps; received {value!r}.")
    return format_timestamp(stamp)


class SqliteStore:
    """SQLite-backed store; schema is created lazily on first use."""

    def __init__(self, path: Path | str | None = None, *, timeout: float = 5.0) -> None:
        self.path = Path(path).expanduser() if path is not None else _database_file()
        self.timeout = timeout
        self._initialised = False

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        if self._initialised:
            return
        conn.executescript(SCHEMA)
        self._initialised = True

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Context manager yielding a SQLite connection with ensured schema."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        try:
            self._ensure_schema(conn)
            yield conn
        finally:
            conn.close()

    def query(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        columns = _check_collection(collection)
        clauses: list[str] = []
        params: list[Any] = []
        for key, value in (filters or {}).items():
            if value is None:
                continue
            if key == "since":
                clauses.append(f"{TIME_COLUMN} >= ?")
                params.append(_bound(value))
            elif key == "until":
                clauses.append(f"{TIME_COLUMN} < ?")
                params.append(_bound(value))
            else:
                clauses.append(f"{_check_column(collection, key)} = ?")
                params.append(_normalise_value(key, value))
        if ("since" in (filters or {}) or "until" in (filters or {})) and TIME_COLUMN not in columns:
            raise StoreError(f"{collection} has no {TIME_COLUMN} column to filter on.")

        sql = f"SELECT {', '.join(columns)} FROM {collection}"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        if order_by:
            direction = "DESC" if descending else "ASC"
            sql += f" ORDER BY {_check_column(collection, order_by)} {direction}, rowid {direction}"
        else:
            sql += " ORDER BY rowid"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        with self.connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [dict(row) for row in rows]

    def insert(self, collection: str, rows: Iterable[Mapping[str, Any]]) -> int:
        payload = [normalise_row(collection, row) for row in rows]
        if not payload:
            return 0
        count = 0
        with self.connect() as conn:
            for row in payload:
                keys = list(row)
                placeholders = ", ".join("?" for _ in keys)
                conn.execute(
                    f"INSERT INTO {collection} ({', '.join(keys)}) VALUES ({placeholders})",
                    [row[key] for key in keys],
                )
                count += 1
            conn.commit()
        LOGGER.debug("Inserted %d rows into %s (%s)", count, collection, self.path)
        return count


class MemoryStore:
    """
    In-memory store with the same query semantics as `SqliteStore`.

    Each instance owns its tables; nothing is shared between instances, so demo
    data and test fixtures never leak across requests.
    """

    def __init__(self, tables: Mapping[str, Iterable[Mapping[str, Any]]] | None = None) -> None:
        self._tables: dict[str, list[dict[str, Any]]] = {name: [] for name in COLLECTIONS}
        for collection, rows in (tables or {}).items():
            self.insert(collection, rows)

    def query(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        columns = _check_collection(collection)
        predicates = []
        for key, value in (filters or {}).items():
            if value is None:
                continue
            if key in {"since", "until"}:
                if TIME_COLUMN not in columns:
                    raise StoreError(f"{collection} has no {TIME_COLUMN} column to filter on.")
                bound = _bound(value)
                if key == "since":
                    predicates.append(lambda row, b=bound: row.get(TIME_COLUMN, "") >= b)
                else:
                    predicates.append(lambda row, b=bound: row.get(TIME_COLUMN, "") < b)
            else:
                column = _check_column(collection, key)
                expected = _normalise_value(column, value)
                predicates.append(lambda row, c=column, e=expected: row.get(c) == e)

        result = [row for row in self._tables[collection] if all(check(row) for check in predicates)]
        if order_by:
            column = _check_column(collection, order_by)
            # Ties fall back to insertion order, reversed when descending, like rowid in SQLite.
            present = [row for row in result if row.get(column) is not None]
            missing = [row for row in result if row.get(column) is None]
            if descending:
                present.reverse()
                missing.reverse()
            present.sort(key=lambda row: row[column], reverse=descending)
            result = missing + present if not descending else present + missing
        if limit is not None:
            result = result[: int(limit)]
        return deepcopy(result)

    def insert(self, collection: str, rows: Iterable[Mapping[str, Any]]) -> int:
        payload = [normalise_row(collection, row) for row in rows]
        self._tables[collection].extend(payload)
        return len(payload)

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Iterable, Sequence
from urllib.parse import urlparse

import aiosqlite
import asyncpg

from medidispatch.config import DATABASE_MAX_CONNECTIONS, DATABASE_PATH, DATABASE_URL, SEED_DEMO_DATA
from medidispatch.models.ambulance import AmbulanceStatus, HospitalResponse, Priority
from medidispatch.models.hospital import AmbulanceType, AmbulanceUnitStatus
from medidispatch.models.user import Role

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2


def utcnow() -> str:
    return datetime.now(UTC).isoformat()


class DatabaseAdapter:
    engine: str

    async def execute(self, query: str, params: Sequence | None = None) -> int:  # pragma: no cover - interface
        """Run a statement and return the number of affected rows."""
        raise NotImplementedError

    async def executemany(self, query: str, seq_params: Iterable[Sequence]) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def insert(self, query: str, params: Sequence | None = None) -> int:  # pragma: no cover - interface
        """Run an INSERT and return the new row id."""
        raise NotImplementedError

    async def fetch_one(self, query: str, params: Sequence | None = None):  # pragma: no cover - interface
        raise NotImplementedError

    async def fetch_all(self, query: str, params: Sequence | None = None):  # pragma: no cover - interface
        raise NotImplementedError

    async def commit(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def close(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError


@dataclass
class SQLiteAdapter(DatabaseAdapter):
    conn: aiosqlite.Connection
    engine: str = "sqlite"

    async def execute(self, query: str, params: Sequence | None = None) -> int:
        cursor = await self.conn.execute(query, params or ())
        return cursor.rowcount

    async def executemany(self, query: str, seq_params: Iterable[Sequence]) -> None:
        await self.conn.executemany(query, seq_params)

    async def insert(self, query: str, params: Sequence | None = None) -> int:
        cursor = await self.conn.execute(query, params or ())
        return cursor.lastrowid

    async def fetch_one(self, query: str, params: Sequence | None = None):
        cursor = await self.conn.execute(query, params or ())
        return await cursor.fetchone()

    async def fetch_all(self, query: str, params: Sequence | None = None):
        cursor = await self.conn.execute(query, params or ())
        return await cursor.fetchall()

    async def commit(self) -> None:
        await self.conn.commit()

    async def close(self) -> None:
        await self.conn.close()


@dataclass
class PostgresAdapter(DatabaseAdapter):
    pool: asyncpg.Pool
    engine: str = "postgres"

    @staticmethod
    def _translate_query(query: str) -> str:
        # Convert SQLite-style ? placeholders to asyncpg-style $1, $2, ...
        if "$1" in query:
            return query
        idx = 1
        out = []
        for ch in query:
            if ch == "?":
                out.append(f"${idx}")
                idx += 1
            else:
                out.append(ch)
        return "".join(out)

    async def execute(self, query: str, params: Sequence | None = None) -> int:
        q = self._translate_query(query)
        async with self.pool.acquire() as conn:
            status = await conn.execute(q, *(params or ()))
        # asyncpg returns a command tag such as "UPDATE 3"
        tail = status.rsplit(" ", 1)[-1] if status else ""
        return int(tail) if tail.isdigit() else 0

    async def executemany(self, query: str, seq_params: Iterable[Sequence]) -> None:
        q = self._translate_query(query)
        async with self.pool.acquire() as conn:
            await conn.executemany(q, seq_params)

    async def insert(self, query: str, params: Sequence | None = None) -> int:
        q = self._translate_query(query.rstrip().rstrip(";")) + " RETURNING id"
        async with self.pool.acquire() as conn:
            return await conn.fetchval(q, *(params or ()))

    async def fetch_one(self, query: str, params: Sequence | None = None):
        q = self._translate_query(query)
        async with self.pool.acquire() as conn:
            return await conn.fetchrow(q, *(params or ()))

    async def fetch_all(self, query: str, params: Sequence | None = None):
        q = self._translate_query(query)
        async with self.pool.acquire() as conn:
            return await conn.fetch(q, *(params or ()))

    async def commit(self) -> None:
        # asyncpg autocommits per statement unless an explicit transaction is used.
        return

    async def close(self) -> None:
        await self.pool.close()


_db: DatabaseAdapter | None = None


async def get_db() -> DatabaseAdapter:
    global _db
    if _db is None:
        if DATABASE_URL and not DATABASE_URL.startswith("sqlite"):
            pool = await asyncpg.create_pool(
                dsn=DATABASE_URL,
                min_size=1,
                max_size=DATABASE_MAX_CONNECTIONS,
            )
            _db = PostgresAdapter(pool)
            logger.info("Connected to Postgres database")
        else:
            sqlite_path = DATABASE_PATH
            if DATABASE_URL:
                sqlite_path = _sqlite_path_from_url(DATABASE_URL) or DATABASE_PATH
            conn = await aiosqlite.connect(sqlite_path)
            conn.row_factory = aiosqlite.Row
            _db = SQLiteAdapter(conn)
            logger.info("Connected to SQLite database at %s", sqlite_path)
    return _db


def _sqlite_path_from_url(url: str) -> str:
    parsed = urlparse(url)
    path = parsed.path or ""
    if not path or path == "/":
        return ""
    # sqlite:////absolute/path.db -> keep absolute path
    if url.startswith("sqlite:////"):
        return path
    # sqlite:///relative.db -> strip leading slash
    if path.startswith("/"):
        return path[1:]
    return path


def _check(column: str, values: Iterable[str]) -> str:
    allowed = ", ".join(f"'{v}'" for v in values)
    return f"CHECK({column} IN ({allowed}))"


STATUS_CHECK = _check("status", [s.value for s in AmbulanceStatus])

AMBULANCE_REQUEST_COLUMNS = f"""
        id {{pk}},
        customer_user_id INTEGER NOT NULL REFERENCES users(id),
        pickup_address TEXT NOT NULL,
        destination_address TEXT NOT NULL,
        emergency_type TEXT NOT NULL,
        customer_condition TEXT,
        contact_number TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending' {STATUS_CHECK},
        priority TEXT NOT NULL DEFAULT 'normal' {_check("priority", [p.value for p in Priority])},
        assigned_staff_id INTEGER REFERENCES users(id),
        assigned_ambulance_id INTEGER,
        notes TEXT,
        is_read INTEGER NOT NULL DEFAULT 0,
        forwarded_to_hospital_id INTEGER REFERENCES users(id),
        hospital_response TEXT {_check("hospital_response", [r.value for r in HospitalResponse])},
        hospital_response_notes TEXT,
        hospital_response_date TEXT,
        customer_state TEXT,
        customer_district TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT
"""

SCHEMA = [
    f"""
    CREATE TABLE IF NOT EXISTS users (
        id {{pk}},
        username TEXT UNIQUE NOT NULL,
        email TEXT UNIQUE NOT NULL,
        role TEXT NOT NULL {_check("role", [r.value for r in Role])},
        full_name TEXT NOT NULL,
        phone TEXT,
        status TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active', 'suspended')),
        admin_type TEXT DEFAULT 'system' CHECK(admin_type IN ('system', 'state')),
        state TEXT,
        district TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS hospitals (
        id {pk},
        user_id INTEGER NOT NULL UNIQUE REFERENCES users(id),
        hospital_name TEXT NOT NULL,
        address TEXT NOT NULL,
        phone_number TEXT,
        state TEXT,
        district TEXT,
        number_of_ambulances INTEGER NOT NULL DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active', 'suspended')),
        created_at TEXT NOT NULL,
        updated_at TEXT
    )
    """,
    f"CREATE TABLE IF NOT EXISTS ambulance_requests ({AMBULANCE_REQUEST_COLUMNS})",
    f"""
    CREATE TABLE IF NOT EXISTS hospital_ambulances (
        id {{pk}},
        hospital_user_id INTEGER NOT NULL REFERENCES users(id),
        registration_number TEXT NOT NULL UNIQUE,
        ambulance_type TEXT NOT NULL {_check("ambulance_type", [t.value for t in AmbulanceType])},
        model TEXT,
        manufacturer TEXT,
        registration_year INTEGER,
        driver_name TEXT,
        driver_phone TEXT,
        driver_license_number TEXT,
        equipment TEXT,
        status TEXT NOT NULL DEFAULT 'available' {_check("status", [s.value for s in AmbulanceUnitStatus])},
        current_location TEXT,
        assigned_request_id INTEGER REFERENCES ambulance_requests(id),
        created_at TEXT NOT NULL,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notifications (
        id {pk},
        user_id INTEGER NOT NULL REFERENCES users(id),
        type TEXT NOT NULL,
        title TEXT NOT NULL,
        message TEXT NOT NULL,
        is_read INTEGER NOT NULL DEFAULT 0,
        related_id INTEGER,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER NOT NULL
    )
    """,
]

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_ambulance_requests_customer ON ambulance_requests (customer_user_id)",
    "CREATE INDEX IF NOT EXISTS idx_ambulance_requests_hospital ON ambulance_requests (forwarded_to_hospital_id)",
    "CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications (user_id)",
]

PRIMARY_KEYS = {
    "sqlite": "INTEGER PRIMARY KEY AUTOINCREMENT",
    "postgres": "SERIAL PRIMARY KEY",
}

# Columns present before request forwarding existed (schema version 1)
LEGACY_REQUEST_COLUMNS = (
    "id, customer_user_id, pickup_address, destination_address, emergency_type, "
    "customer_condition, contact_number, status, priority, assigned_staff_id, "
    "notes, created_at, updated_at"
)

FORWARDING_COLUMNS = (
    "assigned_ambulance_id INTEGER",
    "is_read INTEGER NOT NULL DEFAULT 0",
    "forwarded_to_hospital_id INTEGER",
    "hospital_response TEXT",
    "hospital_response_notes TEXT",
    "hospital_response_date TEXT",
    "customer_state TEXT",
    "customer_district TEXT",
)


def _migration_v2(engine: str) -> list[str]:
    """Add forwarding/jurisdiction columns and widen the status enum."""
    if engine == "sqlite":
        # SQLite cannot alter a CHECK constraint, so the table is rebuilt.
        return [
            "CREATE TABLE ambulance_requests_v2 ("
            + AMBULANCE_REQUEST_COLUMNS.format(pk=PRIMARY_KEYS[engine]) + ")",
            f"INSERT INTO ambulance_requests_v2 ({LEGACY_REQUEST_COLUMNS}) "
            f"SELECT {LEGACY_REQUEST_COLUMNS} FROM ambulance_requests",
            "DROP TABLE ambulance_requests",
            "ALTER TABLE ambulance_requests_v2 RENAME TO ambulance_requests",
        ]
    return [
        *(f"ALTER TABLE ambulance_requests ADD COLUMN IF NOT EXISTS {col}" for col in FORWARDING_COLUMNS),
        "ALTER TABLE ambulance_requests DROP CONSTRAINT IF EXISTS ambulance_requests_status_check",
        f"ALTER TABLE ambulance_requests ADD CONSTRAINT ambulance_requests_status_check {STATUS_CHECK}",
    ]


MIGRATIONS = {
    2: _migration_v2,
}


async def _schema_version(db: DatabaseAdapter) -> int:
    row = await db.fetch_one("SELECT MAX(version) AS version FROM schema_version")
    if row is not None and row["version"] is not None:
        return row["version"]
    # Unversioned database: either freshly created or predating forwarding.
    try:
        await db.fetch_one("SELECT forwarded_to_hospital_id FROM ambulance_requests LIMIT 1")
    except Exception:
        return 1
    return SCHEMA_VERSION


async def init_db() -> None:
    db = await get_db()

    pk = PRIMARY_KEYS[db.engine]
    for stmt in SCHEMA:
        await db.execute(stmt.format(pk=pk))
    await db.commit()

    current = await _schema_version(db)
    for version in sorted(MIGRATIONS):
        if version <= current:
            continue
        logger.info("Migrating database schema to version %d", version)
        for stmt in MIGRATIONS[version](db.engine):
            await db.execute(stmt)
        current = version

    for stmt in INDEXES:
        await db.execute(stmt)
    await db.execute("DELETE FROM schema_version")
    await db.execute("INSERT INTO schema_version (version) VALUES (?)", (current,))
    await db.commit()

    if SEED_DEMO_DATA:
        await _seed_demo_data(db)


async def close_db() -> None:
    global _db
    if _db is not None:
        await _db.close()
        _db = None


DEMO_USERS = [
    # username, email, role, full_name, phone, admin_type, state, district
    ("sysadmin", "admin@medidispatch.local", "admin", "System Admin", "+91-80-0000-0001", "system", None, None),
    ("ka-admin", "ka-admin@medidispatch.local", "admin", "Karnataka Admin", "+91-80-0000-0002", "state", "Karnataka", None),
    ("staff-ravi", "ravi@medidispatch.local", "staff", "Ravi Kumar", "+91-80-0000-0003", None, "Karnataka", "Bangalore Urban"),
    ("asha", "asha@example.com", "customer", "Asha Rao", "+91-98450-00001", None, "Karnataka", "Bangalore Urban"),
    ("st-johns", "dispatch@stjohns.example.com", "hospital", "St. John's Dispatch", "+91-80-2206-5000", None, "Karnataka", "Bangalore Urban"),
    ("manipal", "dispatch@manipal.example.com", "hospital", "Manipal Dispatch", "+91-80-2502-4444", None, "Karnataka", "Bangalore Urban"),
]

DEMO_HOSPITALS = {
    "st-johns": ("St. John's Medical College Hospital", "Sarjapur Road, Koramangala, Bangalore Urban, Karnataka", "KA-01-AB-1001"),
    "manipal": ("Manipal Hospital", "HAL Airport Road, Bangalore Urban, Karnataka", "KA-01-AB-2002"),
}


async def _seed_demo_data(db: DatabaseAdapter) -> None:
    """Seed demo accounts, hospitals and ambulances for local previews."""
    existing_rows = await db.fetch_all("SELECT id, username FROM users")
    user_ids = {row["username"]: row["id"] for row in existing_rows}
    now = utcnow()

    for username, email, role, full_name, phone, admin_type, state, district in DEMO_USERS:
        if username in user_ids:
            continue
        user_ids[username] = await db.insert(
            "INSERT INTO users (username, email, role, full_name, phone, admin_type, state, district, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (username, email, role, full_name, phone, admin_type, state, district, now),
        )

    for username, (name, address, registration) in DEMO_HOSPITALS.items():
        hospital_user_id = user_ids[username]
        existing = await db.fetch_one("SELECT id FROM hospitals WHERE user_id = ?", (hospital_user_id,))
        if existing:
            continue
        await db.insert(
            "INSERT INTO hospitals (user_id, hospital_name, address, state, district, number_of_ambulances, created_at) "
            "VALUES (?, ?, ?, 'Karnataka', 'Bangalore Urban', 1, ?)",
            (hospital_user_id, name, address, now),
        )
        await db.insert(
            "INSERT INTO hospital_ambulances (hospital_user_id, registration_number, ambulance_type, "
            "driver_name, status, created_at, updated_at) VALUES (?, ?, ?, ?, 'available', ?, ?)",
            (hospital_user_id, registration, AmbulanceType.ADVANCED_LIFE_SUPPORT.value, "Demo Driver", now, now),
        )

    await db.commit()
    logger.info("Demo data ready (%d users)", len(user_ids))

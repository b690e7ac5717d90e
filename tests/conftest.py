import itertools
import os

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

# In-memory DB, no demo data and no outbound geocoding for tests
os.environ["DATABASE_PATH"] = ":memory:"
os.environ["DATABASE_URL"] = ""
os.environ["SEED_DEMO_DATA"] = "false"
os.environ["GEOCODING_ENABLED"] = "false"
os.environ["JWT_SECRET"] = "medidispatch-test-secret"

from medidispatch.auth import create_access_token
from medidispatch.database import close_db, init_db, utcnow
from medidispatch.main import app, register_listeners
from medidispatch.models.user import CurrentUser

_usernames = itertools.count(1)


@pytest_asyncio.fixture
async def db():
    """Provide a fresh in-memory database for each test."""
    import medidispatch.database as db_mod

    # Close any existing connection
    if db_mod._db is not None:
        await db_mod._db.close()
    db_mod._db = None

    # Override module-level config directly (avoids fragile importlib.reload)
    db_mod.DATABASE_PATH = ":memory:"
    db_mod.DATABASE_URL = ""
    db_mod.SEED_DEMO_DATA = False

    await init_db()
    # The app lifespan does not run under the test clients
    register_listeners()
    database = await db_mod.get_db()
    yield database
    await close_db()


@pytest.fixture
def client(db):
    """Provide a synchronous TestClient for HTTP endpoint tests."""
    return TestClient(app)


@pytest_asyncio.fixture
async def async_client(db):
    """Provide an async httpx client for async HTTP tests."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# --- Factories ---


@pytest.fixture
def make_user(db):
    """Insert a user row and return it as the authenticated identity."""

    async def _make(
        role: str = "customer",
        full_name: str | None = None,
        admin_type: str | None = None,
        state: str | None = None,
        district: str | None = None,
        phone: str | None = None,
        status: str = "active",
    ) -> CurrentUser:
        n = next(_usernames)
        username = f"{role}-{n}"
        full_name = full_name or f"Test {role.title()} {n}"
        user_id = await db.insert(
            "INSERT INTO users (username, email, role, full_name, phone, status, admin_type, state, district, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (username, f"{username}@test.local", role, full_name, phone, status, admin_type, state, district, utcnow()),
        )
        await db.commit()
        return CurrentUser(
            id=user_id,
            role=role,
            full_name=full_name,
            email=f"{username}@test.local",
            admin_type=admin_type,
            state=state,
            district=district,
            status=status,
        )

    return _make


@pytest.fixture
def make_hospital(db, make_user):
    """Insert a hospital account plus its directory entry."""

    async def _make(
        name: str = "City General Hospital",
        state: str | None = "Karnataka",
        district: str | None = "Bangalore Urban",
        status: str = "active",
    ) -> CurrentUser:
        user = await make_user("hospital", full_name=f"{name} Dispatch", state=state, district=district)
        await db.insert(
            "INSERT INTO hospitals (user_id, hospital_name, address, state, district, status, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (user.id, name, f"1 Main Road, {district}, {state}", state, district, status, utcnow()),
        )
        await db.commit()
        return user

    return _make


@pytest.fixture
def make_ambulance(db):
    """Insert an ambulance owned by a hospital user."""

    async def _make(
        hospital_user_id: int,
        registration_number: str | None = None,
        status: str = "available",
        ambulance_type: str = "Basic Life Support",
    ) -> int:
        registration = registration_number or f"KA-01-T-{next(_usernames):04d}"
        now = utcnow()
        ambulance_id = await db.insert(
            "INSERT INTO hospital_ambulances (hospital_user_id, registration_number, ambulance_type, "
            "driver_name, status, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (hospital_user_id, registration, ambulance_type, "Test Driver", status, now, now),
        )
        await db.commit()
        return ambulance_id

    return _make


def auth_headers(user: CurrentUser) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


@pytest.fixture
def headers():
    """Build a bearer Authorization header for a user."""
    return auth_headers

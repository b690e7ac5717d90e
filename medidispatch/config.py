import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


BASE_DIR = Path(__file__).resolve().parent

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", "*").split(",")
    if origin.strip()
]

DATABASE_PATH = os.getenv("DATABASE_PATH", "medidispatch.db")

DATABASE_URL = os.getenv("DATABASE_URL", "")
DATABASE_MAX_CONNECTIONS = int(os.getenv("DATABASE_MAX_CONNECTIONS", "5"))
SEED_DEMO_DATA = _flag("SEED_DEMO_DATA", "true")

# Bearer tokens (issued by the surrounding app's login flow)
JWT_SECRET = os.getenv("JWT_SECRET", "medidispatch-development-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRATION_MINUTES = int(os.getenv("JWT_EXPIRATION_MINUTES", "1440"))

# Reverse geocoding (OpenStreetMap Nominatim)
GEOCODING_ENABLED = _flag("GEOCODING_ENABLED", "true")
NOMINATIM_URL = os.getenv("NOMINATIM_URL", "https://nominatim.openstreetmap.org/reverse")
GEOCODING_TIMEOUT = float(os.getenv("GEOCODING_TIMEOUT", "10.0"))
GEOCODING_USER_AGENT = os.getenv("GEOCODING_USER_AGENT", "MediDispatch/1.0")

STATES_DISTRICTS_PATH = os.getenv(
    "STATES_DISTRICTS_PATH",
    str(BASE_DIR / "data" / "india_states_districts.json"),
)

NOTIFICATION_LIST_LIMIT = int(os.getenv("NOTIFICATION_LIST_LIMIT", "50"))

# Live dispatch feed (/api/ambulance/events)
DASHBOARD_PING_SECONDS = float(os.getenv("DASHBOARD_PING_SECONDS", "10.0"))

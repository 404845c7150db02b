import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

# "local" runs the bundled SQLite collaborator, "remote" talks to a hosted one
BACKEND = os.getenv("SHODH_BACKEND", "local")
BACKEND_URL = os.getenv("SHODH_BACKEND_URL", "")
BACKEND_KEY = os.getenv("SHODH_BACKEND_KEY", "")

SECRET_KEY = os.getenv("SECRET_KEY", "your-secret-key-change-in-production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60

DB_PATH = os.getenv("SHODH_DB_PATH") or str(BASE_DIR / "shodh.db")
REQUIRE_EMAIL_CONFIRMATION = os.getenv("SHODH_REQUIRE_EMAIL_CONFIRMATION", "1") == "1"
SEED_DEMO = os.getenv("SHODH_SEED_DEMO", "1") == "1"

DEFAULT_CONTEST_ID = os.getenv("SHODH_DEFAULT_CONTEST_ID", "00000000-0000-0000-0000-000000000001")
POLL_INTERVAL_SECONDS = float(os.getenv("SHODH_POLL_INTERVAL", "15"))

HOST = os.getenv("SHODH_HOST", "0.0.0.0")
PORT = int(os.getenv("SHODH_PORT", "8000"))

AUTH_PATH = "/auth"
LANGUAGES = {"javascript": "JavaScript", "python": "Python", "cpp": "C++"}
DEFAULT_LANGUAGE = "javascript"
MIN_PASSWORD_LENGTH = 6

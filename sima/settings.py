# sima/settings.py
from pathlib import Path
from fastapi.templating import Jinja2Templates
import logging
import os
from dotenv import load_dotenv

load_dotenv()

def _env_bool(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}

def _env_list(name: str, default: list[str] | None = None) -> list[str]:
    val = os.getenv(name)
    if not val:
        return default or []
    return [v.strip() for v in val.split(",") if v.strip()]

def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default

BASE_DIR = Path(__file__).resolve().parent.parent  # .../sima project root
SECRET_KEY = os.getenv("SECRET_KEY", "your-secret-key-here")  # override via ENV/.env
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

# Security & networking
CORS_ORIGINS = _env_list("CORS_ORIGINS", default=["*"])  # e.g. "http://localhost:3000,https://example.com"
ALLOWED_HOSTS = _env_list("ALLOWED_HOSTS", default=["*"])  # e.g. "example.com,.example.com,localhost"
COOKIE_SECURE = _env_bool("COOKIE_SECURE", False)  # set True behind HTTPS
ENABLE_HTTPS_REDIRECT = _env_bool("ENABLE_HTTPS_REDIRECT", False)

# Routing service (OSRM) and map tiles
OSRM_BASE_URL = os.getenv("OSRM_BASE_URL", "http://router.project-osrm.org").rstrip("/")
ROUTE_TIMEOUT = _env_float("ROUTE_TIMEOUT", 10.0)
HERE_API_KEY = os.getenv("HERE_API_KEY", "")
MAP_PROVIDER = os.getenv("MAP_PROVIDER", "osm").strip().lower()  # "osm" | "here"
MAP_ZOOM = _env_float("MAP_ZOOM", 15.0)

# "atomic": satu transaksi untuk assignment + report
# "compensating": dua commit, assignment dikembalikan bila update report gagal
STATUS_MUTATION_MODE = os.getenv("STATUS_MUTATION_MODE", "atomic").strip().lower()

# Notifikasi
SOUND_BASE_URL = os.getenv("SOUND_BASE_URL", "/static/sound").rstrip("/")
SOUND_PREF_COOKIE = "is_active_sound_notification"
INTAKE_API_KEY = os.getenv("INTAKE_API_KEY", "")

# Animasi marker (radius dalam meter, periode dalam milidetik)
PULSE_MIN_RADIUS = _env_float("PULSE_MIN_RADIUS", 20.0)
PULSE_MAX_RADIUS = _env_float("PULSE_MAX_RADIUS", 50.0)
PULSE_STEP = _env_float("PULSE_STEP", 2.0)
PULSE_PERIOD_MS = int(_env_float("PULSE_PERIOD_MS", 200))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

templates = Jinja2Templates(directory=str(BASE_DIR / "sima" / "templates"))

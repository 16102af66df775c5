import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# --- AI content service (Gemini REST) ---
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", os.getenv("API_KEY", ""))
GEMINI_API_URL = os.getenv("GEMINI_API_URL", "https://generativelanguage.googleapis.com/v1beta")
DISCOVERY_MODEL = os.getenv("DISCOVERY_MODEL", "gemini-3-flash-preview")
TTS_MODEL = os.getenv("TTS_MODEL", "gemini-2.5-flash-preview-tts")
TTS_VOICE = os.getenv("TTS_VOICE", "Kore")
TTS_SAMPLE_RATE = 24000    # PCM16 mono returned by the TTS model

# --- Routing service (OSRM public API) ---
OSRM_BASE_URL = os.getenv("OSRM_BASE_URL", "https://router.project-osrm.org")

# --- Journey history (Turso / local libsql) ---
TURSO_DATABASE_URL = os.getenv("TURSO_DATABASE_URL", "")
TURSO_AUTH_TOKEN = os.getenv("TURSO_AUTH_TOKEN", "")
HISTORY_DB_PATH = os.getenv("HISTORY_DB_PATH", "navigator.db")

CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:8000,http://localhost:3000").split(",")

# --- Geo cache ---
CACHE_PRECISION = 4        # decimal places kept when quantizing lat/lng (~11 m)

# --- Tracking ---
TRACK_MIN_DISPLACEMENT_M = float(os.getenv("TRACK_MIN_DISPLACEMENT_M", "5.0"))
ARRIVAL_RADIUS_M = float(os.getenv("ARRIVAL_RADIUS_M", "30.0"))

# Whether a computed route also starts tracking (and clearing it stops tracking)
ROUTE_STARTS_TRACKING = _env_bool("ROUTE_STARTS_TRACKING", False)

# --- Suggestions ---
SUGGESTION_MIN_CHARS = 3
SUGGESTION_LIMIT = 5

# --- Labels ---
CURRENT_LOCATION_LABEL = "Current location"
UNKNOWN_POPULATION_LABEL = "Not reported"

# --- Speech feed ---
ANNOUNCEMENT_FEED_SIZE = 20

# --- Outbound HTTP ---
REQUEST_TIMEOUT_S = 15.0
REQUEST_RETRY_MAX = 3

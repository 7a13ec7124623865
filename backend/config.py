"""
config.py
---------
Central configuration for the FairTrip optimization engine.
Every tunable is a module-level constant, overridable by an environment
variable of the same name. Secrets are never hard-coded.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the backend directory (if it exists) so env vars in that file
# are picked up by os.getenv() below.  Won't override vars already set in the shell.
_env_path = Path(__file__).parent / ".env"
if _env_path.exists():
    load_dotenv(_env_path, override=False)


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


ALGORITHM_VERSION: str = os.getenv("ALGORITHM_VERSION", "fairtrip-2.1.0")

# ── Rating scale ──────────────────────────────────────────────────────────────
# Raw wish ratings outside [RATING_MIN, RATING_MAX] are rejected at the boundary.
RATING_MIN: float = float(os.getenv("RATING_MIN", "1"))
RATING_MAX: float = float(os.getenv("RATING_MAX", "5"))

# ── Normalization quality ─────────────────────────────────────────────────────
NORMALIZATION_MEAN_TOLERANCE: float      = float(os.getenv("NORMALIZATION_MEAN_TOLERANCE", "0.1"))
NORMALIZATION_MAX_FALLBACK_FRACTION: float = float(os.getenv("NORMALIZATION_MAX_FALLBACK_FRACTION", "0.5"))

# ── Clustering ────────────────────────────────────────────────────────────────
CLUSTER_RADIUS_KM: float = float(os.getenv("CLUSTER_RADIUS_KM", "50.0"))

# ── Fair selection ────────────────────────────────────────────────────────────
FAIRNESS_WEIGHT: float         = float(os.getenv("FAIRNESS_WEIGHT", "0.6"))
MAX_PLACES: int                = int(os.getenv("MAX_PLACES", "10"))
CLUSTER_AFFINITY_WEIGHT: float = float(os.getenv("CLUSTER_AFFINITY_WEIGHT", "0.1"))
# Candidates whose fairness impact falls below this are ineligible,
# except when nothing would be selected otherwise.
MIN_FAIRNESS_SCORE: float      = float(os.getenv("MIN_FAIRNESS_SCORE", "0.0"))

# ── Transport modes ───────────────────────────────────────────────────────────
WALK_MAX_KM: float  = float(os.getenv("WALK_MAX_KM", "2.0"))
DRIVE_MAX_KM: float = float(os.getenv("DRIVE_MAX_KM", "300.0"))
WALK_SPEED_KMH: float   = float(os.getenv("WALK_SPEED_KMH", "5.0"))
DRIVE_SPEED_KMH: float  = float(os.getenv("DRIVE_SPEED_KMH", "60.0"))
FLIGHT_SPEED_KMH: float = float(os.getenv("FLIGHT_SPEED_KMH", "700.0"))
WALK_OVERHEAD_MIN: float  = float(os.getenv("WALK_OVERHEAD_MIN", "5"))
DRIVE_OVERHEAD_MIN: float = float(os.getenv("DRIVE_OVERHEAD_MIN", "10"))
# Check-in / security / boarding time added to every flight
AIRPORT_HANDLING_MIN: float          = float(os.getenv("AIRPORT_HANDLING_MIN", "60"))
AIRPORT_HANDLING_LONG_HAUL_MIN: float = float(os.getenv("AIRPORT_HANDLING_LONG_HAUL_MIN", "90"))
LONG_HAUL_KM: float                  = float(os.getenv("LONG_HAUL_KM", "3000"))

# ── Airports ──────────────────────────────────────────────────────────────────
# USE_STUB_AIRPORTS=false fetches the OpenFlights catalogue over HTTP.
USE_STUB_AIRPORTS: bool          = _flag("USE_STUB_AIRPORTS", "true")
OPENFLIGHTS_URL: str             = os.getenv(
    "OPENFLIGHTS_URL",
    "https://raw.githubusercontent.com/jpatokal/openflights/master/data/airports.dat",
)
AIRPORT_REQUEST_TIMEOUT: int     = int(os.getenv("AIRPORT_REQUEST_TIMEOUT", "15"))
AIRPORT_SEARCH_RADIUS_KM: float  = float(os.getenv("AIRPORT_SEARCH_RADIUS_KM", "150"))
AIRPORT_MIN_CAPABILITY: float    = float(os.getenv("AIRPORT_MIN_CAPABILITY", "60"))
# Known major airports farther than this are not used as a fallback.
AIRPORT_FALLBACK_MAX_KM: float   = float(os.getenv("AIRPORT_FALLBACK_MAX_KM", "400"))

# ── Daily schedule (all time values in minutes) ───────────────────────────────
DAY_START_HOUR: int          = int(os.getenv("DAY_START_HOUR", "9"))
MAX_DAILY_MINUTES: float     = float(os.getenv("MAX_DAILY_MINUTES", "600"))
MAX_DAILY_DISTANCE_KM: float = float(os.getenv("MAX_DAILY_DISTANCE_KM", "400"))
MIN_STAY_MIN: float          = float(os.getenv("MIN_STAY_MIN", "30"))
MAX_STAY_MIN: float          = float(os.getenv("MAX_STAY_MIN", "480"))
DEFAULT_STAY_MIN: float      = float(os.getenv("DEFAULT_STAY_MIN", "120"))
BASE_BUFFER_MIN: float       = float(os.getenv("BASE_BUFFER_MIN", "15"))
HIGH_PRIORITY_BUFFER_MIN: float = float(os.getenv("HIGH_PRIORITY_BUFFER_MIN", "10"))
LAST_STOP_BUFFER_MIN: float  = float(os.getenv("LAST_STOP_BUFFER_MIN", "15"))
MIN_BUFFER_MIN: float        = float(os.getenv("MIN_BUFFER_MIN", "10"))
MEAL_THRESHOLD_MIN: float    = float(os.getenv("MEAL_THRESHOLD_MIN", "240"))
MEAL_MIN_MIN: float          = float(os.getenv("MEAL_MIN_MIN", "30"))
MEAL_MAX_MIN: float          = float(os.getenv("MEAL_MAX_MIN", "60"))
LIGHT_DAY_MAX_MIN: float     = float(os.getenv("LIGHT_DAY_MAX_MIN", "300"))
MODERATE_DAY_MAX_MIN: float  = float(os.getenv("MODERATE_DAY_MAX_MIN", "420"))
REST_DAY_PACKED_RATIO: float = float(os.getenv("REST_DAY_PACKED_RATIO", "0.4"))

# ── Routing extensions ────────────────────────────────────────────────────────
# 2-opt refinement is off by default; nearest neighbour is the reference route.
ROUTE_TWO_OPT: bool = _flag("ROUTE_TWO_OPT", "false")
# Worker threads used to compute independent legs (1 = sequential)
LEG_WORKERS: int    = int(os.getenv("LEG_WORKERS", "1"))

# ── Result cache / progress ───────────────────────────────────────────────────
RESULT_BACKEND: str    = os.getenv("RESULT_BACKEND", "in_memory")    # "in_memory" | "redis"
PROGRESS_BACKEND: str  = os.getenv("PROGRESS_BACKEND", "in_memory")  # "in_memory" | "redis" | "postgres"
RESULT_CACHE_TTL: int  = int(os.getenv("RESULT_CACHE_TTL", "3600"))  # 1 hour
PROGRESS_TTL: int      = int(os.getenv("PROGRESS_TTL", "900"))       # 15 minutes
INFLIGHT_WAIT_SECONDS: float = float(os.getenv("INFLIGHT_WAIT_SECONDS", "30"))
PERSIST_RESULTS: bool  = _flag("PERSIST_RESULTS", "false")

# ── PostgreSQL ────────────────────────────────────────────────────────────────
# Schema defined in db/schema.sql
# Apply with: python scripts/run_migrations.py
POSTGRES_HOST: str     = os.getenv("POSTGRES_HOST",     "localhost")
POSTGRES_PORT: int     = int(os.getenv("POSTGRES_PORT", "5432"))
POSTGRES_DB: str       = os.getenv("POSTGRES_DB",       "fairtrip")
POSTGRES_USER: str     = os.getenv("POSTGRES_USER",     "fairtrip_user")
POSTGRES_PASSWORD: str = os.getenv("POSTGRES_PASSWORD", "fairtrip_pass")
POSTGRES_MIN_CONN: int = int(os.getenv("POSTGRES_MIN_CONN", "1"))
POSTGRES_MAX_CONN: int = int(os.getenv("POSTGRES_MAX_CONN", "10"))
POSTGRES_CONNECT_TIMEOUT: int = int(os.getenv("POSTGRES_CONNECT_TIMEOUT", "5"))  # seconds

# ── Redis ─────────────────────────────────────────────────────────────────────
REDIS_HOST: str        = os.getenv("REDIS_HOST",     "localhost")
REDIS_PORT: int        = int(os.getenv("REDIS_PORT", "6379"))
REDIS_DB: int          = int(os.getenv("REDIS_DB",   "0"))
REDIS_PASSWORD: str    = os.getenv("REDIS_PASSWORD", "")

# ── Observability ─────────────────────────────────────────────────────────────
LOGS_DIR: str = os.getenv("LOGS_DIR", str(Path(__file__).resolve().parent / "logs"))

"""Application-wide configuration loaded from environment variables."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Redis
REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379")

# ── Diagnostic Windows ───────────────────────────────────────────────────

# Days after protocol completion before the phase 2 reevaluation unlocks
REEVALUATION_FIRST_DAYS: int = int(os.getenv("REEVALUATION_FIRST_DAYS", "45"))
# Days after phase 1 completion before a new structural diagnosis unlocks
REEVALUATION_SECOND_DAYS: int = int(os.getenv("REEVALUATION_SECOND_DAYS", "90"))

# ── Checkpoints ──────────────────────────────────────────────────────────

CHECKPOINT_TTL_SECONDS: int = int(os.getenv("CHECKPOINT_TTL_SECONDS", str(30 * 24 * 3600)))

# ── Questionnaire Blueprint ──────────────────────────────────────────────

# Optional JSON blueprint; the built-in questionnaire is used when unset
BLUEPRINT_PATH: Path | None = (
    Path(os.environ["BLUEPRINT_PATH"]) if os.getenv("BLUEPRINT_PATH") else None
)

# ── Server Configuration ─────────────────────────────────────────────────

SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
# Open diagnostic sessions kept in memory; least recently used are dropped
SESSION_CACHE_SIZE: int = int(os.getenv("SESSION_CACHE_SIZE", "256"))

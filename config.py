import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "shift_calendar")

# "memory" or "mongo" - falls back to memory when no database is configured
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "mongo" if DATABASE_URL else "memory")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

PORT = int(os.getenv("PORT", 8000))

# Max notifications returned by the history endpoint
NOTIFICATION_HISTORY_LIMIT = int(os.getenv("NOTIFICATION_HISTORY_LIMIT", 50))

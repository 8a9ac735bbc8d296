import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./tasks.db")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# GET /api/tasks returns at most this many tasks unless ?limit= says otherwise
TASKS_DEFAULT_LIMIT = int(os.getenv("TASKS_DEFAULT_LIMIT", "100"))

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

"""Centralized settings and Cosmos DB container registry."""
from typing import Dict
import os

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# ===== Database Settings =====

# COSMOS_DB_ENDPOINT: when unset the API runs in development mode without a database
COSMOS_DB_ENDPOINT = os.getenv("COSMOS_DB_ENDPOINT")
COSMOS_DB_KEY = os.getenv("COSMOS_DB_KEY")
DATABASE_NAME = os.getenv("DATABASE_NAME", "coding_assessments")
COSMOS_DB_CONSISTENCY_LEVEL = os.getenv("COSMOS_DB_CONSISTENCY_LEVEL", "Session")

# ===== Code Execution Settings =====

# PISTON_API_URL: public code-execution service used for Java and Python
PISTON_API_URL = os.getenv("PISTON_API_URL", "https://emkc.org/api/v2/piston/execute")

# EXECUTION_TIMEOUT: client-side timeout in seconds for one execution request
EXECUTION_TIMEOUT = float(os.getenv("EXECUTION_TIMEOUT", "20"))

COMPILE_TIMEOUT_MS = int(os.getenv("COMPILE_TIMEOUT_MS", "10000"))
RUN_TIMEOUT_MS = int(os.getenv("RUN_TIMEOUT_MS", "10000"))

LANGUAGE_VERSIONS: Dict[str, str] = {
    "python": os.getenv("PYTHON_VERSION", "3.10.0"),
    "java": os.getenv("JAVA_VERSION", "15.0.2"),
}

# ===== Session Settings =====

# SESSION_CACHE_MAX_AGE_SECONDS: cached in-progress work older than this is discarded
SESSION_CACHE_MAX_AGE_SECONDS = int(os.getenv("SESSION_CACHE_MAX_AGE_SECONDS", str(24 * 60 * 60)))

# CACHE_SAVE_INTERVAL: every Nth timer tick flushes the current question to the cache
CACHE_SAVE_INTERVAL = int(os.getenv("CACHE_SAVE_INTERVAL", "10"))

TIMER_TICK_SECONDS = float(os.getenv("TIMER_TICK_SECONDS", "1.0"))

# SUBMISSION_DELETE_BATCH_SIZE: Cosmos transactional batches hold at most 100 operations
SUBMISSION_DELETE_BATCH_SIZE = min(int(os.getenv("SUBMISSION_DELETE_BATCH_SIZE", "100")), 100)

# ===== Auth Settings =====

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "240"))

ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@example.com")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")

# ===== Application Settings =====

ALLOWED_ORIGINS = [
    o.strip()
    for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if o.strip()
]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# ===== Container Definitions =====

# Container definitions with intended partition key fields (logical keys, not paths)
COLLECTIONS: Dict[str, Dict[str, str]] = {
    "ASSESSMENTS": {"name": "assessments", "pk_field": "id"},
    "QUESTIONS": {"name": "questions", "pk_field": "id"},
    "COURSES": {"name": "courses", "pk_field": "id"},
    "SUBMISSIONS": {"name": "submissions", "pk_field": "assessment_id"},
    "USERS": {"name": "users", "pk_field": "id"},
    "PROCTORING_EVENTS": {"name": "proctoring_events", "pk_field": "session_id"},
    "PROCTORING_SESSIONS": {"name": "proctoring_sessions", "pk_field": "user_id"},
    "ASSESSMENT_REVIEWS": {"name": "assessment_reviews", "pk_field": "user_id"},
    "SESSION_CACHE": {"name": "session_cache", "pk_field": "user_id"},
}

# Convenience single-source names
CONTAINER = {k: v["name"] for k, v in COLLECTIONS.items()}


"""Runtime settings read from the environment once at import."""

import os

REVIEW_API_URL = os.getenv("REVIEW_API_URL", "http://localhost:5000/api/ai/chat")
REVIEW_MODEL = os.getenv("REVIEW_MODEL", "gemini-1.5-flash")
REVIEW_TIMEOUT_S = float(os.getenv("REVIEW_TIMEOUT_S", "30"))
REVIEW_MAX_ATTEMPTS = int(os.getenv("REVIEW_MAX_ATTEMPTS", "3"))
REVIEW_BACKOFF_S = float(os.getenv("REVIEW_BACKOFF_S", "1.0"))
REVIEW_DOUBT_THRESHOLD = int(os.getenv("REVIEW_DOUBT_THRESHOLD", "30"))
REVIEW_BATCH_SIZE = int(os.getenv("REVIEW_BATCH_SIZE", "20"))

# Least recently used session memories are dropped beyond this count
MAX_SESSIONS = int(os.getenv("MAX_SESSIONS", "256"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))

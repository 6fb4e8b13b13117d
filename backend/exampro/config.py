"""Configuration settings for the exam backend."""

import os
from typing import List

from dotenv import load_dotenv

load_dotenv()

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./exampro.db")
SCHEMA_SEARCH_PATH = os.getenv("SCHEMA_SEARCH_PATH")
DB_ECHO = os.getenv("DB_ECHO", "false").lower() == "true"

# CORS settings (include the exact origins used by the frontend dev server, no trailing slash)
CORS_ORIGINS: List[str] = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,http://127.0.0.1:3000",
    ).split(",")
    if origin.strip()
]

# Exam session engine
HIGH_SEVERITY_THRESHOLD = int(os.getenv("HIGH_SEVERITY_THRESHOLD", "5"))
LOW_TIME_WARNING_SECONDS = int(os.getenv("LOW_TIME_WARNING_SECONDS", "300"))
RECENT_VIOLATIONS_LIMIT = int(os.getenv("RECENT_VIOLATIONS_LIMIT", "10"))
CLOCK_TICK_SECONDS = float(os.getenv("CLOCK_TICK_SECONDS", "1.0"))

# Submission persistence
PERSIST_MAX_ATTEMPTS = int(os.getenv("PERSIST_MAX_ATTEMPTS", "3"))
PERSIST_BACKOFF_SECONDS = float(os.getenv("PERSIST_BACKOFF_SECONDS", "0.5"))
PERSIST_TIMEOUT_SECONDS = float(os.getenv("PERSIST_TIMEOUT_SECONDS", "5.0"))

# App
API_TITLE = "ExamPro API"
API_VERSION = "1.0.0"
SEED_SAMPLE_EXAM = os.getenv("SEED_SAMPLE_EXAM", "true").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))

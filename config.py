import os

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _csv(name: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in os.environ.get(name, "").split(",") if part.strip())


class Settings:
    # --- Database ---
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_PUBLIC_URL = os.environ.get("DATABASE_PUBLIC_URL")

    # --- Redis (Celery beat sweeps) ---
    REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

    # --- OpenAI / LLM ---
    OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
    OPENAI_MODEL = os.environ.get("OPENAI_MODEL", "gpt-4o-mini")
    OPENAI_TIMEOUT = int(os.environ.get("OPENAI_TIMEOUT", "30"))

    # --- Telnyx (SMS) ---
    TELNYX_API_KEY = os.environ.get("TELNYX_API_KEY")
    TELNYX_PUBLIC_KEY = os.environ.get("TELNYX_PUBLIC_KEY")
    TELNYX_FROM_NUMBER = os.environ.get("TELNYX_FROM_NUMBER")

    # --- Public surface ---
    BASE_URL = os.environ.get("BASE_URL", "http://localhost:8000")
    ADMIN_API_TOKEN = os.environ.get("ADMIN_API_TOKEN")
    DASHBOARD_SESSION_MINUTES = int(os.environ.get("DASHBOARD_SESSION_MINUTES", "15"))

    # --- Quoting ---
    QUOTE_STRATEGY = os.environ.get("QUOTE_STRATEGY", "detailed")
    CONTRACTOR_SELECTION = os.environ.get("CONTRACTOR_SELECTION", "first")
    HOLIDAYS = _csv("HOLIDAYS")  # ISO dates, e.g. 2026-12-25,2027-01-01

    # --- Scheduler ---
    DEFAULT_TIMEZONE = os.environ.get("DEFAULT_TIMEZONE", "America/Los_Angeles")
    SCHEDULER_POLL_SECONDS = float(os.environ.get("SCHEDULER_POLL_SECONDS", "30"))
    # Daily sweeps belong to Celery beat (app/celery_app.py). Set true only for a
    # single-process deployment with no beat/worker running.
    SCHEDULER_RUN_SWEEPS = _flag("SCHEDULER_RUN_SWEEPS", "false")
    REMINDER_SWEEP_HOUR = int(os.environ.get("REMINDER_SWEEP_HOUR", "9"))
    FOLLOWUP_SWEEP_HOUR = int(os.environ.get("FOLLOWUP_SWEEP_HOUR", "18"))
    CLEANUP_SWEEP_HOUR = int(os.environ.get("CLEANUP_SWEEP_HOUR", "0"))
    IDLE_CONTEXT_DAYS = int(os.environ.get("IDLE_CONTEXT_DAYS", "7"))

    # --- Logging ---
    LOGLEVEL = os.environ.get("LOGLEVEL", "INFO").upper()


settings = Settings()

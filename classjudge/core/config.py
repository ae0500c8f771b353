from __future__ import annotations

import os
from functools import lru_cache
from dotenv import load_dotenv, find_dotenv

_env_path = find_dotenv(".env") or ".env"
load_dotenv(_env_path)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Settings:
    """Central configuration (env driven)."""

    def __init__(self) -> None:
        # Database
        self.database_url: str = os.getenv("DATABASE_URL", "")
        # Judge0 / external
        self.judge0_api_url: str = os.getenv("JUDGE0_BASE_URL", "")
        self.judge0_api_key: str = os.getenv("JUDGE0_KEY", "")
        self.judge0_host: str = os.getenv("JUDGE0_HOST", "")
        self.judge0_timeout_s: float = float(os.getenv("JUDGE0_TIMEOUT_S", "30"))
        # 50 is C (GCC 9.2.0) on Judge0 CE
        self.judge0_language_id: int = int(os.getenv("JUDGE0_LANGUAGE_ID", "50"))
        # Grading pipeline
        self.grading_poll_max_attempts: int = int(os.getenv("GRADING_POLL_MAX_ATTEMPTS", "15"))
        self.grading_poll_delay_s: float = float(os.getenv("GRADING_POLL_DELAY_S", "1"))
        self.max_code_length: int = int(os.getenv("MAX_CODE_LENGTH", "10000"))
        # Job queue
        self.use_redis_queue: bool = _env_bool("USE_REDIS_QUEUE", "false")
        self.redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self.job_queue_key: str = os.getenv("JOB_QUEUE_KEY", "classjudge:jobs")
        self.job_max_deliveries: int = int(os.getenv("JOB_MAX_DELIVERIES", "3"))
        self.job_retry_backoff_s: float = float(os.getenv("JOB_RETRY_BACKOFF_S", "5"))
        # a claimed job not acked within this window goes back on the queue
        self.job_lease_s: float = float(os.getenv("JOB_LEASE_S", "60"))
        self.run_embedded_worker: bool = _env_bool("RUN_EMBEDDED_WORKER", "true")
        # Auth (tokens are issued elsewhere, we only verify them)
        self.jwt_secret: str = os.getenv("JWT_SECRET", "")
        self.jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")
        # App meta
        self.app_name: str = "classjudge"
        self.debug: bool = _env_bool("DEBUG", "False")
        self.log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
        self.allow_origins: str = os.getenv("ALLOW_ORIGINS", "http://localhost:5173,http://localhost:3000")

    def get_database_url(self) -> str:
        return self.database_url


@lru_cache()
def get_settings() -> Settings:
    return Settings()

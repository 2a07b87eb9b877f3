"""Runtime configuration, read once at startup from ``DTQ_*`` environment variables (+ optional .env)."""

import os
from typing import Optional, Tuple

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_worker_count() -> int:
    return os.cpu_count() or 1


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="DTQ_", env_file=".env", extra="ignore")

    # Workers
    worker_count: int = Field(default_factory=_default_worker_count, ge=1)
    poll_interval: float = Field(default=0.1, gt=0, description="Seconds between polls of an empty queue")
    heartbeat_interval: float = Field(default=5.0, gt=0)
    fetch_error_backoff: float = Field(default=1.0, gt=0, description="Seconds to wait after a failed fetch")
    handler_time_scale: float = Field(default=1.0, ge=0, description="Multiplier for simulated handler work")

    # Retries
    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=1.0, ge=0, description="Base backoff delay in seconds")

    # Supervisor
    respawn_delay: float = Field(default=1.0, ge=0)
    stats_interval: float = Field(default=30.0, gt=0)
    shutdown_timeout: float = Field(default=10.0, gt=0)
    seed_tasks: int = Field(default=0, ge=0, description="Demo tasks submitted when the supervisor starts")

    # Manager channel between supervisor and worker processes
    manager_host: str = "127.0.0.1"
    manager_port: int = Field(default=50000, ge=0, le=65535)
    manager_authkey: str = "task-dispatcher"

    event_buffer_size: int = Field(default=1000, ge=1)

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @field_validator("log_level")
    def check_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level '{v}'")
        return level

    @property
    def manager_address(self) -> Tuple[str, int]:
        return self.manager_host, self.manager_port

    @property
    def authkey_bytes(self) -> bytes:
        return self.manager_authkey.encode("utf-8")


def load_settings(**overrides) -> Settings:
    return Settings(**overrides)

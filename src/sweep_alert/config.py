"""Centralized settings for the sweep-alert service."""
from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_prefix": "SWEEP_ALERT_"}

    # Redis; empty string means disabled (in-memory fallback)
    redis_url: str = ""

    # Street-sweeping dataset (Socrata / SODA endpoint)
    schedule_source_url: str = "https://data.sfgov.org/resource/yhqp-riqs.json"
    schedule_min_radius_m: float = 100.0  # centerlines sit 10-30 m from the parked car

    # HTTP
    http_timeout_s: int = 25
    http_tries: int = 3
    http_backoff_s: float = 0.8
    user_agent: str = "SweepAlert/0.1.0"

    # TTL in seconds for cached raw schedule rows
    ttl_schedules: int = 86400  # 24 h

    # Local calendar used for "today" and for reminder times
    timezone: str = "America/Los_Angeles"

    reminder_lead_minutes: int = 60
    debug_log_max_entries: int = 500


settings = Settings()

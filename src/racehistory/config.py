"""
Runtime configuration using Pydantic Settings.
Handler wiring reads everything from the environment.
"""
from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class UpstreamConfig(BaseSettings):
    base_url: str = "https://members-ng.iracing.com"
    token_url: str = "https://oauth.iracing.com/oauth2/token"
    timeout: float = 30.0
    client_id: str = ""
    client_secret: str = ""

    model_config = {"env_prefix": "IRACING_"}


class AppConfig(BaseSettings):
    log_level: str = "INFO"
    aws_region: str = "us-east-1"

    # Storage
    dynamodb_table: str = "racehistory"
    cache_bucket: str = "racehistory-cache"
    cache_ttl_hours: int = Field(default=24, ge=1)

    # Ingestion
    search_window_days: int = Field(default=10, ge=1)
    ingestion_lock_seconds: int = Field(default=300, ge=1)
    ingestion_queue_url: str | None = None
    # Redelivery delay grows by this much per receive; 0 keeps the queue default
    retry_backoff_seconds: int = Field(default=30, ge=0)

    # Notifications / metrics
    ws_management_endpoint: str | None = None
    metrics_namespace: str | None = None

    model_config = {"env_prefix": "RACEHISTORY_"}

"""Configuration models for validation using Pydantic."""

from typing import Literal, Optional
from pydantic import BaseModel, Field, field_validator, model_validator


class CredentialsConfig(BaseModel):
    """Store and notification credentials loaded from environment variables."""

    store_backend: Literal["supabase", "memory"] = Field(
        default="supabase",
        description="State store backend: 'supabase' or 'memory' (local development)"
    )

    # Supabase (required for the supabase backend)
    supabase_url: Optional[str] = Field(None, description="Supabase project URL")
    supabase_key: Optional[str] = Field(None, description="Supabase API key")
    database_url: Optional[str] = Field(None, description="PostgreSQL database URL (optional, for schema setup)")

    # Default alert destination when no team has its own webhook
    slack_webhook_url: Optional[str] = Field(None, description="Default Slack incoming webhook URL")

    @model_validator(mode='after')
    def validate_supabase_settings(self):
        """Supabase URL and key are required unless running on the memory store."""
        if self.store_backend != "supabase":
            return self
        if not self.supabase_url or self.supabase_url == "https://your-project.supabase.co":
            raise ValueError("Supabase URL must be set in .env file (or use STORE_BACKEND=memory)")
        if not self.supabase_url.startswith("https://"):
            raise ValueError("Supabase URL must start with https://")
        if not self.supabase_key or self.supabase_key == "your_supabase_anon_key_here":
            raise ValueError("Supabase key must be set in .env file")
        return self

    @field_validator("slack_webhook_url")
    @classmethod
    def validate_slack_webhook_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate Slack webhook URL format (empty means unset)."""
        if not v:
            return None
        if not v.startswith("https://"):
            raise ValueError("Slack webhook URL must start with https://")
        return v


class AlertConfig(BaseModel):
    """Detection thresholds, dispatch pacing and scan schedule."""

    stale_hours: float = Field(default=48, gt=0, description="Hours open before a PR is stale")
    unreviewed_hours: float = Field(default=24, gt=0, description="Hours open without review before alerting")
    stalled_hours: float = Field(default=48, gt=0, description="Hours without commits or reviews after review")
    max_alerts_per_team: int = Field(default=20, ge=1, description="Alerts per destination per scan tick")
    dispatch_pacing_ms: int = Field(default=500, ge=0, description="Pause between sends to the same webhook")
    scan_interval_seconds: float = Field(default=60, gt=0, description="Seconds between stale/unreviewed scans")
    stalled_scan_interval_seconds: Optional[float] = Field(
        default=None, gt=0, description="Seconds between stalled scans (defaults to scan interval)"
    )
    enable_scheduler: bool = Field(default=True, description="Run scan loops inside the web service")

    @property
    def dispatch_pacing_seconds(self) -> float:
        return self.dispatch_pacing_ms / 1000

    @property
    def stalled_interval_seconds(self) -> float:
        return self.stalled_scan_interval_seconds or self.scan_interval_seconds


class Config(BaseModel):
    """Application configuration."""

    credentials: CredentialsConfig
    alerts: AlertConfig = Field(default_factory=AlertConfig)
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard levels."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(valid_levels)}")
        return v_upper

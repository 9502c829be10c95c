"""Configuration loader that reads from .env and validates with Pydantic."""

import os
import sys
from pathlib import Path
from dotenv import load_dotenv
from pydantic import ValidationError

from models.config_models import AlertConfig, Config, CredentialsConfig


def _env_bool(name: str, default: bool) -> bool:
    """Read a boolean flag such as ENABLE_SCHEDULER=false."""
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config() -> Config:
    """
    Load and validate configuration from environment variables.

    Reads from .env file in the project root and validates credentials,
    thresholds and scheduling settings using Pydantic models. Unset numeric
    settings fall back to the model defaults.

    Returns:
        Config: Validated configuration object

    Raises:
        SystemExit: If configuration is invalid or missing required fields
    """
    env_path = Path(__file__).parent.parent / ".env"
    load_dotenv(dotenv_path=env_path)

    alert_settings = {
        "stale_hours": os.getenv("STALE_HOURS"),
        "unreviewed_hours": os.getenv("UNREVIEWED_HOURS"),
        "stalled_hours": os.getenv("STALLED_HOURS"),
        "max_alerts_per_team": os.getenv("MAX_ALERTS_PER_TEAM"),
        "dispatch_pacing_ms": os.getenv("DISPATCH_PACING_MS"),
        "scan_interval_seconds": os.getenv("SCAN_INTERVAL_SECONDS"),
        "stalled_scan_interval_seconds": os.getenv("STALLED_SCAN_INTERVAL_SECONDS"),
    }

    try:
        config = Config(
            credentials=CredentialsConfig(
                store_backend=os.getenv("STORE_BACKEND", "supabase").lower(),
                supabase_url=os.getenv("SUPABASE_URL"),
                supabase_key=os.getenv("SUPABASE_KEY"),
                database_url=os.getenv("DATABASE_URL"),
                slack_webhook_url=os.getenv("SLACK_WEBHOOK_URL"),
            ),
            alerts=AlertConfig(
                **{key: value for key, value in alert_settings.items() if value},
                enable_scheduler=_env_bool("ENABLE_SCHEDULER", True),
            ),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

        return config

    except ValidationError as e:
        print("❌ Configuration validation failed:", file=sys.stderr)
        print("\nPlease check your .env file. Missing or invalid fields:", file=sys.stderr)

        for error in e.errors():
            field_path = " → ".join(str(x) for x in error["loc"])
            message = error["msg"]
            print(f"  • {field_path}: {message}", file=sys.stderr)

        print("\nHint: Copy .env.example to .env and fill in your credentials.", file=sys.stderr)
        sys.exit(1)

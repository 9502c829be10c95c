"""Shared pytest fixtures and configuration."""

from datetime import datetime, timezone

import pytest

from storage.memory_store import InMemoryStore

# Fixed reference time for lifecycle and alert tests
T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

ALERT_ENV_VARS = [
    "STALE_HOURS",
    "UNREVIEWED_HOURS",
    "STALLED_HOURS",
    "MAX_ALERTS_PER_TEAM",
    "DISPATCH_PACING_MS",
    "SCAN_INTERVAL_SECONDS",
    "STALLED_SCAN_INTERVAL_SECONDS",
    "ENABLE_SCHEDULER",
    "SLACK_WEBHOOK_URL",
    "DATABASE_URL",
]


def iso(dt: datetime) -> str:
    """GitHub-style timestamp."""
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


def build_pr_payload(
    action="opened",
    repo_id=1,
    number=7,
    title="Add widget export",
    created_at=T0,
    updated_at=None,
    closed_at=None,
    requested_reviewers=None,
    requested_teams=None,
    owner_id=100,
):
    """Minimal pull_request webhook payload."""
    return {
        "action": action,
        "repository": {
            "id": repo_id,
            "name": "widgets",
            "full_name": "acme/widgets",
            "owner": {"id": owner_id, "login": "acme"},
        },
        "pull_request": {
            "number": number,
            "title": title,
            "html_url": f"https://github.com/acme/widgets/pull/{number}",
            "created_at": iso(created_at),
            "updated_at": iso(updated_at or created_at),
            "closed_at": iso(closed_at) if closed_at else None,
            "requested_reviewers": requested_reviewers or [],
            "requested_teams": requested_teams or [],
        },
    }


def build_review_payload(
    state="approved",
    login="bob",
    user_id=42,
    submitted_at=T0,
    action="submitted",
    **pr_fields,
):
    """Minimal pull_request_review webhook payload."""
    payload = build_pr_payload(action=action, **pr_fields)
    payload["review"] = {
        "id": 9001,
        "user": {"login": login, "id": user_id, "type": "User"},
        "state": state,
        "submitted_at": iso(submitted_at),
    }
    return payload


@pytest.fixture
def test_env(monkeypatch):
    """
    Set valid environment variables for the Supabase backend.

    Alert settings are cleared so model defaults apply.
    """
    for name in ALERT_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("STORE_BACKEND", "supabase")
    monkeypatch.setenv("SUPABASE_URL", "https://test-project.supabase.co")
    monkeypatch.setenv("SUPABASE_KEY", "test_supabase_key_1234567890")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")

    return {
        "supabase_url": "https://test-project.supabase.co",
        "supabase_key": "test_supabase_key_1234567890",
        "log_level": "DEBUG",
    }


@pytest.fixture
def memory_env(monkeypatch):
    """Environment for the in-memory backend with the scheduler disabled."""
    for name in ALERT_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("SUPABASE_URL", "")
    monkeypatch.setenv("SUPABASE_KEY", "")
    monkeypatch.setenv("ENABLE_SCHEDULER", "false")
    monkeypatch.setenv("LOG_LEVEL", "INFO")


@pytest.fixture
def invalid_env(monkeypatch):
    """
    Set up invalid/missing environment variables for testing validation.
    """
    monkeypatch.setenv("STORE_BACKEND", "supabase")
    monkeypatch.setenv("SUPABASE_URL", "")
    monkeypatch.setenv("SUPABASE_KEY", "")


@pytest.fixture
def store():
    """Empty in-memory state store."""
    return InMemoryStore()

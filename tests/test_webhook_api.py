"""
Tests for the webhook API endpoints.

These tests use FastAPI's TestClient with the in-memory store, so no running
server or Supabase connection is needed.
"""

from datetime import timedelta
import json
import logging
import pytest
from fastapi.testclient import TestClient
from unittest.mock import patch

from conftest import T0, build_pr_payload, build_review_payload
from backend.app import create_app
from models.config_models import AlertConfig, Config, CredentialsConfig
from alerts import engine
from models.data_models import PullRequestKey, Team
from storage.memory_store import InMemoryStore
from utils.errors import StoreUnavailableError
from utils.logger import setup_logger


@pytest.fixture
def memory_store():
    return InMemoryStore()


@pytest.fixture
def client(memory_store):
    """Create FastAPI test client backed by the in-memory store."""
    config = Config(
        credentials=CredentialsConfig(store_backend="memory"),
        alerts=AlertConfig(enable_scheduler=False),
    )
    app = create_app(config=config, store=memory_store)
    with TestClient(app) as test_client:
        yield test_client


def deliver(client, payload, event="pull_request", delivery="d-1"):
    return client.post(
        "/api/webhooks/github",
        content=json.dumps(payload),
        headers={
            "Content-Type": "application/json",
            "X-GitHub-Event": event,
            "X-GitHub-Delivery": delivery,
        },
    )


class TestWebhook:

    def test_opened_creates_pr(self, client, memory_store):
        response = deliver(client, build_pr_payload())

        assert response.status_code == 200
        assert response.json() == {"received": True, "processed": True, "detail": "PR #7 is OPEN"}
        assert memory_store.find_by_key(PullRequestKey(1, 7)) is not None

    def test_review_event(self, client, memory_store):
        deliver(client, build_pr_payload())
        response = deliver(
            client,
            build_review_payload(submitted_at=T0 + timedelta(hours=1)),
            event="pull_request_review",
        )

        assert response.json()["processed"] is True
        assert memory_store.find_by_key(PullRequestKey(1, 7)).review_count == 1

    def test_ping_acknowledged(self, client):
        response = deliver(client, {"zen": "Keep it logically awesome."}, event="ping")
        assert response.status_code == 200
        assert response.json()["processed"] is False

    def test_unsupported_event_acknowledged(self, client, memory_store):
        response = deliver(client, build_pr_payload(), event="issues")
        assert response.status_code == 200
        assert response.json()["processed"] is False
        assert memory_store.find_by_key(PullRequestKey(1, 7)) is None

    def test_malformed_payload_still_200(self, client):
        payload = build_pr_payload()
        del payload["repository"]["id"]

        response = deliver(client, payload)

        assert response.status_code == 200
        assert response.json() == {
            "received": True,
            "processed": False,
            "detail": "Malformed payload dropped",
        }

    def test_invalid_json_still_200(self, client):
        response = client.post(
            "/api/webhooks/github",
            content=b"{not json",
            headers={"X-GitHub-Event": "pull_request"},
        )
        assert response.status_code == 200
        assert response.json()["processed"] is False

    def test_close_before_open_still_200(self, client, memory_store):
        response = deliver(client, build_pr_payload(action="closed", closed_at=T0))

        assert response.status_code == 200
        assert response.json()["processed"] is False
        assert "does not exist" in response.json()["detail"]
        assert memory_store.find_by_key(PullRequestKey(1, 7)) is None

    def test_store_failure_still_200(self, client, memory_store):
        with patch.object(memory_store, "upsert_repository", side_effect=StoreUnavailableError("down")):
            response = deliver(client, build_pr_payload())

        assert response.status_code == 200
        assert response.json() == {
            "received": True,
            "processed": False,
            "detail": "Event could not be applied",
        }

    def test_ignored_action(self, client):
        deliver(client, build_pr_payload())
        response = deliver(client, build_pr_payload(action="milestoned"))
        assert response.json()["processed"] is False
        assert "ignored" in response.json()["detail"]


class TestTeamActivity:

    def test_event_stamps_owning_team(self, client, memory_store):
        memory_store.add_team(Team(id=1, name="team-a", github_org_id=100))
        memory_store.add_team(Team(id=2, name="team-b", github_org_id=200))

        deliver(client, build_pr_payload(owner_id=100))

        teams = {team.name: team for team in memory_store.list_teams()}
        assert teams["team-a"].last_github_event_at is not None
        assert teams["team-b"].last_github_event_at is None

    def test_ignored_action_still_counts_as_activity(self, client, memory_store):
        memory_store.add_team(Team(id=1, name="team-a", github_org_id=100))

        response = deliver(client, build_pr_payload(action="milestoned"))

        assert response.json()["processed"] is False
        assert memory_store.list_teams()[0].last_github_event_at is not None

    def test_malformed_payload_does_not_stamp(self, client, memory_store):
        memory_store.add_team(Team(id=1, name="team-a", github_org_id=100))
        payload = build_pr_payload()
        del payload["repository"]["id"]

        deliver(client, payload)

        assert memory_store.list_teams()[0].last_github_event_at is None

    def test_stamp_failure_keeps_response(self, client, memory_store):
        memory_store.add_team(Team(id=1, name="team-a", github_org_id=100))

        with patch.object(memory_store, "update_org_teams", side_effect=StoreUnavailableError("down")):
            response = deliver(client, build_pr_payload())

        assert response.json() == {"received": True, "processed": True, "detail": "PR #7 is OPEN"}


class TestReadEndpoints:

    def test_get_pr(self, client):
        deliver(client, build_pr_payload())

        response = client.get("/api/prs/1/7")

        assert response.status_code == 200
        data = response.json()
        assert data["title"] == "Add widget export"
        assert data["status"] == "OPEN"
        assert data["review_count"] == 0

    def test_get_pr_not_found(self, client):
        response = client.get("/api/prs/1/999")
        assert response.status_code == 404

    def test_get_pr_store_down(self, client, memory_store):
        with patch.object(memory_store, "find_by_key", side_effect=StoreUnavailableError("down")):
            response = client.get("/api/prs/1/7")
        assert response.status_code == 503

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "store": "memory", "scheduler_running": False}


def test_app_applies_configured_log_level():
    config = Config(
        credentials=CredentialsConfig(store_backend="memory"),
        alerts=AlertConfig(enable_scheduler=False),
        log_level="DEBUG",
    )
    try:
        create_app(config=config, store=InMemoryStore())
        assert engine.logger.isEnabledFor(logging.DEBUG)
    finally:
        setup_logger("INFO")

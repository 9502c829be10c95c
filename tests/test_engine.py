"""Tests for the alert engine (scan tick end to end, Slack mocked)."""

import asyncio
import threading
from datetime import timedelta
import pytest
from unittest.mock import patch

from conftest import T0, build_pr_payload
from models.config_models import AlertConfig
from models.data_models import AlertKind, PRStatus, PullRequestKey, Repository, Team
from alerts.dispatcher import AlertDispatcher
from alerts.engine import AlertEngine
from utils.errors import SinkDeliveryError, StoreUnavailableError
from webhooks.lifecycle import PullRequestLifecycle
from webhooks.normalizer import normalize

DEFAULT_HOOK = "https://hooks.slack.com/services/default"
TEAM_HOOK = "https://hooks.slack.com/services/team-a"


class RecordingSink:
    """Stands in for SlackWebhookSink; fails for messages matching `fail_on`."""

    def __init__(self, fail_on=None):
        self.sent = []
        self.fail_on = fail_on
        self._lock = threading.Lock()

    def send(self, webhook_url, text):
        if self.fail_on and self.fail_on in text:
            raise SinkDeliveryError("Slack webhook returned 500", status_code=500)
        with self._lock:
            self.sent.append((webhook_url, text))
        return 200


class EventDuringSendSink(RecordingSink):
    """Applies a webhook payload to the store while the alert is in flight."""

    def __init__(self, store, payload):
        super().__init__()
        self.lifecycle = PullRequestLifecycle(store)
        self.payload = payload

    def send(self, webhook_url, text):
        self.lifecycle.apply(normalize(self.payload))
        return super().send(webhook_url, text)


def seed(store, pr_number, repo_id=1, opened_at=T0, owner_id=100, **fields):
    store.upsert_repository(Repository(id=repo_id, name=f"repo-{repo_id}", owner_id=owner_id))
    return store.upsert(
        PullRequestKey(repo_id, pr_number),
        {"opened_at": opened_at, "review_count": 0},
        {"title": f"PR {pr_number}", "status": PRStatus.OPEN, "last_commit_at": opened_at, **fields},
    )


def run_tick(store, sink, kinds, now, config=None, default_webhook_url=DEFAULT_HOOK):
    """Run one tick with a fresh dispatcher inside its own event loop."""
    async def tick():
        dispatcher = AlertDispatcher(pacing_seconds=0)
        engine = AlertEngine(
            store=store,
            dispatcher=dispatcher,
            sink=sink,
            config=config or AlertConfig(),
            default_webhook_url=default_webhook_url,
        )
        try:
            return await engine.run_tick(kinds, now=now)
        finally:
            await dispatcher.close()

    return asyncio.run(tick())


def sent_numbers(sink):
    return sorted(int(text.split("#")[1].split(" ")[0]) for _, text in sink.sent)


class TestDelivery:

    def test_sends_and_marks(self, store):
        for n in (1, 2, 3):
            seed(store, n)
        sink = RecordingSink()
        now = T0 + timedelta(hours=49)

        report = run_tick(store, sink, [AlertKind.STALE], now)

        assert sent_numbers(sink) == [1, 2, 3]
        assert {url for url, _ in sink.sent} == {DEFAULT_HOOK}
        assert report.stats(AlertKind.STALE).sent == 3
        for n in (1, 2, 3):
            assert store.find_by_key(PullRequestKey(1, n)).stale_alert_at is not None

    def test_second_tick_sends_nothing(self, store):
        seed(store, 1)
        now = T0 + timedelta(hours=49)
        run_tick(store, RecordingSink(), [AlertKind.STALE], now)

        sink = RecordingSink()
        report = run_tick(store, sink, [AlertKind.STALE], now + timedelta(minutes=1))

        assert sink.sent == []
        assert report.sent == 0

    def test_failed_send_is_isolated_and_unmarked(self, store):
        for n in (1, 2, 3):
            seed(store, n)
        sink = RecordingSink(fail_on="#2 –")

        report = run_tick(store, sink, [AlertKind.STALE], T0 + timedelta(hours=49))

        assert sent_numbers(sink) == [1, 3]
        assert report.stats(AlertKind.STALE).failed == 1
        assert store.find_by_key(PullRequestKey(1, 2)).stale_alert_at is None
        assert store.find_by_key(PullRequestKey(1, 3)).stale_alert_at is not None

    def test_failed_send_retried_next_tick(self, store):
        seed(store, 1)
        now = T0 + timedelta(hours=49)
        run_tick(store, RecordingSink(fail_on="#1 –"), [AlertKind.STALE], now)

        sink = RecordingSink()
        run_tick(store, sink, [AlertKind.STALE], now + timedelta(minutes=1))
        assert sent_numbers(sink) == [1]

    def test_mark_failure_counts_as_failed(self, store):
        seed(store, 1)
        with patch.object(store, "update_where", side_effect=StoreUnavailableError("down")):
            report = run_tick(store, RecordingSink(), [AlertKind.STALE], T0 + timedelta(hours=49))
        assert report.failed == 1
        assert report.sent == 0

    def test_no_destinations(self, store):
        seed(store, 1)
        sink = RecordingSink()
        report = run_tick(store, sink, [AlertKind.STALE], T0 + timedelta(days=5), default_webhook_url=None)
        assert sink.sent == []
        assert report.destinations == 0


class TestChangesDuringDelivery:

    def test_new_commits_keep_next_stalled_episode(self, store):
        seed(store, 7, review_count=1, last_review_at=T0)
        pushed_at = T0 + timedelta(days=3)
        sink = EventDuringSendSink(store, build_pr_payload(action="synchronize", updated_at=pushed_at))

        report = run_tick(store, sink, [AlertKind.STALLED], T0 + timedelta(days=3, hours=1))

        assert report.stats(AlertKind.STALLED).sent == 1
        pr = store.find_by_key(PullRequestKey(1, 7))
        assert pr.last_commit_at == pushed_at
        assert pr.stalled_alert_at is None

        sink = RecordingSink()
        run_tick(store, sink, [AlertKind.STALLED], pushed_at + timedelta(hours=49))
        assert sent_numbers(sink) == [7]

    def test_new_commits_still_mark_stale(self, store):
        seed(store, 7)
        sink = EventDuringSendSink(
            store, build_pr_payload(action="synchronize", updated_at=T0 + timedelta(hours=48))
        )

        run_tick(store, sink, [AlertKind.STALE], T0 + timedelta(hours=49))

        assert store.find_by_key(PullRequestKey(1, 7)).stale_alert_at is not None

    def test_close_during_delivery_leaves_no_marker(self, store):
        seed(store, 7)
        sink = EventDuringSendSink(
            store, build_pr_payload(action="closed", closed_at=T0 + timedelta(hours=48))
        )

        report = run_tick(store, sink, [AlertKind.UNREVIEWED], T0 + timedelta(hours=49))

        assert report.stats(AlertKind.UNREVIEWED).sent == 1
        pr = store.find_by_key(PullRequestKey(1, 7))
        assert pr.status == PRStatus.CLOSED
        assert pr.unreviewed_alert_at is None


class TestCaps:

    def test_cap_limits_alerts_oldest_first(self, store):
        for n in range(1, 6):
            seed(store, n, opened_at=T0 + timedelta(hours=n))
        sink = RecordingSink()
        config = AlertConfig(max_alerts_per_team=2)

        report = run_tick(store, sink, [AlertKind.STALE], T0 + timedelta(days=5), config=config)

        assert sent_numbers(sink) == [1, 2]
        assert report.capped == 1

        sink = RecordingSink()
        run_tick(store, sink, [AlertKind.STALE], T0 + timedelta(days=5, minutes=1), config=config)
        assert sent_numbers(sink) == [3, 4]

    def test_cap_shared_across_kinds(self, store):
        seed(store, 1)
        seed(store, 2)
        sink = RecordingSink()
        config = AlertConfig(max_alerts_per_team=3)

        report = run_tick(
            store, sink, [AlertKind.STALE, AlertKind.UNREVIEWED], T0 + timedelta(days=3), config=config
        )

        assert report.stats(AlertKind.STALE).sent == 2
        assert report.stats(AlertKind.UNREVIEWED).sent == 1
        assert len(sink.sent) == 3


class TestTeamRouting:

    def test_team_gets_its_org_repos(self, store):
        seed(store, 1, repo_id=1, owner_id=100)
        seed(store, 2, repo_id=2, owner_id=200)
        store.add_team(Team(id=1, name="team-a", github_org_id=100, slack_webhook_url=TEAM_HOOK))
        sink = RecordingSink()

        report = run_tick(store, sink, [AlertKind.STALE], T0 + timedelta(days=3))

        by_url = {url: text for url, text in sink.sent}
        assert "#1 –" in by_url[TEAM_HOOK]
        assert "#2 –" in by_url[DEFAULT_HOOK]
        assert report.destinations == 2

    def test_team_threshold_override(self, store):
        seed(store, 1, owner_id=100)
        store.add_team(Team(
            id=1, name="team-a", github_org_id=100, slack_webhook_url=TEAM_HOOK,
            configs={"stale_hours": 72},
        ))
        sink = RecordingSink()

        run_tick(store, sink, [AlertKind.STALE], T0 + timedelta(hours=50), default_webhook_url=None)
        assert sink.sent == []

        run_tick(store, sink, [AlertKind.STALE], T0 + timedelta(hours=73), default_webhook_url=None)
        assert [url for url, _ in sink.sent] == [TEAM_HOOK]

    def test_invalid_override_uses_default(self, store):
        seed(store, 1, owner_id=100)
        store.add_team(Team(
            id=1, name="team-a", github_org_id=100, slack_webhook_url=TEAM_HOOK,
            configs={"stale_hours": "soon"},
        ))
        sink = RecordingSink()
        run_tick(store, sink, [AlertKind.STALE], T0 + timedelta(hours=49), default_webhook_url=None)
        assert len(sink.sent) == 1

    def test_team_without_webhook_or_org_skipped(self, store):
        seed(store, 1, owner_id=100)
        store.add_team(Team(id=1, name="no-hook", github_org_id=100))
        store.add_team(Team(id=2, name="no-org", slack_webhook_url=TEAM_HOOK))
        sink = RecordingSink()

        run_tick(store, sink, [AlertKind.STALE], T0 + timedelta(days=3))

        assert [url for url, _ in sink.sent] == [DEFAULT_HOOK]


class TestTeamHealth:

    def test_delivery_stamps_team(self, store):
        seed(store, 1, repo_id=1, owner_id=100)
        store.add_team(Team(id=1, name="team-a", github_org_id=100, slack_webhook_url=TEAM_HOOK))
        store.add_team(Team(id=2, name="team-b", github_org_id=300, slack_webhook_url=TEAM_HOOK + "-b"))
        now = T0 + timedelta(days=3)

        run_tick(store, RecordingSink(), [AlertKind.STALE], now)

        teams = {team.name: team for team in store.list_teams()}
        assert teams["team-a"].last_slack_sent_at is not None
        assert teams["team-b"].last_slack_sent_at is None

    def test_failed_delivery_does_not_stamp_team(self, store):
        seed(store, 1, owner_id=100)
        store.add_team(Team(id=1, name="team-a", github_org_id=100, slack_webhook_url=TEAM_HOOK))

        run_tick(store, RecordingSink(fail_on="#1 –"), [AlertKind.STALE], T0 + timedelta(days=3))

        assert store.list_teams()[0].last_slack_sent_at is None

    def test_stamp_failure_does_not_fail_delivery(self, store):
        seed(store, 1, owner_id=100)
        store.add_team(Team(id=1, name="team-a", github_org_id=100, slack_webhook_url=TEAM_HOOK))

        with patch.object(store, "update_team", side_effect=StoreUnavailableError("down")):
            report = run_tick(store, RecordingSink(), [AlertKind.STALE], T0 + timedelta(days=3))

        assert report.sent == 1
        assert store.find_by_key(PullRequestKey(1, 1)).stale_alert_at is not None


def test_store_failure_propagates(store):
    with patch.object(store, "list_teams", side_effect=StoreUnavailableError("down")):
        with pytest.raises(StoreUnavailableError):
            run_tick(store, RecordingSink(), [AlertKind.STALE], T0)

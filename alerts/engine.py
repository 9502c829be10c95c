"""
Alert engine: one scan tick from detection to confirmed delivery.

For every destination (a team webhook, or the default webhook) and every
requested alert kind:

    scanner -> deduplicator -> per-destination cap -> formatter
            -> dispatcher (paced, per webhook) -> mark alerted on success

Per-PR failures are logged and counted without affecting other PRs. A store
failure while planning the tick propagates and ends the tick; nothing has
been marked at that point, so the next tick simply starts over.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from itertools import islice
from typing import Dict, Iterable, List, Optional, Tuple

from models.config_models import AlertConfig
from models.data_models import AlertKind, PullRequest, Repository, Team
from alerts.deduplicator import AlertDeduplicator
from alerts.dispatcher import AlertDispatcher
from alerts.formatter import format_alert
from alerts.scanners import SCANNERS
from alerts.slack import SlackWebhookSink
from storage.base import PullRequestStore
from utils.errors import SinkDeliveryError
from utils.time_format import utcnow

logger = logging.getLogger(__name__)

# Team config keys that override service defaults
TEAM_OVERRIDES = ("stale_hours", "unreviewed_hours", "stalled_hours", "max_alerts_per_tick")


@dataclass
class Destination:
    """Where alerts for a set of repositories go, with the thresholds that apply."""
    name: str
    webhook_url: str
    repo_ids: Optional[List[int]]  # None means every repository
    stale_hours: float
    unreviewed_hours: float
    stalled_hours: float
    max_alerts_per_tick: int
    team_id: Optional[int] = None

    def threshold_hours(self, kind: AlertKind) -> float:
        return getattr(self, f"{kind.value}_hours")


@dataclass
class KindStats:
    selected: int = 0
    sent: int = 0
    failed: int = 0


@dataclass
class TickReport:
    """Counts for one tick, per alert kind."""
    started_at: datetime
    destinations: int = 0
    capped: int = 0  # destinations that hit their per-tick cap
    kinds: Dict[AlertKind, KindStats] = field(default_factory=dict)

    def stats(self, kind: AlertKind) -> KindStats:
        return self.kinds.setdefault(kind, KindStats())

    @property
    def sent(self) -> int:
        return sum(s.sent for s in self.kinds.values())

    @property
    def failed(self) -> int:
        return sum(s.failed for s in self.kinds.values())


PlannedAlert = Tuple[Destination, AlertKind, PullRequest, Optional[Repository]]


def _team_setting(team: Team, key: str, default, cast):
    value = team.configs.get(key)
    if value is None:
        return default
    try:
        parsed = cast(value)
    except (TypeError, ValueError):
        logger.warning(f"Team {team.name}: invalid {key}={value!r}; using {default}")
        return default
    if parsed <= 0:
        logger.warning(f"Team {team.name}: {key} must be positive; using {default}")
        return default
    return parsed


class AlertEngine:
    """Runs scan ticks against the store and delivers alerts through the dispatcher."""

    def __init__(
        self,
        store: PullRequestStore,
        dispatcher: AlertDispatcher,
        sink: SlackWebhookSink,
        config: AlertConfig,
        default_webhook_url: Optional[str] = None,
    ):
        """
        Args:
            store: State store
            dispatcher: Shared per-destination dispatch queue
            sink: Performs the actual HTTP POST
            config: Default thresholds and caps
            default_webhook_url: Destination for repositories no team claims
        """
        self.store = store
        self.dispatcher = dispatcher
        self.sink = sink
        self.config = config
        self.default_webhook_url = default_webhook_url
        self.deduplicator = AlertDeduplicator(store)

    def _destination_for_team(self, team: Team, repo_ids: List[int]) -> Destination:
        return Destination(
            name=team.name,
            webhook_url=team.slack_webhook_url,
            repo_ids=repo_ids,
            stale_hours=_team_setting(team, "stale_hours", self.config.stale_hours, float),
            unreviewed_hours=_team_setting(team, "unreviewed_hours", self.config.unreviewed_hours, float),
            stalled_hours=_team_setting(team, "stalled_hours", self.config.stalled_hours, float),
            max_alerts_per_tick=_team_setting(
                team, "max_alerts_per_tick", self.config.max_alerts_per_team, int
            ),
            team_id=team.id,
        )

    def resolve_destinations(self) -> List[Destination]:
        """
        Build the destination list for a tick.

        Teams with a webhook URL and a GitHub org receive alerts for the
        repositories their org owns. The default webhook, when configured,
        receives alerts for every repository no such team claims.
        """
        destinations = []
        claimed: set = set()

        for team in self.store.list_teams():
            if not team.slack_webhook_url:
                continue
            if team.github_org_id is None:
                logger.debug(f"Team {team.name} has no GitHub org; skipping")
                continue
            repo_ids = [repo.id for repo in self.store.list_repositories(owner_id=team.github_org_id)]
            claimed.update(repo_ids)
            destinations.append(self._destination_for_team(team, repo_ids))

        if self.default_webhook_url:
            if claimed:
                repo_ids = [
                    repo.id for repo in self.store.list_repositories() if repo.id not in claimed
                ]
            else:
                repo_ids = None
            destinations.append(Destination(
                name="default",
                webhook_url=self.default_webhook_url,
                repo_ids=repo_ids,
                stale_hours=self.config.stale_hours,
                unreviewed_hours=self.config.unreviewed_hours,
                stalled_hours=self.config.stalled_hours,
                max_alerts_per_tick=self.config.max_alerts_per_team,
            ))

        return destinations

    def plan_tick(self, kinds: Iterable[AlertKind], now: datetime, report: TickReport) -> List[PlannedAlert]:
        """
        Run the scanners and pick the alerts to send this tick.

        Each destination has one cap shared by all kinds in the tick; kinds
        are served in the order given, oldest PRs first within a kind.
        """
        kinds = list(kinds)
        repositories: Dict[int, Optional[Repository]] = {}
        planned: List[PlannedAlert] = []

        destinations = self.resolve_destinations()
        report.destinations = len(destinations)

        for destination in destinations:
            budget = destination.max_alerts_per_tick
            for kind in kinds:
                if budget <= 0:
                    break
                matches = (
                    pr for pr in SCANNERS[kind](
                        self.store, now, destination.threshold_hours(kind), destination.repo_ids
                    )
                    if self.deduplicator.should_alert(pr, kind)
                )
                selected = list(islice(matches, budget))
                budget -= len(selected)
                report.stats(kind).selected += len(selected)

                for pr in selected:
                    if pr.repo_id not in repositories:
                        repositories[pr.repo_id] = self.store.find_repository(pr.repo_id)
                    planned.append((destination, kind, pr, repositories[pr.repo_id]))

            if budget <= 0:
                report.capped += 1
                logger.info(
                    f"Destination {destination.name} reached its cap of "
                    f"{destination.max_alerts_per_tick} alert(s) this tick"
                )

        return planned

    async def _deliver(
        self,
        destination: Destination,
        kind: AlertKind,
        pr: PullRequest,
        repository: Optional[Repository],
        now: datetime,
        report: TickReport,
    ) -> bool:
        stats = report.stats(kind)
        label = f"{kind.value} alert for {pr.repo_id}#{pr.pr_number}"
        message = format_alert(pr, kind, repository, now)
        url = destination.webhook_url

        try:
            await self.dispatcher.submit(
                url, lambda: asyncio.to_thread(self.sink.send, url, message)
            )
        except SinkDeliveryError as e:
            stats.failed += 1
            logger.warning(f"Failed to deliver {label} to {destination.name}: {e}")
            return False
        except Exception as e:
            stats.failed += 1
            logger.error(f"Unexpected error delivering {label} to {destination.name}: {e}")
            return False

        await self._record_team_delivery(destination)

        try:
            marked = await asyncio.to_thread(
                self.deduplicator.mark_alerted,
                pr.key,
                kind,
                expected=self.deduplicator.episode_state(pr, kind),
            )
        except Exception as e:
            # Delivered but unmarked: the next tick will send it again
            stats.failed += 1
            logger.error(f"Delivered {label} but failed to mark it: {e}")
            return False

        if marked is None:
            logger.info(
                f"PR {pr.repo_id}#{pr.pr_number} changed during delivery; "
                f"{kind.value} marker not written"
            )

        stats.sent += 1
        logger.info(f"Sent {label} to {destination.name}")
        return True

    async def _record_team_delivery(self, destination: Destination) -> None:
        """Stamp last_slack_sent_at on the team behind `destination`, if any."""
        if destination.team_id is None:
            return
        try:
            await asyncio.to_thread(
                self.store.update_team, destination.team_id, {"last_slack_sent_at": utcnow()}
            )
        except Exception as e:
            logger.warning(f"Could not record Slack delivery for team {destination.name}: {e}")

    async def run_tick(self, kinds: Iterable[AlertKind], now: Optional[datetime] = None) -> TickReport:
        """
        Run one scan tick for the given alert kinds.

        Returns:
            TickReport with selected/sent/failed counts per kind

        Raises:
            StoreUnavailableError: If the store fails while planning the tick
        """
        now = now or utcnow()
        kinds = list(kinds)
        report = TickReport(started_at=now)

        planned = await asyncio.to_thread(self.plan_tick, kinds, now, report)
        if not planned:
            logger.debug(f"No {', '.join(k.value for k in kinds)} alerts to send")
            return report

        await asyncio.gather(*(
            self._deliver(destination, kind, pr, repository, now, report)
            for destination, kind, pr, repository in planned
        ))

        logger.info(
            f"Tick ({', '.join(k.value for k in kinds)}): "
            f"{len(planned)} alert(s) selected, {report.sent} sent, {report.failed} failed"
        )
        return report

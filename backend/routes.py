"""
API routes for the PR watchdog.

- POST /api/webhooks/github: GitHub pull_request / pull_request_review deliveries
- GET  /api/prs/{repo_id}/{pr_number}: stored state of one pull request
- GET  /api/health: liveness and store backend
"""

import json
import logging
from typing import Optional
from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from models.data_models import PullRequestEvent, PullRequestKey
from storage.base import PullRequestStore
from webhooks.normalizer import REVIEW_EVENT, describe, normalize
from utils.errors import MalformedPayloadError, MissingEntityError
from utils.time_format import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["webhooks"])

HANDLED_EVENTS = ("pull_request", REVIEW_EVENT)


class WebhookAck(BaseModel):
    """Response body for webhook deliveries (always HTTP 200)."""
    received: bool = True
    processed: bool
    detail: str


def record_github_event(store: PullRequestStore, event: PullRequestEvent) -> None:
    """Stamp last_github_event_at on the teams linked to the event's repository owner."""
    if event.owner_id is None:
        return
    try:
        teams = store.update_org_teams(event.owner_id, {"last_github_event_at": utcnow()})
    except Exception as e:
        logger.warning(f"Could not record GitHub activity for org {event.owner_id}: {e}")
        return
    if teams:
        logger.debug(f"Recorded GitHub activity for {', '.join(team.name for team in teams)}")


@router.post("/webhooks/github", response_model=WebhookAck)
async def github_webhook(
    request: Request,
    x_github_event: Optional[str] = Header(None),
    x_github_delivery: Optional[str] = Header(None),
):
    """
    Receive a GitHub webhook delivery.

    The PR state change is applied before responding, but the response is
    always 200 so GitHub does not start a redelivery storm. Whether the
    event changed anything is reported in `processed` / `detail`.

    Headers:
    - X-GitHub-Event: event name (pull_request, pull_request_review, ping, ...)
    - X-GitHub-Delivery: delivery id, used in log lines only
    """
    delivery = x_github_delivery or "-"

    if x_github_event not in HANDLED_EVENTS:
        logger.debug(f"Ignoring '{x_github_event}' event (delivery {delivery})")
        return WebhookAck(processed=False, detail=f"Event '{x_github_event}' ignored")

    body = await request.body()
    try:
        payload = json.loads(body or b"null")
        event = normalize(payload, event_name=x_github_event)
    except (ValueError, MalformedPayloadError) as e:
        # json.JSONDecodeError is a ValueError
        logger.warning(f"Dropping malformed {x_github_event} delivery {delivery}: {e}")
        return WebhookAck(processed=False, detail="Malformed payload dropped")

    lifecycle = request.app.state.lifecycle
    try:
        pr = await run_in_threadpool(lifecycle.apply, event)
    except MissingEntityError as e:
        logger.warning(f"Dropping delivery {delivery}: {e}")
        return WebhookAck(processed=False, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to apply {describe(event)} (delivery {delivery}): {e}")
        return WebhookAck(processed=False, detail="Event could not be applied")

    await run_in_threadpool(record_github_event, request.app.state.store, event)

    if pr is None:
        return WebhookAck(processed=False, detail=f"Action '{event.action}' ignored")
    return WebhookAck(processed=True, detail=f"PR #{pr.pr_number} is {pr.status.value}")


@router.get("/prs/{repo_id}/{pr_number}")
def get_pr(repo_id: int, pr_number: int, request: Request):
    """
    Get the stored state of a single pull request.

    Raises:
    - 404: If the PR is not tracked
    - 503: If the store is unavailable
    """
    store = request.app.state.store
    try:
        pr = store.find_by_key(PullRequestKey(repo_id, pr_number))
    except Exception as e:
        logger.error(f"Failed to fetch PR {repo_id}#{pr_number}: {e}")
        raise HTTPException(status_code=503, detail="State store unavailable")

    if pr is None:
        raise HTTPException(status_code=404, detail=f"PR not found: {repo_id}#{pr_number}")
    return pr.model_dump(mode="json")


@router.get("/health")
def health(request: Request):
    """Liveness check; reports the store backend and whether scan loops run."""
    scheduler = getattr(request.app.state, "scheduler", None)
    return {
        "status": "ok",
        "store": request.app.state.store.backend_name,
        "scheduler_running": bool(scheduler and scheduler.running),
    }

"""Error taxonomy for event ingestion, storage, and alert delivery."""

from typing import Optional


class PRWatchdogError(Exception):
    """Base class for all service errors."""


class MalformedPayloadError(PRWatchdogError):
    """Webhook payload is missing required fields or has an unusable shape.

    The event is dropped and never retried: a redelivery carries the same body.
    """


class MissingEntityError(PRWatchdogError):
    """A transition required an existing pull request that is not stored.

    Typically a "closed" delivered before the matching "opened".
    """

    def __init__(self, repo_id: int, pr_number: int, action: str):
        self.repo_id = repo_id
        self.pr_number = pr_number
        self.action = action
        super().__init__(
            f"PR #{pr_number} in repo {repo_id} does not exist; "
            f"cannot apply '{action}'"
        )


class StoreUnavailableError(PRWatchdogError):
    """The state store could not be reached or rejected the operation."""


class SinkDeliveryError(PRWatchdogError):
    """An alert could not be delivered to its notification endpoint."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)

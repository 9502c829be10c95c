"""Slack incoming-webhook sink: one HTTP POST per alert."""

import logging

import requests

from utils.errors import SinkDeliveryError

logger = logging.getLogger(__name__)


class SlackWebhookSink:
    """Posts text messages to Slack incoming webhooks.

    The webhook URL is passed per call so a single sink serves every team.
    """

    def __init__(self, timeout: float = 10.0):
        """
        Args:
            timeout: Seconds to wait for Slack before treating the send as failed
        """
        self.timeout = timeout
        self.headers = {"Content-Type": "application/json"}

    def send(self, webhook_url: str, text: str) -> int:
        """Deliver one message.

        Args:
            webhook_url: Slack incoming webhook URL
            text: mrkdwn message text

        Returns:
            HTTP status code of the successful response

        Raises:
            SinkDeliveryError: On network errors or any non-2xx response
        """
        try:
            response = requests.post(
                webhook_url,
                json={"text": text},
                headers=self.headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning(f"Slack webhook request failed: {e}")
            raise SinkDeliveryError(f"Slack webhook request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            logger.warning(f"Slack webhook returned {response.status_code}: {response.text[:200]}")
            raise SinkDeliveryError(
                f"Slack webhook returned {response.status_code}",
                status_code=response.status_code,
            )

        return response.status_code

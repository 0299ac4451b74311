"""
HTTP client for the external messaging webhook.
"""

import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from message_relay.errors import (
    DispatchRejectedError,
    DispatchUnreachableError,
    MalformedResponseError,
)
from message_relay.schemas import WebhookResponse

logger = logging.getLogger(__name__)

AUTH_HEADER = "x-ins-auth-key"


class MessageSender:
    """
    Sends one message per request to the webhook.

    Only 202 Accepted counts as success. The client never retries; a failed
    message is picked up again by the scheduler on its next tick.
    """

    def __init__(
        self,
        webhook_url: str,
        auth_key: str,
        timeout: float = 5.0,
        max_connections: int = 5,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.webhook_url = webhook_url
        self._client = httpx.Client(
            timeout=timeout,
            limits=httpx.Limits(max_connections=max_connections),
            headers={AUTH_HEADER: auth_key},
            transport=transport,
        )

    def send(self, to: str, content: str) -> WebhookResponse:
        """
        POST {"to", "content"} to the webhook.

        Returns:
            The parsed webhook response carrying the external message id

        Raises:
            DispatchUnreachableError: connection error or timeout
            DispatchRejectedError: any status other than 202
            MalformedResponseError: 202 with a body that has no usable messageId
        """
        try:
            response = self._client.post(self.webhook_url, json={"to": to, "content": content})
        except httpx.TransportError as e:
            logger.error(f"Failed to send message: {e}", extra={"to": to})
            raise DispatchUnreachableError(f"webhook unreachable: {e}") from e

        if response.status_code != httpx.codes.ACCEPTED:
            logger.error(
                "Failed to send message, non-202 response",
                extra={"status_code": response.status_code, "to": to},
            )
            raise DispatchRejectedError(response.status_code, response.text)

        try:
            result = WebhookResponse.model_validate_json(response.content)
        except ValidationError as e:
            logger.error(f"Failed to decode webhook response: {e}")
            raise MalformedResponseError(f"failed to decode webhook response: {e}") from e

        logger.debug("Webhook accepted message", extra={"external_message_id": result.message_id})
        return result

    def close(self) -> None:
        self._client.close()

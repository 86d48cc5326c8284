"""
Verify, decode and store platform webhook deliveries.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional

from app.connectors.base import ChallengeResponse
from app.connectors.registry import ConnectorRegistry
from app.core.errors import MalformedPayloadError
from app.models.account import Platform
from app.models.message import WebhookRejection, WebhookResult
from app.services.account_store import AccountStore
from app.services.message_store import MessageStore

logger = logging.getLogger(__name__)


class WebhookIngress:
    """Entry point for push notifications from every platform.

    The signature is checked against the raw request bytes before anything
    is decoded. Messages go through the same ``MessageStore.upsert`` as
    polling, so a message seen both ways is stored once.
    """

    def __init__(
        self,
        connectors: ConnectorRegistry,
        accounts: AccountStore,
        messages: MessageStore,
    ) -> None:
        self._connectors = connectors
        self._accounts = accounts
        self._messages = messages

    def signature_header(self, platform: Platform) -> str:
        return self._connectors.get(platform).SIGNATURE_HEADER

    def challenge(self, platform: Platform, params: Mapping[str, str]) -> ChallengeResponse:
        """Answer a subscription handshake; raises when the platform has none."""
        return self._connectors.get(platform).respond_to_challenge(params)

    def handle(
        self, platform: Platform, raw_payload: bytes, signature: Optional[str]
    ) -> WebhookResult:
        connector = self._connectors.get(platform)
        if not connector.verify_webhook_signature(raw_payload, signature):
            logger.warning(
                "Rejected %s webhook: invalid signature", platform.display_name
            )
            return WebhookResult.rejected(WebhookRejection.INVALID_SIGNATURE)

        try:
            events = connector.parse_webhook(raw_payload)
        except MalformedPayloadError as exc:
            logger.warning(
                "Rejected %s webhook: %s", platform.display_name, exc.message
            )
            return WebhookResult.rejected(WebhookRejection.MALFORMED_PAYLOAD)
        except (ValueError, OverflowError) as exc:
            # Field values that decode but cannot be interpreted, e.g. timestamps.
            logger.warning(
                "Rejected %s webhook: unreadable field value (%s)",
                platform.display_name,
                exc,
            )
            return WebhookResult.rejected(WebhookRejection.MALFORMED_PAYLOAD)

        new_messages = 0
        matched = False
        for event in events:
            accounts = (
                self._accounts.list_by_platform_id(platform, event.recipient_id)
                if event.recipient_id
                else []
            )
            if not accounts:
                logger.info(
                    "Ignoring %s webhook for unknown account",
                    platform.display_name,
                    extra={"recipient_id": event.recipient_id, "event_type": event.event_type},
                )
                continue
            matched = True
            for account in accounts:
                stored = sum(
                    1 for message in event.messages if self._messages.upsert(account.id, message)
                )
                new_messages += stored
                logger.info(
                    "Processed %s webhook event %s",
                    platform.display_name,
                    event.event_type,
                    extra={"account_id": account.id, "new_messages": stored},
                )

        if events and not matched:
            return WebhookResult.rejected(WebhookRejection.UNKNOWN_ACCOUNT)
        return WebhookResult.accepted(new_messages)


__all__ = ["WebhookIngress"]

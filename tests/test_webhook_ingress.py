try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import base64
import hashlib
import hmac
import json

import pytest
from _factories import connect_account

from app.connectors import (
    ConnectorRegistry,
    InstagramConnector,
    LinkedInConnector,
    TikTokConnector,
    TwitterConnector,
)
from app.core.config import InstagramSettings, LinkedInSettings, TikTokSettings, TwitterSettings
from app.core.errors import NotSupportedError
from app.models.account import AccountStatus, Platform
from app.models.message import WebhookRejection, WebhookStatus
from app.services.webhook_ingress import WebhookIngress

SECRET = "webhook-secret"


def _platform_settings(settings_cls):
    return settings_cls(
        client_id="client-id",
        client_secret=SECRET,
        redirect_uri="https://api.example.com/callback",
        webhook_verify_token="verify-me",
    )


@pytest.fixture
def ingress(account_store, message_store) -> WebhookIngress:
    registry = ConnectorRegistry(
        {
            Platform.INSTAGRAM: InstagramConnector(_platform_settings(InstagramSettings)),
            Platform.LINKEDIN: LinkedInConnector(_platform_settings(LinkedInSettings)),
            Platform.TIKTOK: TikTokConnector(_platform_settings(TikTokSettings)),
            Platform.TWITTER: TwitterConnector(_platform_settings(TwitterSettings)),
        }
    )
    return WebhookIngress(registry, account_store, message_store)


def _instagram_payload(recipient: str, *mids: str) -> bytes:
    return json.dumps(
        {
            "object": "instagram",
            "entry": [
                {
                    "id": recipient,
                    "messaging": [
                        {
                            "sender": {"id": "fan"},
                            "recipient": {"id": recipient},
                            "timestamp": 1714560000000,
                            "message": {"mid": mid, "text": f"text {mid}"},
                        }
                        for mid in mids
                    ],
                }
            ],
        }
    ).encode()


def _meta_signature(raw: bytes) -> str:
    return "sha256=" + hmac.new(SECRET.encode(), raw, hashlib.sha256).hexdigest()


def test_valid_delivery_stores_messages_once(ingress, account_store, message_store) -> None:
    account = connect_account(account_store, Platform.INSTAGRAM, "ig-page")
    raw = _instagram_payload("ig-page", "m-1", "m-2")

    first = ingress.handle(Platform.INSTAGRAM, raw, _meta_signature(raw))
    second = ingress.handle(Platform.INSTAGRAM, raw, _meta_signature(raw))

    assert first.status is WebhookStatus.ACCEPTED
    assert first.new_messages == 2
    assert second.status is WebhookStatus.ACCEPTED
    assert second.new_messages == 0
    assert message_store.count(account.id) == 2


def test_invalid_signature_is_rejected_before_decoding(ingress, message_store) -> None:
    result = ingress.handle(Platform.INSTAGRAM, b"not even json", "sha256=deadbeef")

    assert result.status is WebhookStatus.REJECTED
    assert result.reason is WebhookRejection.INVALID_SIGNATURE
    assert message_store.count() == 0


def test_reserialized_body_fails_signature(ingress, account_store) -> None:
    connect_account(account_store, Platform.INSTAGRAM, "ig-page")
    raw = _instagram_payload("ig-page", "m-1")
    reserialized = json.dumps(json.loads(raw), indent=2).encode()

    result = ingress.handle(Platform.INSTAGRAM, reserialized, _meta_signature(raw))

    assert result.reason is WebhookRejection.INVALID_SIGNATURE


def test_signed_but_malformed_payload_is_rejected(ingress) -> None:
    raw = b'{"unexpected": true}'

    result = ingress.handle(Platform.INSTAGRAM, raw, _meta_signature(raw))

    assert result.reason is WebhookRejection.MALFORMED_PAYLOAD


def test_unreadable_timestamp_is_malformed_payload(ingress, account_store, message_store) -> None:
    connect_account(account_store, Platform.TWITTER, "me")
    raw = json.dumps(
        {
            "for_user_id": "me",
            "direct_message_events": [
                {
                    "type": "message_create",
                    "id": "dm-1",
                    "created_timestamp": "not-a-number",
                    "message_create": {
                        "sender_id": "friend",
                        "target": {"recipient_id": "me"},
                        "message_data": {"text": "yo"},
                    },
                }
            ],
        }
    ).encode()
    signature = "sha256=" + base64.b64encode(
        hmac.new(SECRET.encode(), raw, hashlib.sha256).digest()
    ).decode()

    result = ingress.handle(Platform.TWITTER, raw, signature)

    assert result.reason is WebhookRejection.MALFORMED_PAYLOAD
    assert message_store.count() == 0


def test_out_of_range_timestamp_is_malformed_payload(ingress, account_store) -> None:
    connect_account(account_store, Platform.INSTAGRAM, "ig-page")
    payload = json.loads(_instagram_payload("ig-page", "m-1"))
    payload["entry"][0]["messaging"][0]["timestamp"] = 10**20
    raw = json.dumps(payload).encode()

    result = ingress.handle(Platform.INSTAGRAM, raw, _meta_signature(raw))

    assert result.reason is WebhookRejection.MALFORMED_PAYLOAD


def test_identity_linked_by_two_users_reaches_both(ingress, account_store, message_store) -> None:
    first = connect_account(account_store, Platform.INSTAGRAM, "ig-page", user_id="user-1")
    second = connect_account(account_store, Platform.INSTAGRAM, "ig-page", user_id="user-2")
    raw = _instagram_payload("ig-page", "m-1")

    result = ingress.handle(Platform.INSTAGRAM, raw, _meta_signature(raw))

    assert result.new_messages == 2
    assert message_store.count(first.id) == 1
    assert message_store.count(second.id) == 1


def test_unknown_recipient_is_reported_not_stored(ingress, message_store) -> None:
    raw = _instagram_payload("someone-else", "m-1")

    result = ingress.handle(Platform.INSTAGRAM, raw, _meta_signature(raw))

    assert result.reason is WebhookRejection.UNKNOWN_ACCOUNT
    assert message_store.count() == 0


def test_inactive_account_is_treated_as_unknown(ingress, account_store) -> None:
    account = connect_account(account_store, Platform.INSTAGRAM, "ig-page")
    account_store.set_status(account.id, AccountStatus.EXPIRED)
    raw = _instagram_payload("ig-page", "m-1")

    result = ingress.handle(Platform.INSTAGRAM, raw, _meta_signature(raw))

    assert result.reason is WebhookRejection.UNKNOWN_ACCOUNT


def test_linkedin_delivery_uses_prefixed_signature(ingress, account_store, message_store) -> None:
    account = connect_account(account_store, Platform.LINKEDIN, "li-123")
    raw = json.dumps(
        {
            "type": "MESSAGE",
            "data": {"messageId": "li-1", "recipientId": "li-123", "message": "hi", "senderId": "x"},
        }
    ).encode()
    signature = hmac.new(SECRET.encode(), b"hmacsha256=" + raw, hashlib.sha256).hexdigest()

    result = ingress.handle(Platform.LINKEDIN, raw, signature)

    assert result.status is WebhookStatus.ACCEPTED
    assert result.new_messages == 1
    assert message_store.list_for_account(account.id)[0].content == "hi"


def test_challenge_routes_to_connector(ingress) -> None:
    response = ingress.challenge(
        Platform.INSTAGRAM,
        {"hub.mode": "subscribe", "hub.challenge": "42", "hub.verify_token": "verify-me"},
    )

    assert response.body == "42"
    assert ingress.signature_header(Platform.INSTAGRAM) == "X-Hub-Signature-256"
    with pytest.raises(NotSupportedError):
        ingress.challenge(Platform.TIKTOK, {})

from __future__ import annotations

import json
import unittest
from unittest.mock import MagicMock, patch

from pywebpush import WebPushException

from staffnotify.services.push_transport import (
    DeliveryStatus,
    WebPushTransport,
    classify_failure,
    get_push_public_config,
)
from staffnotify.settings import Settings

SUBSCRIPTION = {
    "endpoint": "https://push.example/abc",
    "keys": {"p256dh": "client-key", "auth": "client-auth"},
}


def _configured_settings() -> Settings:
    return Settings(
        push_vapid_public_key="public-key",
        push_vapid_private_key="private-key",
        push_vapid_subject="mailto:ops@example.com",
        push_ttl_seconds=120,
    )


def _push_error(status_code: int) -> WebPushException:
    response = MagicMock()
    response.status_code = status_code
    return WebPushException(f"Push failed: {status_code}", response=response)


class ClassifyFailureTests(unittest.TestCase):
    def test_status_codes_map_to_delivery_classes(self) -> None:
        self.assertIs(classify_failure(404), DeliveryStatus.EXPIRED)
        self.assertIs(classify_failure(410), DeliveryStatus.EXPIRED)
        self.assertIs(classify_failure(429), DeliveryStatus.TRANSIENT)
        self.assertIs(classify_failure(503), DeliveryStatus.TRANSIENT)
        self.assertIs(classify_failure(None), DeliveryStatus.TRANSIENT)
        self.assertIs(classify_failure(400), DeliveryStatus.REJECTED)
        self.assertIs(classify_failure(413), DeliveryStatus.REJECTED)


class WebPushTransportTests(unittest.IsolatedAsyncioTestCase):
    async def test_send_passes_vapid_details_and_body(self) -> None:
        transport = WebPushTransport(_configured_settings())
        body = json.dumps({"title": "Hi", "message": "There"})

        with patch("staffnotify.services.push_transport.webpush") as webpush_mock:
            result = await transport.send(SUBSCRIPTION, body)

        self.assertTrue(result.ok)
        self.assertEqual(result.endpoint, "https://push.example/abc")
        kwargs = webpush_mock.call_args.kwargs
        self.assertEqual(kwargs["subscription_info"], SUBSCRIPTION)
        self.assertEqual(kwargs["data"], body)
        self.assertEqual(kwargs["vapid_private_key"], "private-key")
        self.assertEqual(kwargs["vapid_claims"], {"sub": "mailto:ops@example.com"})
        self.assertEqual(kwargs["ttl"], 120)

    async def test_gone_endpoint_is_classified_expired(self) -> None:
        transport = WebPushTransport(_configured_settings())

        with patch("staffnotify.services.push_transport.webpush", side_effect=_push_error(410)):
            with self.assertLogs("staffnotify.push_transport", level="INFO") as captured:
                result = await transport.send(SUBSCRIPTION, "{}")

        self.assertIs(result.status, DeliveryStatus.EXPIRED)
        self.assertEqual(result.status_code, 410)
        self.assertIn("push_subscription_expired", captured.output[0])

    async def test_rate_limit_is_transient(self) -> None:
        transport = WebPushTransport(_configured_settings())

        with patch("staffnotify.services.push_transport.webpush", side_effect=_push_error(429)):
            with self.assertLogs("staffnotify.push_transport", level="WARNING"):
                result = await transport.send(SUBSCRIPTION, "{}")

        self.assertIs(result.status, DeliveryStatus.TRANSIENT)
        self.assertEqual(result.status_code, 429)

    async def test_network_error_never_raises(self) -> None:
        transport = WebPushTransport(_configured_settings())

        with patch("staffnotify.services.push_transport.webpush", side_effect=ConnectionError("reset")):
            with self.assertLogs("staffnotify.push_transport", level="WARNING"):
                result = await transport.send(SUBSCRIPTION, "{}")

        self.assertIs(result.status, DeliveryStatus.TRANSIENT)
        self.assertIsNone(result.status_code)
        self.assertIn("reset", result.error or "")

    async def test_unconfigured_keys_skip_delivery(self) -> None:
        transport = WebPushTransport(Settings(push_vapid_public_key=None, push_vapid_private_key=None))

        with patch("staffnotify.services.push_transport.webpush") as webpush_mock:
            result = await transport.send(SUBSCRIPTION, "{}")

        webpush_mock.assert_not_called()
        self.assertIs(result.status, DeliveryStatus.SKIPPED)


class PushPublicConfigTests(unittest.TestCase):
    def test_public_key_hidden_when_push_disabled(self) -> None:
        config = get_push_public_config(Settings(push_vapid_public_key="public-key", push_vapid_private_key=""))

        self.assertEqual(config, {"enabled": False, "vapid_public_key": None})

    def test_public_key_exposed_when_push_enabled(self) -> None:
        config = get_push_public_config(_configured_settings())

        self.assertEqual(config, {"enabled": True, "vapid_public_key": "public-key"})


if __name__ == "__main__":
    unittest.main()

"""Tests for CloudWatch business-event emission and log redaction."""

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock, patch

import pytest
import structlog

from app.core.logging import QUIET_LOGGERS, _logging_config, add_correlation_id, build_processors, redact_secrets
from app.metrics import cloudwatch
from app.metrics.cloudwatch import BusinessMetrics

pytestmark = pytest.mark.unit


class TestBusinessMetrics:
    async def test_disabled_never_builds_a_client(self):
        metrics = BusinessMetrics("QuoteFlow/Billing", enabled=False)

        with patch.object(cloudwatch.boto3, "client") as client_factory:
            await metrics.emit("subscription_created", user_id="user_1")

        client_factory.assert_not_called()

    async def test_enabled_puts_event_count(self):
        metrics = BusinessMetrics("QuoteFlow/Billing", region_name="sa-east-1")
        fake_client = MagicMock()

        executor = ThreadPoolExecutor(max_workers=1)
        with (
            patch.object(cloudwatch, "_executor", executor),
            patch.object(cloudwatch.boto3, "client", return_value=fake_client) as client_factory,
        ):
            await metrics.emit("payment_failed", user_id="user_1")
            # emit returns before the put runs
            executor.shutdown(wait=True)

        client_factory.assert_called_once_with("cloudwatch", region_name="sa-east-1")
        kwargs = fake_client.put_metric_data.call_args.kwargs
        assert kwargs["Namespace"] == "QuoteFlow/Billing"
        datum = kwargs["MetricData"][0]
        assert datum["MetricName"] == "EventCount"
        assert {"Name": "Event", "Value": "payment_failed"} in datum["Dimensions"]
        assert {"Name": "UserId", "Value": "user_1"} in datum["Dimensions"]

    def test_put_failures_are_swallowed(self):
        metrics = BusinessMetrics("QuoteFlow/Billing")
        fake_client = MagicMock()
        fake_client.put_metric_data.side_effect = RuntimeError("throttled")
        metrics._client = fake_client

        metrics._put_event("invoice_paid", None)

        dimensions = fake_client.put_metric_data.call_args.kwargs["MetricData"][0]["Dimensions"]
        assert dimensions == [{"Name": "Event", "Value": "invoice_paid"}]

    def test_put_failure_is_logged_with_metric_name(self):
        metrics = BusinessMetrics("QuoteFlow/Billing")
        metrics._client = MagicMock()
        metrics._client.put_metric_data.side_effect = RuntimeError("throttled")

        with patch.object(cloudwatch, "logger") as logger:
            metrics._put_event("payment_failed", "user_1")

        logger.warning.assert_called_once_with(
            "business_event_emit_failed", error="throttled", metric_event="payment_failed"
        )


class TestLogProcessors:
    def test_redacts_signature_and_token_fields(self):
        event = {"event": "stripe_webhook_rejected", "signature": "t=1,v1=abc", "token": "eyJ...", "event_id": "evt_1"}

        result = redact_secrets(None, "info", event)

        assert result["signature"] == "[redacted]"
        assert result["token"] == "[redacted]"
        assert result["event_id"] == "evt_1"

    def test_no_correlation_id_outside_request(self):
        assert "correlation_id" not in add_correlation_id(None, "info", {"event": "startup_begin"})

    def test_shared_chain_redacts_and_tags_requests(self):
        processors = build_processors()

        assert redact_secrets in processors
        assert add_correlation_id in processors

    def test_third_party_loggers_are_quieted(self):
        config = _logging_config("DEBUG", build_processors(), structlog.processors.JSONRenderer())

        assert config["root"]["level"] == "DEBUG"
        for name in QUIET_LOGGERS:
            assert config["loggers"][name] == {"level": "WARNING"}

"""Tests for report email rendering and delivery."""

from unittest.mock import patch

import pytest

from statmail.core.errors import DeliveryError
from statmail.core.retry import RetryConfig
from statmail.services.notifier import (
    LoggingNotifier,
    ResendNotifier,
    render_report,
    report_subject,
)

LINK = "https://reports.test/sites/shop.example/weekly-report/unsubscribe?email=a%40x.test&token=t"


@pytest.fixture
def resend_settings(test_settings):
    return test_settings.model_copy(update={"resend_api_key": "re_test"})


class TestRenderReport:
    """Tests for render_report."""

    def test_renders_metrics_and_link(self, report_payload):
        html = render_report("shop.example", "Weekly", LINK, report_payload)

        assert "Weekly report for shop.example" in html
        assert "2026-10-12 to 2026-10-18" in html
        assert "1200" in html
        assert "+20%" in html
        assert "-5%" in html
        assert "+3 pts" in html
        assert "news.ycombinator.com" in html
        assert "https://reports.test/sites/shop.example/weekly-report/unsubscribe" in html

    def test_missing_bounce_rate_change_is_omitted(self, report_payload):
        report_payload.change_bounce_rate = None

        html = render_report("shop.example", "Weekly", LINK, report_payload)

        assert "pts" not in html

    def test_subject(self):
        assert report_subject("shop.example", "October") == "October report for shop.example"


class TestResendNotifier:
    """Tests for ResendNotifier.send."""

    @pytest.mark.asyncio
    async def test_sends_via_resend(self, resend_settings, report_payload):
        with (
            patch("statmail.services.notifier.get_settings", return_value=resend_settings),
            patch("statmail.services.notifier.resend.Emails.send") as send,
        ):
            await ResendNotifier().send("a@x.test", "shop.example", "Weekly", LINK, report_payload)

        params = send.call_args.args[0]
        assert params["to"] == ["a@x.test"]
        assert params["subject"] == "Weekly report for shop.example"
        assert params["headers"]["List-Unsubscribe"] == f"<{LINK}>"
        assert "1200" in params["html"]

    @pytest.mark.asyncio
    async def test_failure_raises_delivery_error(self, resend_settings, report_payload):
        with (
            patch("statmail.services.notifier.get_settings", return_value=resend_settings),
            patch(
                "statmail.services.notifier.resend.Emails.send",
                side_effect=RuntimeError("422 invalid recipient"),
            ) as send,
        ):
            with pytest.raises(DeliveryError, match="a@x.test"):
                await ResendNotifier(RetryConfig(max_attempts=1)).send(
                    "a@x.test", "shop.example", "Weekly", LINK, report_payload
                )

        assert send.call_count == 1

    @pytest.mark.asyncio
    async def test_retries_transient_failures(self, resend_settings, report_payload):
        with (
            patch("statmail.services.notifier.get_settings", return_value=resend_settings),
            patch(
                "statmail.services.notifier.resend.Emails.send",
                side_effect=[RuntimeError("503"), {"id": "email_1"}],
            ) as send,
        ):
            notifier = ResendNotifier(RetryConfig(max_attempts=2, backoff_base=0.01, jitter=False))
            await notifier.send("a@x.test", "shop.example", "Weekly", LINK, report_payload)

        assert send.call_count == 2

    @pytest.mark.asyncio
    async def test_without_api_key_skips_send(self, test_settings, report_payload):
        with (
            patch("statmail.services.notifier.get_settings", return_value=test_settings),
            patch("statmail.services.notifier.resend.Emails.send") as send,
        ):
            await ResendNotifier().send("a@x.test", "shop.example", "Weekly", LINK, report_payload)

        send.assert_not_called()


class TestLoggingNotifier:
    """Tests for LoggingNotifier."""

    @pytest.mark.asyncio
    async def test_records_instead_of_sending(self, report_payload):
        notifier = LoggingNotifier()

        await notifier.send("a@x.test", "shop.example", "Weekly", LINK, report_payload)

        assert notifier.sent == [("a@x.test", "Weekly report for shop.example")]

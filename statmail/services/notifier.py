import asyncio
from pathlib import Path
from typing import Protocol

import resend
from jinja2 import Environment, FileSystemLoader, TemplateError

from statmail.config import get_config, get_settings
from statmail.core.errors import DeliveryError
from statmail.core.logging import get_logger
from statmail.core.retry import RetryConfig, retry_with_backoff
from statmail.services.report_assembler import MetricsPayload

logger = get_logger(__name__)

# Initialize Jinja2 environment for email templates
template_dir = Path(__file__).parent.parent / "emails" / "templates"
jinja_env = Environment(loader=FileSystemLoader(template_dir), autoescape=True)


class Notifier(Protocol):
    """Protocol for report delivery channels."""

    async def send(
        self,
        recipient: str,
        display_name: str,
        period_label: str,
        unsubscribe_link: str,
        payload: MetricsPayload,
    ) -> None:
        """Deliver one report to one recipient, raising on failure."""
        ...


def report_subject(display_name: str, period_label: str) -> str:
    return f"{period_label} report for {display_name}"


def render_report(
    display_name: str,
    period_label: str,
    unsubscribe_link: str,
    payload: MetricsPayload,
) -> str:
    """Render the report email body."""
    template = jinja_env.get_template("site_report.html")
    return template.render(
        site_name=display_name,
        name=period_label,
        unsubscribe_link=unsubscribe_link,
        report=payload,
    )


# Sleeps at most 4.5s across retries, well inside the default delivery timeout
DEFAULT_SEND_RETRY = RetryConfig(max_attempts=3, backoff_base=1.0)


class ResendNotifier:
    """Email notifier using Resend.

    The Resend SDK is synchronous and runs in a worker thread, which a
    timeout cannot stop. If the caller's delivery timeout expires, the
    recipient is counted as failed while the thread may still deliver the
    email. Keep `retry_config.max_total_delay()` plus the provider's own
    latency below `delivery_timeout_seconds` so that case stays rare.
    """

    def __init__(self, retry_config: RetryConfig | None = None) -> None:
        self.retry_config = retry_config or DEFAULT_SEND_RETRY

    async def send(
        self,
        recipient: str,
        display_name: str,
        period_label: str,
        unsubscribe_link: str,
        payload: MetricsPayload,
    ) -> None:
        settings = get_settings()
        config = get_config()

        try:
            html = render_report(display_name, period_label, unsubscribe_link, payload)
        except TemplateError as e:
            raise DeliveryError(f"Failed to render report template: {e}") from e

        if not settings.resend_api_key:
            logger.bind(email=recipient).warning("resend_api_key_not_set")
            return

        resend.api_key = settings.resend_api_key
        params = {
            "from": f"{config.reports.from_name} <reports@{settings.email_domain}>",
            "to": [recipient],
            "subject": report_subject(display_name, period_label),
            "html": html,
            "headers": {"List-Unsubscribe": f"<{unsubscribe_link}>"},
        }

        try:
            await retry_with_backoff(
                lambda: asyncio.to_thread(resend.Emails.send, params),
                config=self.retry_config,
                operation_name=f"send_report:{recipient}",
            )
        except Exception as e:
            raise DeliveryError(f"Resend rejected report for {recipient}: {e}") from e


class LoggingNotifier:
    """Notifier that only logs what would be sent. Used for dry runs."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send(
        self,
        recipient: str,
        display_name: str,
        period_label: str,
        unsubscribe_link: str,
        payload: MetricsPayload,
    ) -> None:
        self.sent.append((recipient, report_subject(display_name, period_label)))
        logger.bind(
            email=recipient,
            subject=report_subject(display_name, period_label),
            pageviews=payload.pageviews,
            unique_visitors=payload.unique_visitors,
        ).info("report_dry_run")

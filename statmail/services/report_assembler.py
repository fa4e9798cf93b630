"""
Report assembly: metrics payloads for a site and reporting range.

The numbers themselves come from the stats service; this module only asks
for the current and the preceding equivalent range and derives the
comparisons shown in the email.
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Protocol

import httpx

from statmail.config import get_config, get_settings
from statmail.core.cadence import ReportRange
from statmail.core.errors import AssemblyError
from statmail.core.logging import get_logger
from statmail.services.subscribers import Subscriber

logger = get_logger(__name__)


@dataclass
class MetricsPayload:
    """Everything a report email shows for one site and range."""

    report_range: ReportRange
    pageviews: int
    unique_visitors: int
    change_pageviews: int
    change_visitors: int
    bounce_rate: int
    change_bounce_rate: int | None
    top_referrers: list[dict[str, Any]] = field(default_factory=list)
    top_pages: list[dict[str, Any]] = field(default_factory=list)


class ReportAssembler(Protocol):
    """Protocol for report data sources."""

    async def assemble(self, subscriber: Subscriber, report_range: ReportRange) -> MetricsPayload:
        """Build the metrics payload, raising AssemblyError on failure."""
        ...


def round_half_up(value: int | float) -> int:
    """Round to the nearest integer, halves away from zero (2.5 -> 3, -2.5 -> -3)."""
    return int(Decimal(str(value)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def percent_change(old: int | float, new: int | float) -> int:
    """Whole-percent change from old to new.

    A rise from zero counts as 100%; zero to zero is no change.
    """
    if old == 0:
        return 100 if new > 0 else 0
    return round_half_up((new - old) / old * 100)


def bounce_rate_change(old: int | float, new: int | float) -> int | None:
    """Percentage-point change in bounce rate, None without a previous rate."""
    if old > 0:
        return round_half_up(new - old)
    return None


class StatsApiAssembler:
    """Assembler backed by the stats service's HTTP API."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        top_n: int | None = None,
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.stats_api_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.stats_api_key
        self.top_n = top_n or get_config().reports.top_n
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    @staticmethod
    def _range_params(subscriber: Subscriber, report_range: ReportRange) -> dict[str, str]:
        return {
            "site_id": subscriber.domain,
            "timezone": subscriber.timezone,
            "date_from": report_range.first.isoformat(),
            "date_to": report_range.last.isoformat(),
        }

    async def _aggregate(
        self,
        client: httpx.AsyncClient,
        subscriber: Subscriber,
        report_range: ReportRange,
    ) -> dict[str, Any]:
        response = await client.get(
            "/api/v1/stats/aggregate", params=self._range_params(subscriber, report_range)
        )
        response.raise_for_status()
        return response.json()

    async def _breakdown(
        self,
        client: httpx.AsyncClient,
        subscriber: Subscriber,
        report_range: ReportRange,
        prop: str,
    ) -> list[dict[str, Any]]:
        params = self._range_params(subscriber, report_range)
        params.update({"property": prop, "limit": str(self.top_n)})
        response = await client.get("/api/v1/stats/breakdown", params=params)
        response.raise_for_status()
        return [
            {"name": row["name"], "visitors": int(row.get("visitors", 0))}
            for row in response.json().get("results", [])
        ]

    async def assemble(self, subscriber: Subscriber, report_range: ReportRange) -> MetricsPayload:
        """Fetch current and previous range stats and build the payload.

        Raises:
            AssemblyError: On HTTP failures or malformed responses
        """
        previous_range = report_range.shift_back()

        try:
            async with self._client() as client:
                current = await self._aggregate(client, subscriber, report_range)
                previous = await self._aggregate(client, subscriber, previous_range)
                referrers = await self._breakdown(client, subscriber, report_range, "referrer")
                pages = await self._breakdown(client, subscriber, report_range, "page")

            pageviews = int(current["pageviews"])
            visitors = int(current["visitors"])
            bounce_rate = round_half_up(float(current.get("bounce_rate", 0)))
            prev_bounce_rate = round_half_up(float(previous.get("bounce_rate", 0)))

            payload = MetricsPayload(
                report_range=report_range,
                pageviews=pageviews,
                unique_visitors=visitors,
                change_pageviews=percent_change(int(previous["pageviews"]), pageviews),
                change_visitors=percent_change(int(previous["visitors"]), visitors),
                bounce_rate=bounce_rate,
                change_bounce_rate=bounce_rate_change(prev_bounce_rate, bounce_rate),
                top_referrers=referrers,
                top_pages=pages,
            )
        except httpx.HTTPError as e:
            raise AssemblyError(f"Stats API request failed for {subscriber.domain}: {e}") from e
        except (KeyError, TypeError, ValueError, ArithmeticError) as e:
            raise AssemblyError(f"Malformed stats response for {subscriber.domain}: {e}") from e

        logger.bind(
            domain=subscriber.domain,
            date_from=str(report_range.first),
            date_to=str(report_range.last),
            pageviews=payload.pageviews,
        ).debug("report_assembled")
        return payload

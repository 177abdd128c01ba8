"""Client for the analytics engine.

The engine computes conversion, error and latency metrics, business impact
and the statistical winner for an experiment. Skuld only reads them.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from skuld.models.analytics import ExperimentAnalytics, ExperimentReport

logger = structlog.get_logger()


class AnalyticsClient:
    """Analytics engine client. Returns empty snapshots until a URL is configured."""

    def __init__(
        self,
        base_url: str = "",
        api_token: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") if base_url else ""
        self.api_token = api_token
        self.timeout = timeout
        self._transport = transport

    @property
    def is_available(self) -> bool:
        return bool(self.base_url)

    def _headers(self) -> dict[str, str]:
        if not self.api_token:
            return {}
        return {"Authorization": f"Bearer {self.api_token}"}

    async def _get(self, path: str) -> dict[str, Any]:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(),
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            resp = await client.get(path)
            resp.raise_for_status()
            data: dict[str, Any] = resp.json()
        return data

    async def analyze_experiment(self, experiment_id: str) -> ExperimentAnalytics:
        """Fetch the latest analytics snapshot for an experiment.

        Expected response shape::

            {"metrics": {"overall_conversion_rate", "total_participants",
                         "error_rate", "response_time"},
             "business_impact": {"roi", "revenue_impact"},
             "statistical_analysis": {"winner": {"variant_name", "confidence"} | null}}
        """
        if not self.is_available:
            logger.debug("Analytics engine not configured, returning empty snapshot")
            return ExperimentAnalytics(experiment_id=experiment_id)

        data = await self._get(f"/experiments/{experiment_id}/analytics")
        return ExperimentAnalytics.model_validate({**data, "experiment_id": experiment_id})

    async def generate_experiment_report(self, experiment_id: str) -> ExperimentReport:
        if not self.is_available:
            return ExperimentReport(
                experiment_id=experiment_id,
                executive_summary="Analytics engine not configured; no report available.",
            )

        data = await self._get(f"/experiments/{experiment_id}/report")
        return ExperimentReport.model_validate({**data, "experiment_id": experiment_id})

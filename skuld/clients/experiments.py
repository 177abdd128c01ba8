"""Client for the experiment/flag service.

The service owns experiments and their feature flags. This client only
drives state changes on them; variant assignment and flag evaluation stay
with the service.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
import structlog

from skuld.models.analytics import Experiment

if TYPE_CHECKING:
    from skuld.models.analytics import FlagUpdate

logger = structlog.get_logger()


class ExperimentServiceClient:
    """Experiment/flag service client. Logs and returns mock data until a URL is configured."""

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
        headers = {"Content-Type": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(),
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _post(self, path: str, payload: dict[str, Any]) -> None:
        async with self._client() as client:
            resp = await client.post(path, json=payload)
            resp.raise_for_status()

    async def get_experiment(self, experiment_id: str) -> Experiment | None:
        """Fetch an experiment. Returns None when the service has no such record."""
        if not self.is_available:
            logger.debug("Experiment service not configured, returning mock experiment")
            return self._mock_experiment(experiment_id)

        async with self._client() as client:
            resp = await client.get(f"/experiments/{experiment_id}")
            if resp.status_code == httpx.codes.NOT_FOUND:
                return None
            resp.raise_for_status()
            data: dict[str, Any] = resp.json()
        return Experiment.model_validate({"id": experiment_id, **data})

    async def start_experiment(self, experiment_id: str, actor: str) -> None:
        if not self.is_available:
            logger.info("Experiment service stub: start", experiment_id=experiment_id, actor=actor)
            return
        await self._post(f"/experiments/{experiment_id}/start", {"actor": actor})

    async def pause_experiment(self, experiment_id: str, actor: str, reason: str) -> None:
        if not self.is_available:
            logger.info(
                "Experiment service stub: pause",
                experiment_id=experiment_id,
                actor=actor,
                reason=reason,
            )
            return
        await self._post(
            f"/experiments/{experiment_id}/pause", {"actor": actor, "reason": reason}
        )

    async def complete_experiment(self, experiment_id: str, actor: str) -> None:
        if not self.is_available:
            logger.info(
                "Experiment service stub: complete", experiment_id=experiment_id, actor=actor
            )
            return
        await self._post(f"/experiments/{experiment_id}/complete", {"actor": actor})

    async def update_flag(self, flag_id: str, update: FlagUpdate, actor: str, reason: str) -> None:
        """Patch a flag. Only the fields set on *update* are sent."""
        payload = {**update.model_dump(exclude_none=True), "actor": actor, "reason": reason}
        if not self.is_available:
            logger.info("Flag service stub: update", flag_id=flag_id, **payload)
            return
        async with self._client() as client:
            resp = await client.patch(f"/flags/{flag_id}", json=payload)
            resp.raise_for_status()

    @staticmethod
    def _mock_experiment(experiment_id: str) -> Experiment:
        return Experiment(
            id=experiment_id,
            name=f"Mock experiment {experiment_id}",
            status="draft",
            flag_id=f"flag_{experiment_id}",
        )

"""Controller reporting over HTTP.

Delivery failures are surfaced as ControllerReportError by the ``send_*``
methods. The ``report``/``run_periodic`` wrappers log them and carry on, so a
controller outage never changes the outcome of a run.

Contract:
- Inputs: Controller endpoint, execution reports, progress snapshots
- Outputs: None
- Side Effects: HTTP POST requests to the controller
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import httpx

from .cancellation import CancellationToken
from .errors import ControllerReportError
from .models import ExecutionReport

logger = logging.getLogger(__name__)


class ControllerReporter:
    """Posts reports, progress and heartbeats to a controller endpoint."""

    def __init__(
        self,
        endpoint: str,
        host_id: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.host_id = host_id
        self._client = client
        self._owns_client = client is None
        self.timeout = timeout

    async def __aenter__(self) -> "ControllerReporter":
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _post(self, url: str, **kwargs: Any) -> None:
        if self._client is None:
            raise RuntimeError("ControllerReporter used outside of its async context")
        try:
            response = await self._client.post(url, **kwargs)
        except httpx.HTTPError as e:
            raise ControllerReportError(f"POST {url} failed: {e}") from e
        if not response.is_success:
            raise ControllerReportError(f"POST {url} returned HTTP {response.status_code}")

    async def send_report(self, report: ExecutionReport) -> None:
        await self._post(
            self.endpoint, content=report.model_dump_json(), headers={"Content-Type": "application/json"}
        )

    async def send_progress(self, progress: dict[str, Any]) -> None:
        await self._post(f"{self.endpoint}/progress", json=progress)

    async def send_heartbeat(self) -> None:
        payload = {"host_id": self.host_id, "status": "running"}
        await self._post(f"{self.endpoint}/heartbeat", json=payload)

    async def report(self, report: ExecutionReport) -> bool:
        """Deliver the final report. Returns whether delivery succeeded."""
        try:
            await self.send_report(report)
        except ControllerReportError as e:
            logger.warning(f"Failed to deliver execution report: {e}")
            return False
        logger.info(f"Execution report delivered to {self.endpoint}")
        return True

    async def run_periodic(
        self,
        interval: float,
        send: Callable[[], Any],
        token: CancellationToken,
        label: str,
    ) -> None:
        """Call ``send`` every ``interval`` seconds until the task is cancelled."""
        while not token.cancelled:
            await asyncio.sleep(interval)
            try:
                await send()
            except ControllerReportError as e:
                logger.warning(f"Failed to deliver {label}: {e}")

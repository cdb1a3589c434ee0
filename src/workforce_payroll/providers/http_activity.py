"""HTTP delivery-count source."""

from __future__ import annotations

import datetime
import logging
from typing import Any

import httpx

from workforce_payroll.exceptions import ExternalDataUnavailableError

logger = logging.getLogger(__name__)


class HttpActivitySource:
    """Reads deliveries from an order-operations HTTP API.

    Issues GET {base_url}/deliveries?employee=<ref>&date=<YYYY-MM-DD> and
    expects a JSON list of objects with a "status" field, or an object with
    a "deliveries" list. No retries: a failed lookup excludes the day.
    """

    source_name = "http_activity"

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        headers = {"X-API-Key": api_key} if api_key else {}
        self._client = client or httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=timeout
        )
        self._owns_client = client is None

    async def completed_deliveries(
        self,
        employee_ref: str,
        work_date: datetime.date,
        counted_statuses: tuple[str, ...],
    ) -> int:
        try:
            response = await self._client.get(
                "/deliveries",
                params={"employee": employee_ref, "date": work_date.isoformat()},
            )
            response.raise_for_status()
            payload: Any = response.json()
        except httpx.HTTPStatusError as e:
            raise ExternalDataUnavailableError(
                self.source_name, f"HTTP {e.response.status_code} for {employee_ref} on {work_date}"
            ) from e
        except httpx.HTTPError as e:
            raise ExternalDataUnavailableError(
                self.source_name, f"{type(e).__name__} for {employee_ref} on {work_date}"
            ) from e
        except ValueError as e:
            raise ExternalDataUnavailableError(self.source_name, "response was not JSON") from e

        deliveries = payload.get("deliveries") if isinstance(payload, dict) else payload
        if not isinstance(deliveries, list):
            raise ExternalDataUnavailableError(self.source_name, "unexpected response shape")

        statuses = {s.lower() for s in counted_statuses}
        count = sum(
            1
            for d in deliveries
            if isinstance(d, dict) and str(d.get("status", "")).lower() in statuses
        )
        logger.debug("%s deliveries for %s on %s", count, employee_ref, work_date)
        return count

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

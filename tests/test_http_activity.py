"""Tests for the HTTP activity source."""

from datetime import date

import httpx
import pytest

from workforce_payroll.exceptions import ExternalDataUnavailableError
from workforce_payroll.providers import HttpActivitySource

WORK_DATE = date(2024, 3, 5)
COUNTED = ("delivered", "completed")


def source_with(handler) -> HttpActivitySource:
    client = httpx.AsyncClient(
        base_url="https://ops.example.test",
        transport=httpx.MockTransport(handler),
    )
    return HttpActivitySource("https://ops.example.test", client=client)


class TestHttpActivitySource:
    async def test_counts_completed_statuses(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = dict(request.url.params)
            return httpx.Response(
                200,
                json=[
                    {"status": "delivered"},
                    {"status": "COMPLETED"},
                    {"status": "failed"},
                    {"status": "delivered"},
                ],
            )

        count = await source_with(handler).completed_deliveries("DRV-1", WORK_DATE, COUNTED)

        assert count == 3
        assert seen["params"] == {"employee": "DRV-1", "date": "2024-03-05"}

    async def test_wrapped_payload(self):
        def handler(request):
            return httpx.Response(200, json={"deliveries": [{"status": "delivered"}]})

        assert await source_with(handler).completed_deliveries("DRV-1", WORK_DATE, COUNTED) == 1

    async def test_server_error(self):
        def handler(request):
            return httpx.Response(500)

        with pytest.raises(ExternalDataUnavailableError) as exc_info:
            await source_with(handler).completed_deliveries("DRV-1", WORK_DATE, COUNTED)
        assert "HTTP 500" in exc_info.value.message

    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ExternalDataUnavailableError):
            await source_with(handler).completed_deliveries("DRV-1", WORK_DATE, COUNTED)

    async def test_invalid_json(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>")

        with pytest.raises(ExternalDataUnavailableError):
            await source_with(handler).completed_deliveries("DRV-1", WORK_DATE, COUNTED)

    async def test_unexpected_shape(self):
        def handler(request):
            return httpx.Response(200, json={"count": 4})

        with pytest.raises(ExternalDataUnavailableError):
            await source_with(handler).completed_deliveries("DRV-1", WORK_DATE, COUNTED)

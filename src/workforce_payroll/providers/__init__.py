"""External activity source adapters."""

from workforce_payroll.providers.activity_stub import StaticActivitySource
from workforce_payroll.providers.base import ActivitySource
from workforce_payroll.providers.http_activity import HttpActivitySource

__all__ = [
    "ActivitySource",
    "HttpActivitySource",
    "StaticActivitySource",
]

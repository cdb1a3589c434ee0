"""Multi-tenant payroll computation engine."""

__version__ = "1.0.0"

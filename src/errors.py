from __future__ import annotations


class AnalyticsError(ValueError):
    """Base class for errors raised by the reconciliation/analytics core."""


class InsufficientData(AnalyticsError):
    """Too few price points to compute an indicator."""


class DataUnavailable(AnalyticsError):
    """Price provider call failed (unknown symbol, provider error, timeout)."""


class InvalidExecution(AnalyticsError):
    """An input execution has missing or malformed fields."""


class OrderingViolation(AnalyticsError):
    """Executions in a batch are not in non-decreasing timestamp order."""


class InsufficientHoldings(AnalyticsError):
    """A sell asked for more quantity than is open; the matcher logs it and drops the excess."""


class InvalidRule(AnalyticsError):
    """Alert rule parameters failed validation."""

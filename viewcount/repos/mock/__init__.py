"""Mock implementations of view count repositories."""

from .metrics import MockMetricsRepository

__all__ = ["MockMetricsRepository"]

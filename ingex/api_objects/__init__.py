"""Typed API objects used across internal service boundaries."""

from ingex.api_objects.types import IngestionRunSummary

__all__ = ["IngestionRunSummary"]

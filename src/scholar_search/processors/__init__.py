"""Post-search processing."""

from .ingestion import CostPolicy, IngestCostCheck, IngestionQueue

__all__ = ["CostPolicy", "IngestCostCheck", "IngestionQueue"]

"""Paper library storage."""

from .paper_store import IngestResult, PaperStore, SQLitePaperStore

__all__ = ["IngestResult", "PaperStore", "SQLitePaperStore"]

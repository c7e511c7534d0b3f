"""
Services Package
================

These are the "workers" that do the actual work.

- ReadingFetcher: Talks to the upstream sensor API
- normalize: Turns an upstream payload into a canonical Reading
- ReadingStore: Where readings are upserted and queried (SQLite or Supabase)
- IngestionPipeline: Fetch -> normalize -> store for every node
- PollScheduler: Runs the pipeline on an interval
- SeriesService: Shapes readings for the dashboard charts
- Collector: The boss that wires all of the above together
"""

from .fetcher import ReadingFetcher
from .normalizer import normalize
from .store import ReadingStore, SqliteReadingStore, SupabaseReadingStore, create_store
from .pipeline import IngestionPipeline
from .scheduler import PollScheduler
from .series import SeriesService, build_series
from .collector import Collector

__all__ = [
    "ReadingFetcher",
    "normalize",
    "ReadingStore",
    "SqliteReadingStore",
    "SupabaseReadingStore",
    "create_store",
    "IngestionPipeline",
    "PollScheduler",
    "SeriesService",
    "build_series",
    "Collector",
]

"""
Activity Engine — local activity aggregation for usage tracking.

Stores per-minute usage counters and focus sessions in one SQLite file and
derives daily rollups, scores, achievements and bounded payload samples.
"""

__version__ = "0.1.0"

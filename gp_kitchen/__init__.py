"""
GP Kitchen
Grand Exchange recipe profit tracker, served as a JSON HTTP API.

Layered architecture:
  Acquisition  → OSRS Wiki prices API / RuneLite icon cache
  Cache        → Redis / MongoDB / file cache for proxied price history
  Processing   → volume aggregation over timeseries samples
  Analysis     → GE tax and recipe profit calculation
"""

__version__ = "1.0.0"

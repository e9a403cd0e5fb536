"""
Data flow layers
  Layer 1 – Acquisition : OSRS Wiki prices API and RuneLite icon cache
  Layer 2 – Cache       : multi-level cache (Redis → MongoDB → file)
  Layer 3 – Processing  : timeseries volume aggregation
  Layer 4 – Analysis    : GE tax and recipe profit
"""

"""
Core modules for usage-lens.

This package contains the statistics engine: time range resolution, rollup
or raw source selection, bucketing and gap filling, derived statistics and
the query façade.
"""

"""
Core modules for proxy usage analytics.

This package contains log parsing, request correlation, file tailing,
aggregation and the statistics view.
"""

"""
Resilience Toolkit

Caching, request deduplication, adaptive circuit breaking, error recovery
and batch processing for clients of rate-limited remote APIs.
"""

__version__ = "1.0.0"

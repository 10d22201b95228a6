"""
Fact Pipeline Workers
=====================

Polling drainer, bounded retry and rate limiting.
"""

from services.fact_pipeline.workers.drainer import PipelineDrainer
from services.fact_pipeline.workers.rate_limit import SlidingWindowRateLimiter
from services.fact_pipeline.workers.retry import call_with_retry


__all__ = ["PipelineDrainer", "SlidingWindowRateLimiter", "call_with_retry"]

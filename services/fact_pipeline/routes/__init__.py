"""
Fact Pipeline Routes
====================

API route handlers for the fact pipeline service.

Routes:
- pipeline: admin entry points (compose, review, arbitrate, release, approvals)
- rules: published rule queries and appliesWhen evaluation
"""

from services.fact_pipeline.routes import pipeline, rules


__all__ = ["pipeline", "rules"]

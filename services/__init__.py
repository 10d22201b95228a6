"""
Factline Services
=================

Services:
- fact_pipeline: regulatory fact extraction, composition, arbitration and release
"""

__all__ = [
    "fact_pipeline",
]

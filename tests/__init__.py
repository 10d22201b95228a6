"""
Factline Test Suite
===================

Test organization:
- tests/services/fact_pipeline/   - Stage, DSL, worker and API tests

Store-backed tests use in-memory SQLite (aiosqlite); no external services
are required.

Run tests:
    pytest                                   # All tests
    pytest tests/services/fact_pipeline -k arbiter
"""

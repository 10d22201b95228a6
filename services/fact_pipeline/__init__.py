"""
Fact Pipeline Service
=====================

Turns captured regulatory evidence into versioned, citation-backed rules.

Stages (each polled independently, handing off through status columns):
extract -> compose -> review -> arbitrate -> release

Version: 0.1.0
"""

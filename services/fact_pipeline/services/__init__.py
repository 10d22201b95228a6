"""
Fact Pipeline Services
======================

Stage logic: composition, arbitration, review, release, extraction and
the read-side query helpers.
"""

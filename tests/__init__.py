"""
Test suite for the perpetual execution core

Contains:
- tests/unit/     : Unit tests for individual modules
- tests/fakes.py  : In-memory collaborators (markets, registry, store, prices)
"""

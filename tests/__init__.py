"""
Test suite for the phased ingestion workflow.

This package contains:
- unit/: Building blocks (profiles, cache, encoders, token broker, ...) in isolation
- integration/: Whole phases run against the in-process fake platform
- fakes.py: Flask stand-in for the management portal, schema registry and gateway
"""

"""
Unit tests for the ingestion workflow building blocks.

Each module targets one component in isolation: collaborators are either
plain callables or the in-process fake platform from :mod:`tests.fakes`.
"""

"""
Phased performance workflow for a research data platform (Locust-based).

Drives the management API, the schema registry and the ingestion gateway
of the platform through four dependent phases: project setup, subject
registration, topic discovery and questionnaire ingestion.  Values
produced by one phase (resource DTOs, token pairs, schema ids) are kept in
a run-scoped cache and consumed by later phases.

Run it with ``locust -f ingestion_perf/locustfile.py``.

Key Concepts Demonstrated:
- Barrier-separated phases on top of Locust's ``LoadTestShape``
- Idempotent fetch-or-create setup against a REST API
- OAuth2 pairing and refresh-token rotation per virtual subject
- Avro JSON and binary payloads bound to registry schema ids
"""

__version__ = "0.1.0"

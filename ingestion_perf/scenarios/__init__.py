"""
Locust user classes, one per workflow phase.

- :mod:`.setup` - organization, source types and project
- :mod:`.registration` - subjects, their sources and app pairing
- :mod:`.discovery` - topic checks and schema id resolution
- :mod:`.ingestion` - questionnaire data sent to the gateway

All of them inherit from :class:`~.base.PlatformUser`, which runs the
phase's steps through the orchestrator attached to the Locust
environment.
"""

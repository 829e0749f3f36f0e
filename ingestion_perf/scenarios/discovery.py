"""Topic discovery phase."""

from __future__ import annotations

from ingestion_perf.scenarios.base import PlatformUser
from ingestion_perf.session import Step
from ingestion_perf.workflow import Workflow


class TopicDiscoveryUser(PlatformUser):
    """Check every topic and cache its key and value schema ids."""

    phase_name = "discovery"

    def build_steps(self, workflow: Workflow) -> list[Step]:
        return workflow.discovery_steps()

"""
Project setup phase.

A single admin session makes sure the organization, the source types and
the project exist.  Everything is fetched-or-created, so running the
suite twice against the same platform creates nothing the second time.
"""

from __future__ import annotations

from ingestion_perf.scenarios.base import PlatformUser
from ingestion_perf.session import Step
from ingestion_perf.workflow import Workflow


class ProjectSetupUser(PlatformUser):
    """Ensure the organization, source types and project."""

    phase_name = "setup"

    def build_steps(self, workflow: Workflow) -> list[Step]:
        return workflow.setup_steps()

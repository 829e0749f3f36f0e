"""
Subject registration phase.

Each session consumes one external id from the subject feed, so the phase
runs as many sessions as there are participants.
"""

from __future__ import annotations

from ingestion_perf.scenarios.base import PlatformUser
from ingestion_perf.session import Step
from ingestion_perf.workflow import Workflow


class SubjectRegistrationUser(PlatformUser):
    """Register the next subject of the feed and pair an app for it."""

    phase_name = "registration"

    def build_steps(self, workflow: Workflow) -> list[Step]:
        return workflow.registration_steps()

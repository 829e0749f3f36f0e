"""
Questionnaire ingestion phase.

The only closed-model phase: users loop sessions, each picking a random
registered subject and posting ``message_number`` questionnaires of
``message_size`` answers in the configured payload format.
"""

from __future__ import annotations

from ingestion_perf.scenarios.base import PlatformUser
from ingestion_perf.session import Step
from ingestion_perf.workflow import Workflow


class QuestionnaireIngestionUser(PlatformUser):
    """Send questionnaire records for a random registered subject."""

    phase_name = "ingestion"

    def build_steps(self, workflow: Workflow) -> list[Step]:
        return workflow.ingestion_steps()

"""
Request body builders for the management API.

Every builder receives the values it needs as arguments (run configuration,
cached DTOs, per-session identifiers) and returns a JSON-serialisable
dictionary.  Cached DTOs are embedded as they were returned by the server.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ingestion_perf.config import RunConfig

APP_PROVIDER = "org.radarcns.application.ApplicationServiceProvider"


@dataclass(frozen=True)
class SourceTypeSpec:
    """A source type every test project is expected to support."""

    alias: str
    name: str
    producer: str
    model: str
    catalog_version: str
    scope: str
    app_provider: str | None = None


# Alias order matters: sources are attached to subjects in this order.
SOURCE_TYPES: tuple[SourceTypeSpec, ...] = (
    SourceTypeSpec("aRMT", "RADAR_aRMT", "RADAR", "aRMT", "1.5.0", "ACTIVE", APP_PROVIDER),
    SourceTypeSpec("pRMT", "RADAR_pRMT", "RADAR", "pRMT", "1.1.0", "PASSIVE", APP_PROVIDER),
    SourceTypeSpec("android", "ANDROID_PHONE", "ANDROID", "PHONE", "1.0.0", "PASSIVE"),
)


def project_source_name(alias: str, external_id: str) -> str:
    """Natural key of the project source of type *alias* owned by a subject."""
    return f"{alias}-source-{external_id}"


def organization_body(config: RunConfig) -> dict[str, Any]:
    return {
        "name": config.organization_name,
        "description": "Test Organization",
        "location": "Test Location",
    }


def source_type_body(spec: SourceTypeSpec) -> dict[str, Any]:
    body: dict[str, Any] = {
        "producer": spec.producer,
        "model": spec.model,
        "catalogVersion": spec.catalog_version,
        "canRegisterDynamically": True,
        "sourceTypeScope": spec.scope,
        "name": spec.name,
    }
    if spec.app_provider:
        body["appProvider"] = spec.app_provider
    return body


def project_body(
    config: RunConfig,
    organization: dict[str, Any],
    source_types: list[dict[str, Any]],
) -> dict[str, Any]:
    return {
        "organization": organization,
        "projectName": config.project_name,
        "description": "Test Project",
        "location": "Test Location",
        "sourceTypes": source_types,
    }


def project_source_body(
    project: dict[str, Any],
    source_type: dict[str, Any],
    source_name: str,
) -> dict[str, Any]:
    return {
        "project": project,
        "sourceType": source_type,
        "sourceName": source_name,
        "assigned": False,
    }


def subject_body(
    project: dict[str, Any],
    external_id: str,
    sources: list[dict[str, Any]],
) -> dict[str, Any]:
    return {
        "project": project,
        "externalId": external_id,
        "status": "ACTIVATED",
        "group": None,
        "sources": sources,
    }
